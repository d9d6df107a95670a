"""Preview runs: server lifecycle and per-request routing."""

import asyncio
import logging
import webbrowser
from enum import Enum
from functools import partial
from typing import Callable
from urllib.parse import quote

from config import Config, get_config
from content import (
    MIMETYPE_HTML,
    UNSAVED_FILE_PATH,
    BufferedDocument,
    ContentResolver,
    LocalFile,
    NotFound,
    RemoteFile,
    ResolvedTarget,
    SyntheticDocument,
)
from editor import EditorManager, OpenFolders, get_editor_manager, get_open_folders
from fetch_cache import FetchSerializer, UriFormatter
from filesystem import FileSystemError, fs_operation
from paths import resolve_relative_path, select_project_root
from session import TARGET_BROWSER, TARGET_INAPP, PreviewSession
from transform import inject_instrumentation
from transport import (
    RequestDescriptor,
    ServerAlreadyRunning,
    ServerHandle,
    ServerResponse,
    create_server,
    not_found_response,
)
from uris import dirname, join

logger = logging.getLogger(__name__)

ServerFactory = Callable[[int, Callable[[], None], Callable[[Exception], None]], ServerHandle]
BrowserOpener = Callable[[str, str, bool], None]


class ServerState(Enum):
    """Preview server lifecycle."""

    STOPPED = "stopped"
    STARTING = "starting"
    LISTENING = "listening"


class PreviewStartError(Exception):
    """No port could be bound for the preview server."""


class RunRefused(Exception):
    """The active document cannot be previewed."""


def open_preview(url: str, target: str, is_console: bool = False) -> None:
    """Default opener: system browser, or a log line for the in-app webview to pick up."""
    if target == TARGET_BROWSER:
        webbrowser.open(url)
        return
    logger.info(f"In-app preview ready at {url}" + (" (console)" if is_console else ""))


class RequestRouter:
    """Answers the requests of one preview session."""

    def __init__(
        self,
        session: PreviewSession,
        config: Config,
        editor_manager: EditorManager,
        folders: OpenFolders,
        format_uri: UriFormatter | None = None,
    ):
        self.session = session
        self.config = config
        self.folders = folders
        self.handle: ServerHandle | None = None
        self.resolver = ContentResolver(session, config, editor_manager, folders)
        self.serializer = FetchSerializer(self.send, config.cache_dir, format_uri)

    def relative_path(self) -> str:
        session = self.session
        return resolve_relative_path(session.project_root, session.path_name, session.filename)

    async def send(self, request_id: str, response: ServerResponse) -> None:
        if self.handle is not None:
            await self.handle.send(request_id, response)

    async def handle_request(self, request: RequestDescriptor) -> None:
        """Resolve one request and answer it through the transport."""
        request_path = request.path[1:] if request.path.startswith("/") else request.path
        logger.debug(f"Request {request.request_id}: {request_path!r}")

        if not request_path or request_path == "/":
            request_path = self.relative_path()

        try:
            target = await self.resolver.resolve(request_path)
            await self.respond(request.request_id, target)
        except Exception as e:
            logger.exception(f"Failed to serve {request_path}: {e}")
            await self.send(request.request_id, not_found_response())

    async def respond(self, request_id: str, target: ResolvedTarget) -> None:
        if isinstance(target, BufferedDocument):
            if target.instrument:
                await self.send_html(target.text, request_id)
            else:
                await self.send_text(target.text, request_id, target.mime)
        elif isinstance(target, SyntheticDocument):
            await self.send_text(target.body, request_id, target.mime)
        elif isinstance(target, LocalFile):
            if target.inline:
                await self.send_file_content(target.path, request_id, target.mime)
            else:
                await self.send(
                    request_id,
                    ServerResponse(status=200, path=target.path, headers={"Content-Type": target.mime}),
                )
        elif isinstance(target, RemoteFile):
            if target.inline:
                await self.serializer.serve_inline(
                    target.uri,
                    request_id,
                    partial(self._deliver_text, mime=target.mime),
                )
            else:
                await self.serializer.serve(target.uri, request_id)
        elif isinstance(target, NotFound):
            await self.send(request_id, not_found_response())

    async def send_text(self, text: str, request_id: str, mime: str | None = None) -> None:
        await self.send(
            request_id,
            ServerResponse(status=200, body=text, headers={"Content-Type": mime or MIMETYPE_HTML}),
        )

    async def send_html(self, text: str, request_id: str) -> None:
        """Send an HTML document with the console instrumentation injected."""
        text = inject_instrumentation(
            text,
            token=self.session.token,
            console_script=self.session.console_script,
            target=self.session.target,
            show_console_toggler=self.config.show_console_toggler,
        )
        await self.send_text(text, request_id, MIMETYPE_HTML)

    async def send_file_content(self, uri: str, request_id: str, mime: str) -> None:
        """Read a file as text and send it, falling back to the previewed document for HTML."""
        fs = fs_operation(uri)

        if not await fs.exists():
            session = self.session
            fallback = join(session.path_name, session.filename) if session.path_name else None
            if mime != MIMETYPE_HTML or not fallback or not await fs_operation(fallback).exists():
                logger.debug(f"{uri} does not exist")
                await self.send(request_id, not_found_response())
                return
            logger.info(f"Falling back to {fallback}")
            session.is_fallback = True
            fs = fs_operation(fallback)

        text = await fs.read_file(self.config.default_file_encoding)
        if mime == MIMETYPE_HTML:
            await self.send_html(text, request_id)
        else:
            await self.send_text(text, request_id, mime)

    async def _deliver_text(self, request_id: str, path: str, mime: str) -> None:
        text = await fs_operation(path).read_file(self.config.default_file_encoding)
        if mime == MIMETYPE_HTML:
            await self.send_html(text, request_id)
        else:
            await self.send_text(text, request_id, mime)


class PreviewRunner:
    """Starts previews, keeping at most one preview server alive."""

    def __init__(
        self,
        config: Config | None = None,
        editor_manager: EditorManager | None = None,
        folders: OpenFolders | None = None,
        server_factory: ServerFactory | None = None,
        opener: BrowserOpener | None = None,
        format_uri: UriFormatter | None = None,
    ):
        self.config = config or get_config()
        self.editor = editor_manager or get_editor_manager()
        self.folders = folders or get_open_folders()
        self._create_server = server_factory or partial(
            create_server,
            host=self.config.bind_host,
            log_level="debug" if self.config.debug else "warning",
        )
        self._opener = opener or open_preview
        self._format_uri = format_uri
        self.state = ServerState.STOPPED
        self.session: PreviewSession | None = None
        self.router: RequestRouter | None = None
        self.url: str | None = None
        self._handle: ServerHandle | None = None

    async def run(
        self,
        is_console: bool = False,
        target: str | None = None,
        run_file: bool = False,
    ) -> PreviewSession | None:
        """Preview the active document.

        Returns the new session, or None when the preview is served by an
        external server and only the browser was opened.
        """
        config = self.config
        target = target or config.preview_mode

        if not is_console and not run_file and config.server_port != config.preview_port:
            self.url = f"http://{config.preview_host}:{config.preview_port}"
            self._opener(self.url, target, False)
            return None

        active = None if is_console else self.editor.active_file
        if not is_console and (active is None or not await active.can_run(self.folders)):
            raise RunRefused("The active document cannot be previewed")

        session = PreviewSession(
            target=target,
            port=config.server_port,
            active_file=active,
            is_console=is_console,
        )
        if active is not None:
            session.filename = active.filename
            session.path_name = active.location or (dirname(active.uri) if active.uri else None)

        if not run_file and session.filename != "index.html" and session.path_name:
            folder = self.folders.find(active.uri)
            if folder is not None:
                index = join(folder.url, "index.html")
                try:
                    if await fs_operation(index).exists():
                        session.filename = "index.html"
                        session.path_name = folder.url
                except FileSystemError as e:
                    logger.error(f"Cannot check {index}: {e}")
                    raise RunRefused(str(e)) from e

        if session.extension == ".js" or is_console:
            self._prepare_console(session)

        session.project_root = select_project_root(
            session.path_name,
            active.uri if active is not None else None,
            self.folders,
        )
        await self._start(session)
        return session

    def _prepare_console(self, session: PreviewSession) -> None:
        """Run the document inside the console harness page."""
        if not session.is_console and session.active_file is not None:
            session.executing_script = session.active_file.filename
        session.is_console = True
        session.target = TARGET_INAPP
        session.filename = "console.html"
        session.path_name = str(self.config.assets_dir)
        session.port = self.config.console_port

    async def _start(self, session: PreviewSession) -> None:
        await self.stop()

        self.session = session
        self.router = RequestRouter(
            session, self.config, self.editor, self.folders, self._format_uri
        )
        logger.info(f"Starting preview session {session.token} ({session.mode})")

        retries = 0
        while True:
            self.state = ServerState.STARTING
            outcome = await self._bind(session.port)

            if outcome is None:
                self.state = ServerState.LISTENING
                self.open_browser()
                return

            if isinstance(outcome, ServerAlreadyRunning):
                logger.info(f"Preview server already running on port {session.port}")
                self.state = ServerState.LISTENING
                self.open_browser()
                return

            retries += 1
            if retries > self.config.max_port_retries:
                self.state = ServerState.STOPPED
                raise PreviewStartError(
                    f"Could not bind a preview server after {retries} attempts, last port {session.port}: {outcome}"
                )
            logger.warning(f"Port {session.port} unavailable ({outcome}), trying {session.port + 1}")
            session.port += 1

    async def _bind(self, port: int) -> Exception | None:
        """Try one port. None on success, else the reported error."""
        outcome: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_listening() -> None:
            if not outcome.done():
                outcome.set_result(None)

        def on_error(error: Exception) -> None:
            if not outcome.done():
                outcome.set_result(error)

        handle = self._create_server(port, on_listening, on_error)
        handle.set_on_request_handler(self.router.handle_request)
        error = await outcome
        if error is None:
            self._handle = handle
            self.router.handle = handle
        return error

    async def stop(self) -> None:
        """Stop the current preview server, if any."""
        handle = self._handle
        self._handle = None
        if handle is not None:
            await handle.stop()
        self.state = ServerState.STOPPED

    def relative_path(self) -> str:
        return self.router.relative_path() if self.router else ""

    def open_browser(self) -> None:
        session = self.session
        if session is None:
            return

        active = session.active_file
        if session.path_name is None and not (active and active.location):
            path = UNSAVED_FILE_PATH
        else:
            path = quote(self.relative_path(), safe="/:")

        self.url = f"http://{self.config.preview_host}:{session.port}/{path}"
        self._opener(self.url, session.target, session.is_console)

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "url": self.url,
            "session": self.session.to_dict() if self.session else None,
            "queued_fetches": self.router.serializer.pending_count if self.router else 0,
        }


# Global runner instance
_preview_runner: PreviewRunner | None = None


def get_preview_runner() -> PreviewRunner:
    """Get global preview runner instance."""
    global _preview_runner
    if _preview_runner is None:
        _preview_runner = PreviewRunner()
    return _preview_runner
