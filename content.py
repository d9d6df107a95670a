"""Content resolution: which source answers a preview request.

``ContentResolver.resolve`` only classifies. It returns exactly one of the
target types below and never raises for a path it cannot serve; moving bytes
is left to the router.
"""

import logging
import mimetypes
from dataclasses import dataclass

from config import CONSOLE_LEGACY, Config
from editor import EditorFile, EditorManager, OpenFolders
from filesystem import FileSystemError, fs_operation
from paths import map_request_path
from session import PreviewSession
from transform import render_console_page, render_markdown_page
from uris import UriKind, basename, extname, join, parse_uri, split_query, strip_query, to_local_path

logger = logging.getLogger(__name__)

MIMETYPE_HTML = "text/html"
MIMETYPE_JS = "application/javascript"
MIMETYPE_CSS = "text/css"
DEFAULT_MARKDOWN_CSS = "img {max-width: 100%;}"
# Browser path of a document that has never been saved
UNSAVED_FILE_PATH = "__unsaved_file__"

MIME_TYPES = {
    ".html": "text/html",
    ".htm": "text/html",
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".css": "text/css",
    ".json": "application/json",
    ".md": "text/markdown",
    ".txt": "text/plain",
    ".xml": "application/xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".eot": "application/vnd.ms-fontobject",
    ".wasm": "application/wasm",
}


def lookup_mime(path: str, default: str = "application/octet-stream") -> str:
    """Content type for a path, by extension."""
    ext = extname(path)
    if not ext:
        return default
    if ext in MIME_TYPES:
        return MIME_TYPES[ext]
    guessed, _ = mimetypes.guess_type(f"file{ext}")
    return guessed or default


@dataclass
class BufferedDocument:
    """Live editor text. ``instrument`` marks HTML that gets the console block."""

    text: str
    mime: str
    instrument: bool = False


@dataclass
class LocalFile:
    """A file on local disk, streamed, or read as text when ``inline``."""

    path: str
    mime: str
    inline: bool = False


@dataclass
class RemoteFile:
    """A non-local file that has to be materialized in the cache first."""

    uri: str
    scheme: str
    mime: str
    inline: bool = False


@dataclass
class SyntheticDocument:
    body: str
    mime: str


@dataclass
class NotFound:
    reason: str = "File not found!"


ResolvedTarget = BufferedDocument | LocalFile | RemoteFile | SyntheticDocument | NotFound


def file_target(uri: str, mime: str, inline: bool = False) -> LocalFile | RemoteFile:
    parsed = parse_uri(uri)
    if parsed.kind is UriKind.FILE:
        return LocalFile(path=to_local_path(uri), mime=mime, inline=inline)
    return RemoteFile(uri=uri, scheme=parsed.scheme, mime=mime, inline=inline)


class ContentResolver:
    """Resolves request paths for one preview session."""

    def __init__(
        self,
        session: PreviewSession,
        config: Config,
        editor_manager: EditorManager,
        folders: OpenFolders,
    ):
        self.session = session
        self.config = config
        self.editor = editor_manager
        self.folders = folders

    @property
    def favicon_path(self) -> str:
        return str(self.config.assets_dir / "favicon.ico")

    def _favicon(self) -> LocalFile:
        return LocalFile(path=self.favicon_path, mime=MIME_TYPES[".ico"])

    async def resolve(self, request_path: str) -> ResolvedTarget:
        session = self.session

        if request_path == session.executing_script:
            active = session.active_file
            return BufferedDocument(text=active.text if active else "", mime=MIMETYPE_JS)

        if request_path == session.console_script:
            return await self._console_script()

        if request_path == session.markdown_style:
            style = self.config.markdown_style
            if style:
                return LocalFile(path=to_local_path(style), mime=MIMETYPE_CSS, inline=True)
            return SyntheticDocument(body=DEFAULT_MARKDOWN_CSS, mime=MIMETYPE_CSS)

        return await self._resolve_by_extension(request_path)

    async def _console_script(self) -> SyntheticDocument | NotFound:
        legacy = self.config.assets_dir / "console.js"
        inspector = self.config.data_dir / "eruda.js"

        if self.session.is_console or self.config.console == CONSOLE_LEGACY:
            candidates = [legacy]
        else:
            candidates = [inspector, legacy]

        for path in candidates:
            try:
                text = await fs_operation(str(path)).read_file(self.config.default_file_encoding)
            except FileSystemError as e:
                if path == inspector:
                    logger.warning(f"Inspector console not available, using legacy console: {e}")
                else:
                    logger.error(f"Console script missing: {e}")
                continue
            return SyntheticDocument(body=text, mime=MIMETYPE_JS)

        return NotFound()

    async def _resolve_by_extension(self, request_path: str) -> ResolvedTarget:
        session = self.session
        ext = extname(request_path)

        if session.is_console:
            if request_path == "console.html":
                page = render_console_page(session.console_script, session.executing_script)
                return SyntheticDocument(body=page, mime=MIMETYPE_HTML)
            if request_path == "favicon.ico":
                return self._favicon()

        active = session.active_file
        if active is None:
            return NotFound()

        if request_path == UNSAVED_FILE_PATH:
            ext = active.extension

        if active.mode == "single":
            if session.filename == request_path:
                return BufferedDocument(text=active.text, mime=lookup_mime(session.filename))
            return NotFound()

        if request_path == "favicon.ico" and not session.path_name:
            return self._favicon()

        url = active.uri
        file: EditorFile | None = active if active.saf_mode == "single" else None

        if session.path_name:
            query = split_query(url)[1] if url else ""
            full_path = map_request_path(session.path_name, self.folders, request_path)

            try:
                stats = await fs_operation(full_path).stat()
            except FileSystemError as e:
                logger.warning(f"Cannot stat {full_path}: {e}")
                stats = None

            if stats is None or not stats.exists:
                if basename(request_path) == "favicon.ico":
                    return self._favicon()
                logger.debug(f"{full_path} does not exist")
                return NotFound()

            if not stats.is_file:
                full_path = join(full_path, "index.html")
                ext = extname(full_path)

            url = f"{full_path}?{query}" if query else full_path
            file = self.editor.get_file(url)
        elif not active.uri:
            file = active

        if ext in (".html", ".htm"):
            if file is not None and file.loaded and file.is_unsaved:
                return BufferedDocument(text=file.text, mime=MIMETYPE_HTML, instrument=True)
            if not url:
                return NotFound()
            return file_target(url, MIMETYPE_HTML, inline=True)

        if ext == ".md":
            if file is None:
                logger.debug(f"No open document for {request_path}, markdown needs one")
                return NotFound()
            page = render_markdown_page(file.text, file.filename, session.markdown_style)
            return SyntheticDocument(body=page, mime=MIMETYPE_HTML)

        if file is not None and file.loaded and file.is_unsaved:
            if file.filename.endswith(".html"):
                return BufferedDocument(text=file.text, mime=MIMETYPE_HTML, instrument=True)
            return BufferedDocument(text=file.text, mime=lookup_mime(file.filename))

        if url:
            return file_target(url, lookup_mime(strip_query(url)))

        return NotFound()
