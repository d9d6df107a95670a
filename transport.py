"""Loopback HTTP transport for the preview server.

The transport knows nothing about documents: every GET is turned into a
``RequestDescriptor`` handed to the installed request handler, and the HTTP
response is held open until the handler answers through ``send`` with the same
request id.
"""

import asyncio
import contextlib
import errno
import logging
import os
import socket
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, PlainTextResponse, Response

logger = logging.getLogger(__name__)

NOT_FOUND_BODY = "File not found!"


class ServerAlreadyRunning(Exception):
    """The port is already served by another handle of this process."""


@dataclass
class RequestDescriptor:
    """One request as seen by the router."""

    request_id: str
    path: str


@dataclass
class ServerResponse:
    """Answer to one request: a text ``body`` or a file ``path`` to stream."""

    status: int = 200
    body: str | bytes | None = None
    path: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def content_type(self) -> str | None:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return None


def not_found_response() -> ServerResponse:
    return ServerResponse(
        status=404,
        body=NOT_FOUND_BODY,
        headers={"Content-Type": "text/plain"},
    )


RequestHandler = Callable[[RequestDescriptor], Awaitable[None]]

# Ports served by live handles of this process
_owned_ports: dict[int, "ServerHandle"] = {}


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves process signal handling to the host."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class ServerHandle:
    """A preview server bound to one port."""

    def __init__(
        self,
        port: int,
        on_listening: Callable[[], None],
        on_error: Callable[[Exception], None],
        host: str = "127.0.0.1",
        log_level: str = "warning",
    ):
        self.port = port
        self.host = host
        self._on_listening = on_listening
        self._on_error = on_error
        self._log_level = log_level
        self._handler: RequestHandler | None = None
        self._pending: dict[str, asyncio.Future] = {}
        self._server: _EmbeddedServer | None = None
        self._serve_task: asyncio.Task | None = None
        self._socket: socket.socket | None = None
        self.startup: asyncio.Task | None = None
        self.app = self._build_app()

    def _build_app(self) -> FastAPI:
        app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

        @app.api_route("/{path:path}", methods=["GET", "HEAD"])
        async def handle(request: Request, path: str = ""):
            return await self.dispatch(request.scope.get("path", f"/{path}"))

        return app

    @property
    def is_listening(self) -> bool:
        return (
            self._server is not None
            and self._server.started
            and not self._server.should_exit
        )

    def set_on_request_handler(self, handler: RequestHandler) -> None:
        self._handler = handler

    async def dispatch(self, path: str) -> Response:
        """Hand one request to the handler and wait for its answer."""
        if self._handler is None:
            return PlainTextResponse(NOT_FOUND_BODY, status_code=404)

        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            try:
                await self._handler(RequestDescriptor(request_id=request_id, path=path))
            except Exception as e:
                logger.exception(f"Request handler failed for {path}: {e}")
                if not future.done():
                    future.set_result(not_found_response())
            response = await future
        finally:
            self._pending.pop(request_id, None)

        return self._to_http_response(response)

    async def send(self, request_id: str, response: ServerResponse) -> None:
        """Answer a pending request. Unknown or answered ids are ignored."""
        future = self._pending.get(request_id)
        if future is None or future.done():
            logger.debug(f"Dropping response for unknown request {request_id}")
            return
        future.set_result(response)

    def _to_http_response(self, response: ServerResponse) -> Response:
        media_type = response.content_type
        headers = {
            key: value for key, value in response.headers.items() if key.lower() != "content-type"
        }

        if response.path is not None:
            if not os.path.isfile(response.path):
                logger.warning(f"Response file missing: {response.path}")
                return PlainTextResponse(NOT_FOUND_BODY, status_code=404)
            return FileResponse(
                response.path,
                status_code=response.status,
                headers=headers,
                media_type=media_type,
            )

        return Response(
            content=response.body or "",
            status_code=response.status,
            headers=headers,
            media_type=media_type or "text/html",
        )

    def _bind(self) -> socket.socket:
        owner = _owned_ports.get(self.port)
        if owner is not None and owner is not self and owner.is_listening:
            raise ServerAlreadyRunning(f"Server already running on port {self.port}")

        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as e:
            sock.close()
            if e.errno == errno.EADDRINUSE and self.port in _owned_ports:
                raise ServerAlreadyRunning(f"Server already running on port {self.port}") from e
            raise
        return sock

    async def start(self) -> None:
        """Bind and serve, reporting through the on_listening/on_error callbacks."""
        try:
            self._socket = self._bind()
        except (ServerAlreadyRunning, OSError) as e:
            self._on_error(e)
            return

        config = uvicorn.Config(self.app, log_level=self._log_level, lifespan="off")
        self._server = _EmbeddedServer(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[self._socket]))

        while not self._server.started:
            if self._serve_task.done():
                error = self._serve_task.exception() if not self._serve_task.cancelled() else None
                self._release()
                self._on_error(error or OSError(f"Server on port {self.port} exited during startup"))
                return
            await asyncio.sleep(0.01)

        _owned_ports[self.port] = self
        logger.info(f"Preview server listening on {self.host}:{self.port}")
        self._on_listening()

    async def stop(self) -> None:
        """Stop accepting requests. In-flight requests are answered with 404."""
        for future in self._pending.values():
            if not future.done():
                future.set_result(not_found_response())

        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            try:
                await self._serve_task
            except Exception as e:
                logger.warning(f"Preview server on port {self.port} stopped with error: {e}")
            self._serve_task = None
        self._release()
        logger.info(f"Preview server on port {self.port} stopped")

    def _release(self) -> None:
        if _owned_ports.get(self.port) is self:
            del _owned_ports[self.port]
        if self._socket is not None:
            self._socket.close()
            self._socket = None


def create_server(
    port: int,
    on_listening: Callable[[], None],
    on_error: Callable[[Exception], None],
    host: str = "127.0.0.1",
    log_level: str = "warning",
) -> ServerHandle:
    """Create a preview server and start binding it in the background."""
    handle = ServerHandle(port, on_listening, on_error, host=host, log_level=log_level)
    handle.startup = asyncio.ensure_future(handle.start())
    return handle
