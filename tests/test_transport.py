"""Tests for the loopback preview transport."""

import asyncio
import socket

import httpx

from transport import (
    NOT_FOUND_BODY,
    ServerAlreadyRunning,
    ServerHandle,
    ServerResponse,
    create_server,
    not_found_response,
)


class Callbacks:
    def __init__(self):
        self.listening = 0
        self.errors = []

    def on_listening(self) -> None:
        self.listening += 1

    def on_error(self, error: Exception) -> None:
        self.errors.append(error)


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def make_handle(port: int = 0) -> tuple[ServerHandle, Callbacks]:
    callbacks = Callbacks()
    handle = ServerHandle(port, callbacks.on_listening, callbacks.on_error)
    return handle, callbacks


def asgi_client(handle: ServerHandle) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=handle.app), base_url="http://preview")


def test_server_response_content_type() -> None:
    response = ServerResponse(headers={"content-type": "text/css"})
    assert response.content_type == "text/css"
    assert ServerResponse().content_type is None

    missing = not_found_response()
    assert missing.status == 404
    assert missing.body == NOT_FOUND_BODY
    assert missing.content_type == "text/plain"


def test_dispatch_hands_path_to_handler() -> None:
    handle, _ = make_handle()
    seen = []

    async def handler(request):
        seen.append(request.path)
        await handle.send(
            request.request_id,
            ServerResponse(body=f"served {request.path}", headers={"Content-Type": "text/plain"}),
        )

    handle.set_on_request_handler(handler)

    async def scenario():
        async with asgi_client(handle) as client:
            return await client.get("/css/site.css?v=2")

    response = asyncio.run(scenario())
    assert response.status_code == 200
    assert response.text == "served /css/site.css"
    assert response.headers["content-type"].startswith("text/plain")
    assert seen == ["/css/site.css"]
    assert handle._pending == {}


def test_late_answer_is_awaited() -> None:
    """The HTTP response waits for an answer sent after the handler returned."""
    handle, _ = make_handle()

    async def handler(request):
        async def answer():
            await asyncio.sleep(0.01)
            await handle.send(request.request_id, ServerResponse(body="<p>late</p>"))

        asyncio.create_task(answer())

    handle.set_on_request_handler(handler)

    async def scenario():
        async with asgi_client(handle) as client:
            return await client.get("/index.html")

    response = asyncio.run(scenario())
    assert response.text == "<p>late</p>"
    assert response.headers["content-type"].startswith("text/html")


def test_file_responses(tmp_path) -> None:
    handle, _ = make_handle()
    asset = tmp_path / "app.js"
    asset.write_text("run()")
    paths = {"/app.js": str(asset), "/gone.js": str(tmp_path / "gone.js")}

    async def handler(request):
        await handle.send(
            request.request_id,
            ServerResponse(path=paths[request.path], headers={"Content-Type": "application/javascript"}),
        )

    handle.set_on_request_handler(handler)

    async def scenario():
        async with asgi_client(handle) as client:
            return await client.get("/app.js"), await client.get("/gone.js")

    found, gone = asyncio.run(scenario())
    assert found.status_code == 200
    assert found.text == "run()"
    assert found.headers["content-type"].startswith("application/javascript")
    assert gone.status_code == 404
    assert gone.text == NOT_FOUND_BODY


def test_handler_errors_become_404() -> None:
    handle, _ = make_handle()

    async def handler(request):
        raise RuntimeError("boom")

    handle.set_on_request_handler(handler)

    async def scenario():
        async with asgi_client(handle) as client:
            return await client.get("/index.html")

    response = asyncio.run(scenario())
    assert response.status_code == 404
    assert response.text == NOT_FOUND_BODY


def test_no_handler_is_404() -> None:
    handle, _ = make_handle()

    async def scenario():
        async with asgi_client(handle) as client:
            return await client.get("/")

    assert asyncio.run(scenario()).status_code == 404


def test_stop_answers_pending_requests() -> None:
    handle, _ = make_handle()

    async def handler(request):
        pass

    handle.set_on_request_handler(handler)

    async def scenario():
        async with asgi_client(handle) as client:
            pending = asyncio.create_task(client.get("/never"))
            while not handle._pending:
                await asyncio.sleep(0)
            await handle.stop()
            return await pending

    response = asyncio.run(scenario())
    assert response.status_code == 404


def test_send_to_unknown_request_is_ignored() -> None:
    handle, _ = make_handle()
    asyncio.run(handle.send("unknown", ServerResponse(body="x")))


def test_bind_conflict_reports_error() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
        blocker.bind(("127.0.0.1", 0))
        blocker.listen()
        port = blocker.getsockname()[1]

        handle, callbacks = make_handle(port)
        asyncio.run(handle.start())

    assert callbacks.listening == 0
    assert len(callbacks.errors) == 1
    assert isinstance(callbacks.errors[0], OSError)
    assert not isinstance(callbacks.errors[0], ServerAlreadyRunning)


def test_serve_and_stop_over_loopback() -> None:
    port = free_port()

    async def scenario():
        first = Callbacks()
        handle = create_server(port, first.on_listening, first.on_error)

        async def handler(request):
            await handle.send(request.request_id, ServerResponse(body="hello"))

        handle.set_on_request_handler(handler)
        await handle.startup
        assert first.listening == 1
        assert handle.is_listening

        async with httpx.AsyncClient() as client:
            response = await client.get(f"http://127.0.0.1:{port}/index.html")
        assert response.text == "hello"

        second = Callbacks()
        duplicate = create_server(port, second.on_listening, second.on_error)
        await duplicate.startup
        assert second.listening == 0
        assert isinstance(second.errors[0], ServerAlreadyRunning)

        await handle.stop()
        assert not handle.is_listening

        third = Callbacks()
        again = create_server(port, third.on_listening, third.on_error)
        await again.startup
        assert third.listening == 1
        await again.stop()

    asyncio.run(scenario())
