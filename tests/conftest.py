"""Shared fixtures: config files, an in-memory remote filesystem and a fake transport."""

import asyncio
import errno
import uuid

import pytest
import yaml

from config import Config
from editor import EditorFile, EditorManager, OpenFolders
from filesystem import (
    FileOperation,
    FileStat,
    RemoteReadError,
    register_scheme,
    unregister_scheme,
)
from transport import RequestDescriptor, ServerAlreadyRunning, ServerResponse
from uris import basename, join, strip_query


@pytest.fixture
def make_config(tmp_path):
    """Build a Config from preview settings written to a temporary YAML file."""

    def _make(**preview) -> Config:
        settings = {
            "cache_dir": str(tmp_path / "cache"),
            "data_dir": str(tmp_path / "data"),
        }
        settings.update(preview)
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"preview": settings}))
        return Config(path)

    return _make


@pytest.fixture
def config(make_config) -> Config:
    return make_config()


@pytest.fixture
def project(tmp_path):
    """A small on-disk project."""
    root = tmp_path / "proj"
    (root / "src").mkdir(parents=True)
    (root / "css").mkdir()
    (root / "docs").mkdir()
    (root / "src" / "index.html").write_text("<html><head><title>Saved</title></head><body>disk</body></html>")
    (root / "css" / "style.css").write_text("body { color: red; }")
    (root / "docs" / "index.html").write_text("<p>docs</p>")
    (root / "report.md").write_text("# Report")
    return root


@pytest.fixture
def editor_manager() -> EditorManager:
    return EditorManager()


@pytest.fixture
def folders() -> OpenFolders:
    return OpenFolders()


def open_file(manager: EditorManager, uri: str | None, text: str = "", **kwargs) -> EditorFile:
    filename = kwargs.pop("filename", None) or basename(uri or "untitled.txt")
    activate = kwargs.pop("activate", True)
    return manager.open(EditorFile(filename=filename, uri=uri, text=text, **kwargs), activate=activate)


class MemoryFileSystem:
    """Remote backing store kept in memory, counting reads."""

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.directories: set[str] = set()
        self.failing: set[str] = set()
        # Reads of these URIs wait until the event is set
        self.gates: dict[str, asyncio.Event] = {}
        self.reads: list[str] = []

    def add(self, uri: str, data: bytes | str) -> None:
        self.files[strip_query(uri)] = data.encode("utf-8") if isinstance(data, str) else data

    def factory(self, uri: str) -> "MemoryFileOperation":
        return MemoryFileOperation(self, uri)


class MemoryFileOperation(FileOperation):
    def __init__(self, store: MemoryFileSystem, uri: str):
        super().__init__(uri)
        self.store = store
        self.key = strip_query(uri).rstrip("/")

    async def exists(self) -> bool:
        return self.key in self.store.files or self.key in self.store.directories

    async def stat(self) -> FileStat:
        name = basename(self.key)
        if self.key in self.store.files:
            return FileStat(name=name, uri=self.uri, is_file=True, size=len(self.store.files[self.key]))
        if self.key in self.store.directories:
            return FileStat(name=name, uri=self.uri, is_directory=True)
        return FileStat(name=name, uri=self.uri, exists=False)

    async def _read_bytes(self) -> bytes:
        self.store.reads.append(self.key)
        gate = self.store.gates.get(self.key)
        if gate is not None:
            await gate.wait()
        await asyncio.sleep(0)
        if self.key in self.store.failing or self.key not in self.store.files:
            raise RemoteReadError(f"cannot read {self.key}")
        return self.store.files[self.key]

    async def write_file(self, data: bytes | str) -> None:
        self.store.add(self.key, data)

    async def create_file(self, name: str, data: bytes | str = b"") -> str:
        target = join(self.key, name)
        self.store.add(target, data)
        return target

    async def create_directory(self, name: str) -> str:
        target = join(self.key, name)
        self.store.directories.add(target)
        return target


@pytest.fixture
def remote_fs():
    """In-memory backend registered for sftp:// and ftp:// URIs."""
    store = MemoryFileSystem()
    register_scheme("sftp", store.factory)
    register_scheme("ftp", store.factory)
    yield store
    unregister_scheme("sftp")
    unregister_scheme("ftp")


class FakeServerHandle:
    """Server handle recording responses instead of talking HTTP."""

    def __init__(self, port: int):
        self.port = port
        self.handler = None
        self.responses: dict[str, ServerResponse] = {}
        self.stopped = False

    def set_on_request_handler(self, handler) -> None:
        self.handler = handler

    async def send(self, request_id: str, response: ServerResponse) -> None:
        self.responses[request_id] = response

    async def stop(self) -> None:
        self.stopped = True

    async def request(self, path: str) -> ServerResponse:
        request_id = uuid.uuid4().hex
        await self.handler(RequestDescriptor(request_id=request_id, path=path))
        return self.responses[request_id]


class FakeTransport:
    """Server factory with configurable busy ports."""

    def __init__(self, busy_ports=(), owned_ports=()):
        self.busy_ports = set(busy_ports)
        self.owned_ports = set(owned_ports)
        self.attempts: list[int] = []
        self.handles: list[FakeServerHandle] = []

    def __call__(self, port, on_listening, on_error) -> FakeServerHandle:
        self.attempts.append(port)
        handle = FakeServerHandle(port)
        if port in self.owned_ports:
            on_error(ServerAlreadyRunning(f"Server already running on port {port}"))
        elif port in self.busy_ports:
            on_error(OSError(errno.EADDRINUSE, "Address already in use"))
        else:
            self.handles.append(handle)
            on_listening()
        return handle

    @property
    def current(self) -> FakeServerHandle:
        return self.handles[-1]


class RecordingOpener:
    def __init__(self):
        self.calls: list[tuple[str, str, bool]] = []

    def __call__(self, url: str, target: str, is_console: bool = False) -> None:
        self.calls.append((url, target, is_console))


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def opener() -> RecordingOpener:
    return RecordingOpener()
