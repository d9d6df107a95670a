"""Uniform file access for local, FTP and HTTP backed documents.

``fs_operation(uri)`` returns a ``FileOperation`` whatever the backing store.
Schemes without a built-in backend (``sftp``, ``content``) are plugged in by the
host application through ``register_scheme``.
"""

import asyncio
import ftplib
import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable
from urllib.parse import unquote, urlparse

import httpx

from uris import basename, join, protocol, strip_query, to_local_path

logger = logging.getLogger(__name__)

FTP_TIMEOUT = 30.0
HTTP_TIMEOUT = 30.0


class FileSystemError(Exception):
    """A filesystem operation failed."""


class RemoteReadError(FileSystemError):
    """Reading from a remote backing store failed."""


class UnsupportedSchemeError(FileSystemError):
    """No backend is registered for the URI scheme."""


@dataclass
class FileStat:
    """Result of a stat call. Missing files report exists=False."""

    name: str
    uri: str
    exists: bool = True
    is_file: bool = False
    is_directory: bool = False
    size: int = 0


class FileOperation(ABC):
    """Operations available on one URI."""

    def __init__(self, uri: str):
        self.uri = uri

    @abstractmethod
    async def exists(self) -> bool: ...

    @abstractmethod
    async def stat(self) -> FileStat: ...

    @abstractmethod
    async def _read_bytes(self) -> bytes: ...

    @abstractmethod
    async def write_file(self, data: bytes | str) -> None: ...

    @abstractmethod
    async def create_file(self, name: str, data: bytes | str = b"") -> str: ...

    @abstractmethod
    async def create_directory(self, name: str) -> str: ...

    async def read_file(self, encoding: str | None = None) -> bytes | str:
        """Read the whole file, decoded when an encoding is given."""
        data = await self._read_bytes()
        if encoding:
            return data.decode(encoding, errors="replace")
        return data


def _to_bytes(data: bytes | str) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else data


class LocalFileOperation(FileOperation):
    """Plain paths and file:// URIs."""

    def __init__(self, uri: str):
        super().__init__(uri)
        self.path = Path(to_local_path(uri))

    async def exists(self) -> bool:
        return await asyncio.to_thread(self.path.exists)

    async def stat(self) -> FileStat:
        def _stat() -> FileStat:
            if not self.path.exists():
                return FileStat(name=self.path.name, uri=self.uri, exists=False)
            is_file = self.path.is_file()
            try:
                size = self.path.stat().st_size if is_file else 0
            except OSError:
                size = 0
            return FileStat(
                name=self.path.name,
                uri=self.uri,
                is_file=is_file,
                is_directory=self.path.is_dir(),
                size=size,
            )

        return await asyncio.to_thread(_stat)

    async def _read_bytes(self) -> bytes:
        try:
            return await asyncio.to_thread(self.path.read_bytes)
        except OSError as e:
            raise FileSystemError(f"Cannot read {self.path}: {e}") from e

    async def write_file(self, data: bytes | str) -> None:
        try:
            await asyncio.to_thread(self.path.write_bytes, _to_bytes(data))
        except OSError as e:
            raise FileSystemError(f"Cannot write {self.path}: {e}") from e

    async def create_file(self, name: str, data: bytes | str = b"") -> str:
        target = self.path / name
        try:
            await asyncio.to_thread(target.write_bytes, _to_bytes(data))
        except OSError as e:
            raise FileSystemError(f"Cannot create {target}: {e}") from e
        return str(target)

    async def create_directory(self, name: str) -> str:
        target = self.path / name
        try:
            await asyncio.to_thread(target.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise FileSystemError(f"Cannot create directory {target}: {e}") from e
        return str(target)


class FtpFileOperation(FileOperation):
    """ftp:// URIs, served by ftplib in a worker thread.

    The query string carries connection options in the editor's URIs and is
    never part of the remote path.
    """

    def __init__(self, uri: str):
        super().__init__(uri)
        parsed = urlparse(strip_query(uri))
        self.host = parsed.hostname or ""
        self.port = parsed.port or 21
        self.username = unquote(parsed.username) if parsed.username else "anonymous"
        self.password = unquote(parsed.password) if parsed.password else ""
        self.remote_path = unquote(parsed.path) or "/"

    def _connect(self) -> ftplib.FTP:
        ftp = ftplib.FTP()
        ftp.connect(self.host, self.port, timeout=FTP_TIMEOUT)
        ftp.login(self.username, self.password)
        return ftp

    async def _run(self, func: Callable[[ftplib.FTP], object]):
        def _call():
            ftp = self._connect()
            try:
                return func(ftp)
            finally:
                try:
                    ftp.quit()
                except ftplib.all_errors:
                    ftp.close()

        try:
            return await asyncio.to_thread(_call)
        except ftplib.all_errors as e:
            raise RemoteReadError(f"FTP operation on {self.host}{self.remote_path} failed: {e}") from e

    def _stat_sync(self, ftp: ftplib.FTP) -> FileStat:
        name = basename(self.remote_path)
        try:
            size = ftp.size(self.remote_path)
            return FileStat(name=name, uri=self.uri, is_file=True, size=size or 0)
        except ftplib.error_perm:
            pass
        try:
            ftp.cwd(self.remote_path)
            return FileStat(name=name, uri=self.uri, is_directory=True)
        except ftplib.error_perm:
            return FileStat(name=name, uri=self.uri, exists=False)

    async def exists(self) -> bool:
        return (await self.stat()).exists

    async def stat(self) -> FileStat:
        return await self._run(self._stat_sync)

    async def _read_bytes(self) -> bytes:
        def _retrieve(ftp: ftplib.FTP) -> bytes:
            buffer = io.BytesIO()
            ftp.retrbinary(f"RETR {self.remote_path}", buffer.write)
            return buffer.getvalue()

        return await self._run(_retrieve)

    async def write_file(self, data: bytes | str) -> None:
        payload = _to_bytes(data)
        await self._run(
            lambda ftp: ftp.storbinary(f"STOR {self.remote_path}", io.BytesIO(payload))
        )

    async def create_file(self, name: str, data: bytes | str = b"") -> str:
        target = join(self.remote_path, name)
        payload = _to_bytes(data)
        await self._run(lambda ftp: ftp.storbinary(f"STOR {target}", io.BytesIO(payload)))
        return join(strip_query(self.uri), name)

    async def create_directory(self, name: str) -> str:
        target = join(self.remote_path, name)
        await self._run(lambda ftp: ftp.mkd(target))
        return join(strip_query(self.uri), name)


class HttpFileOperation(FileOperation):
    """Read-only http(s):// URIs."""

    async def _request(self, method: str) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=HTTP_TIMEOUT, follow_redirects=True) as client:
                return await client.request(method, self.uri)
        except httpx.HTTPError as e:
            raise RemoteReadError(f"{method} {self.uri} failed: {e}") from e

    async def exists(self) -> bool:
        return (await self.stat()).exists

    async def stat(self) -> FileStat:
        response = await self._request("HEAD")
        name = basename(self.uri)
        if response.status_code >= 400:
            return FileStat(name=name, uri=self.uri, exists=False)
        try:
            size = int(response.headers.get("content-length", 0))
        except ValueError:
            size = 0
        return FileStat(name=name, uri=self.uri, is_file=True, size=size)

    async def _read_bytes(self) -> bytes:
        response = await self._request("GET")
        if response.status_code >= 400:
            raise RemoteReadError(f"GET {self.uri} returned {response.status_code}")
        return response.content

    async def write_file(self, data: bytes | str) -> None:
        raise FileSystemError(f"{self.uri} is read only")

    async def create_file(self, name: str, data: bytes | str = b"") -> str:
        raise FileSystemError(f"{self.uri} is read only")

    async def create_directory(self, name: str) -> str:
        raise FileSystemError(f"{self.uri} is read only")


FileOperationFactory = Callable[[str], FileOperation]

_DEFAULT_FACTORIES: dict[str, FileOperationFactory] = {
    "file": LocalFileOperation,
    "ftp": FtpFileOperation,
    "http": HttpFileOperation,
    "https": HttpFileOperation,
}

_factories: dict[str, FileOperationFactory] = dict(_DEFAULT_FACTORIES)


def register_scheme(scheme: str, factory: FileOperationFactory) -> None:
    """Register (or replace) the backend for a URI scheme."""
    _factories[scheme.lower().rstrip(":")] = factory
    logger.debug(f"Registered filesystem backend for {scheme}")


def unregister_scheme(scheme: str) -> None:
    """Remove a backend, restoring the built-in one if there is any."""
    scheme = scheme.lower().rstrip(":")
    if scheme in _DEFAULT_FACTORIES:
        _factories[scheme] = _DEFAULT_FACTORIES[scheme]
    else:
        _factories.pop(scheme, None)


def fs_operation(uri: str) -> FileOperation:
    """Get the file operations for a URI or path."""
    scheme = protocol(uri) or "file"
    factory = _factories.get(scheme)
    if factory is None:
        raise UnsupportedSchemeError(f"No filesystem backend for {scheme}: URIs")
    return factory(uri)
