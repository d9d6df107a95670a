"""Serialized fetching of non-local files into the preview cache.

Remote files are never streamed straight from their backing store: they are
read once, written to the cache directory and served from there. At most one
such fetch runs per session; requests arriving meanwhile wait in a FIFO queue.
"""

import asyncio
import hashlib
import inspect
import logging
import shutil
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

from content import lookup_mime
from filesystem import FileSystemError, fs_operation
from transport import ServerResponse, not_found_response
from uris import UriKind, parse_uri, strip_query, to_local_path

logger = logging.getLogger(__name__)

Sender = Callable[[str, ServerResponse], Awaitable[None]]
Deliver = Callable[[str, str], Awaitable[None]]
UriFormatter = Callable[[str], "str | Awaitable[str]"]

ANDROID_PRIMARY_STORAGE = "/storage/emulated/0"


def format_content_uri(uri: str) -> str:
    """Filesystem path behind a content:// document URI.

    Understands the ``::`` document suffix used for tree URIs, either an
    absolute path or a ``primary:`` storage volume path.
    """
    parsed = parse_uri(uri)
    real_path = parsed.real_path
    if not real_path:
        raise FileSystemError(f"Cannot map {uri} to a file path")
    if real_path.startswith("/"):
        return real_path
    if real_path.startswith("primary:"):
        return f"{ANDROID_PRIMARY_STORAGE}/{real_path[len('primary:'):].lstrip('/')}"
    raise FileSystemError(f"Cannot map {uri} to a file path")


def cache_file_name(uri: str) -> str:
    """Stable cache filename for a URI."""
    digest = hashlib.sha1(uri.encode("utf-8")).hexdigest()
    parsed = parse_uri(uri)
    if parsed.kind.is_remote:
        return f"{parsed.scheme}{digest}"
    return digest


async def clear_cache(cache_dir: Path) -> bool:
    """Delete every cached file. Returns False when there was nothing to delete."""
    if not cache_dir.exists():
        return False
    await asyncio.to_thread(shutil.rmtree, cache_dir)
    logger.info(f"Cleared preview cache {cache_dir}")
    return True


@dataclass(eq=False)
class PendingFetch:
    """A queued request for a non-local file."""

    uri: str
    request_id: str
    deliver: Deliver | None = None


class FetchSerializer:
    """One-at-a-time fetch queue of a preview session.

    Each caller waits for its turn, handles its own job and hands over to the
    next caller. Waiters are woken in arrival order, so jobs run FIFO.
    """

    def __init__(
        self,
        send: Sender,
        cache_dir: Path,
        format_uri: UriFormatter | None = None,
    ):
        self._send = send
        self.cache_dir = Path(cache_dir)
        self._format_uri = format_uri or format_content_uri
        self._pending: deque[PendingFetch] = deque()
        self._turn = asyncio.Lock()
        # Cache files shared with requests still queued for the same URI
        self._materialized: dict[str, str] = {}

    @property
    def in_flight(self) -> bool:
        return self._turn.locked()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def serve(self, uri: str, request_id: str) -> None:
        """Stream a file, fetching it into the cache first when needed."""
        await self._enqueue(PendingFetch(uri=uri, request_id=request_id))

    async def serve_inline(self, uri: str, request_id: str, deliver: Deliver) -> None:
        """Like ``serve`` but hands the local path to ``deliver`` instead of streaming it."""
        await self._enqueue(PendingFetch(uri=uri, request_id=request_id, deliver=deliver))

    async def _enqueue(self, job: PendingFetch) -> None:
        self._pending.append(job)
        if self._turn.locked():
            logger.debug(f"Fetch in flight, queued {job.uri} ({len(self._pending)} waiting)")

        try:
            await self._turn.acquire()
        finally:
            self._pending.remove(job)

        try:
            await self._process(job)
        finally:
            if not any(waiting.uri == job.uri for waiting in self._pending):
                self._materialized.pop(job.uri, None)
            self._turn.release()

    async def _process(self, job: PendingFetch) -> None:
        try:
            path = await self.materialize(job.uri)
        except Exception as e:
            logger.warning(f"Fetching {job.uri} failed: {e}")
            await self._send(job.request_id, not_found_response())
            return

        if job.deliver is not None:
            try:
                await job.deliver(job.request_id, path)
            except Exception as e:
                logger.exception(f"Delivering {job.uri} failed: {e}")
                await self._send(job.request_id, not_found_response())
            return

        await self._send(
            job.request_id,
            ServerResponse(
                status=200,
                path=path,
                headers={"Content-Type": lookup_mime(strip_query(job.uri))},
            ),
        )

    async def materialize(self, uri: str) -> str:
        """Local path holding the content of ``uri``."""
        parsed = parse_uri(uri)
        if parsed.kind is UriKind.FILE:
            return to_local_path(uri)

        if parsed.kind in (UriKind.CONTENT, UriKind.TERMUX):
            result = self._format_uri(uri)
            if inspect.isawaitable(result):
                result = await result
            return result

        cached = self._materialized.get(uri)
        if cached is not None:
            logger.debug(f"Serving {uri} from cache {cached}")
            return cached

        data = await fs_operation(uri).read_file()
        path = await self._write_cache(cache_file_name(uri), data)
        self._materialized[uri] = path
        return path

    async def _write_cache(self, name: str, data: bytes) -> str:
        cache = fs_operation(str(self.cache_dir))
        if not await cache.exists():
            await fs_operation(str(self.cache_dir.parent)).create_directory(self.cache_dir.name)

        target = self.cache_dir / name
        target_fs = fs_operation(str(target))
        if await target_fs.exists():
            await target_fs.write_file(data)
        else:
            await cache.create_file(name, data)
        return str(target)
