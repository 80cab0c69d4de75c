"""Byte stream handles returned to callers of get/put."""

from __future__ import annotations

import asyncio
import tempfile
from abc import ABC, abstractmethod
from typing import IO, AsyncIterator, Awaitable, Callable

import httpx

DEFAULT_CHUNK_SIZE = 64 * 1024
SPOOL_MAX_BYTES = 8 * 1024 * 1024


class ObjectReader(ABC):
    """Readable byte stream owned by the caller.

    Use as ``async with reader:`` or call ``aclose()`` explicitly.
    """

    closed = False

    @abstractmethod
    async def read(self, size: int = -1) -> bytes:
        pass

    @abstractmethod
    async def aclose(self) -> None:
        pass

    async def iter_chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.read(chunk_size)
            if not chunk:
                return
            yield chunk

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self.iter_chunks()

    async def __aenter__(self) -> "ObjectReader":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


class ObjectWriter(ABC):
    """Writable byte sink owned by the caller.

    Content becomes visible when ``aclose()`` succeeds. Leaving an
    ``async with`` block with an exception discards it instead.
    """

    closed = False

    @abstractmethod
    async def write(self, data: bytes) -> int:
        pass

    @abstractmethod
    async def aclose(self) -> None:
        pass

    @abstractmethod
    async def abort(self) -> None:
        pass

    async def __aenter__(self) -> "ObjectWriter":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            await self.abort()
        else:
            await self.aclose()


class FileObjectReader(ObjectReader):
    """Reader over a blocking file-like object (local file, boto3 body)."""

    def __init__(self, handle: IO[bytes]):
        self._handle = handle

    async def read(self, size: int = -1) -> bytes:
        if self.closed:
            raise ValueError("read on closed object reader")
        return await asyncio.to_thread(self._handle.read, size)

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        await asyncio.to_thread(self._handle.close)


class HttpObjectReader(ObjectReader):
    """Reader over a streaming httpx response."""

    def __init__(self, response: httpx.Response):
        self._response = response
        self._chunks = response.aiter_bytes()
        self._buffer = b""

    async def read(self, size: int = -1) -> bytes:
        if self.closed:
            raise ValueError("read on closed object reader")
        if size is None or size < 0:
            parts = [self._buffer]
            async for chunk in self._chunks:
                parts.append(chunk)
            self._buffer = b""
            return b"".join(parts)

        while len(self._buffer) < size:
            try:
                chunk = await self._chunks.__anext__()
            except StopAsyncIteration:
                break
            self._buffer += chunk
        data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._response.aclose()


class SpooledObjectWriter(ObjectWriter):
    """Buffers written bytes, then hands the spool to ``commit`` on close.

    Small payloads stay in memory; larger ones roll over to a temp file.
    """

    def __init__(
        self,
        commit: Callable[[IO[bytes], int], Awaitable[None]],
        max_memory: int = SPOOL_MAX_BYTES,
    ):
        self._commit = commit
        self._spool = tempfile.SpooledTemporaryFile(max_size=max_memory)
        self._size = 0

    @property
    def size(self) -> int:
        return self._size

    async def write(self, data: bytes) -> int:
        if self.closed:
            raise ValueError("write on closed object writer")
        written = self._spool.write(data)
        self._size += written
        return written

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._spool.seek(0)
            await self._commit(self._spool, self._size)
        finally:
            self._spool.close()

    async def abort(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._spool.close()


async def iter_spool(spool: IO[bytes], chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    while True:
        chunk = spool.read(chunk_size)
        if not chunk:
            return
        yield chunk
