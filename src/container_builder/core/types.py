"""Type definitions shared by the registry wire layer."""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol, Union

import aiofiles
from multidict import CIMultiDict, CIMultiDictProxy

_STREAM_CHUNK_SIZE = 1024 * 256


@dataclass(frozen=True)
class RequestResult:
    """Status, headers and body of a completed registry request."""

    status_code: int
    headers: Union[CIMultiDict, CIMultiDictProxy] = field(default_factory=CIMultiDict)
    data: bytes = b""
    url: str = ""

    @property
    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass(frozen=True)
class StartUploadInformation:
    """Where to send blob content, and the chunk size the registry asked for."""

    upload_uri: str
    registry_declared_chunk_size: Optional[int] = None


@dataclass(frozen=True)
class FinalizeUploadInformation:
    """Where to PUT to close an upload session, and the digest of what was sent."""

    upload_uri: str
    digest: Optional[str] = None


class BlobSource(Protocol):
    """Random-access readable blob content."""

    size: int

    async def read_at(self, offset: int, length: int) -> bytes: ...

    def iter_chunks(self, chunk_size: int = _STREAM_CHUNK_SIZE) -> AsyncIterator[bytes]: ...


class BytesBlobSource:
    """Blob content held in memory (configs, manifests, tests)."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self.size = len(self._data)

    async def read_at(self, offset: int, length: int) -> bytes:
        return self._data[offset : offset + length]

    async def iter_chunks(self, chunk_size: int = _STREAM_CHUNK_SIZE) -> AsyncIterator[bytes]:
        for start in range(0, self.size, chunk_size):
            yield self._data[start : start + chunk_size]


class FileBlobSource:
    """Blob content read from a file on disk."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self.size = self.path.stat().st_size
        self._lock = asyncio.Lock()

    async def read_at(self, offset: int, length: int) -> bytes:
        async with self._lock:
            async with aiofiles.open(self.path, "rb") as f:
                await f.seek(offset)
                return await f.read(length)

    async def iter_chunks(self, chunk_size: int = _STREAM_CHUNK_SIZE) -> AsyncIterator[bytes]:
        async with aiofiles.open(self.path, "rb") as f:
            while True:
                chunk = await f.read(chunk_size)
                if not chunk:
                    break
                yield chunk
