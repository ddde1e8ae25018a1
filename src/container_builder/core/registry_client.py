"""Registry HTTP API v2 wire client."""

import hashlib
import logging
import re
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import urljoin

import aiohttp

from ..exceptions import (
    BlobUploadError,
    ContainerHttpError,
    ManifestError,
    RepositoryNotFoundError,
    UnableToAccessRepositoryError,
)
from ..models.media_types import SUPPORTED_MANIFEST_ACCEPT
from ..utils.digest import Digest
from .config import RegistrySettings
from .context import RegistryClientContext
from .transport import RegistryTransport
from .types import BlobSource, FinalizeUploadInformation, RequestResult, StartUploadInformation
from .upload import ChunkedUploadState

logger = logging.getLogger(__name__)

_ECR_ACCOUNT_ID = re.compile(r"^\d{12}$")
_REHASH_READ_SIZE = 1024 * 256


def is_amazon_ecr(registry_name: str) -> bool:
    """Public ECR, or a private ECR host ``<12-digit account>.dkr.ecr[-fips].<region>...``."""
    if "public.ecr.aws" in registry_name:
        return True
    account_id = registry_name.split(".")[0]
    return (".ecr." in registry_name or ".ecr-" in registry_name) and bool(
        _ECR_ACCOUNT_ID.match(account_id)
    )


def parse_range_amount(headers: Mapping[str, str]) -> Optional[int]:
    """Last byte offset from a ``Range: 0-<n>`` header.

    A reported ``0`` is treated as absent; GitHub sends it for every chunk.
    """
    value = headers.get("Range")
    if not value:
        return None
    parts = value.split("-", 1)
    if len(parts) != 2:
        return None
    try:
        amount = int(parts[1])
    except ValueError:
        return None
    return amount or None


def parse_chunk_min_length(headers: Mapping[str, str]) -> Optional[int]:
    value = headers.get("OCI-Chunk-Min-Length")
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _with_query(uri: str, key: str, value: str) -> str:
    separator = "&" if "?" in uri else "?"
    return f"{uri}{separator}{key}={value}"


def _raise_for_repository_status(
    result: RequestResult, registry_name: str, repository: str, reference: Optional[str] = None
) -> None:
    if result.status_code in (401, 403):
        raise UnableToAccessRepositoryError(registry_name, repository)
    if result.status_code == 404:
        raise RepositoryNotFoundError(registry_name, repository, reference)


class _UploadHasher:
    """SHA-256 of the blob prefix the registry has confirmed.

    Normally extended with the bytes of the accepted chunk; when the registry
    reports an offset that does not follow on, the prefix is re-read from the
    source.
    """

    def __init__(self, source: BlobSource) -> None:
        self._source = source
        self._hasher = hashlib.sha256()
        self.hashed_upto = 0

    async def advance(self, new_offset: int, chunk_start: int, chunk: bytes) -> None:
        if new_offset == self.hashed_upto:
            return
        if self.hashed_upto == chunk_start and chunk_start < new_offset <= chunk_start + len(chunk):
            self._hasher.update(chunk[: new_offset - chunk_start])
            self.hashed_upto = new_offset
            return

        hasher = hashlib.sha256()
        position = 0
        while position < new_offset:
            data = await self._source.read_at(position, min(_REHASH_READ_SIZE, new_offset - position))
            if not data:
                break
            hasher.update(data)
            position += len(data)
        self._hasher = hasher
        self.hashed_upto = position

    def digest(self) -> Digest:
        return Digest.from_hasher(self._hasher)


class RegistryClient:
    """Docker Registry API v2 client for one registry.

    Methods map one-to-one onto registry endpoints and raise typed errors for
    unexpected statuses. Policy (what to upload, when to retry a whole
    operation) lives in Registry.
    """

    def __init__(
        self,
        base_url: str,
        registry_name: str,
        context: RegistryClientContext,
        settings: Optional[RegistrySettings] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        """Initialize the registry client.

        Args:
            base_url: Registry URL (e.g., https://registry.example.com)
            registry_name: Registry host[:port] used in cache keys and messages
            context: Shared auth cache and fallback state
            settings: Settings; read from the context when omitted
            session: aiohttp session to reuse; one is created on demand otherwise
        """
        self.base_url = base_url.rstrip("/")
        self.registry_name = registry_name
        self.context = context
        self.settings = settings or context.settings_for(registry_name)
        self.transport = RegistryTransport(registry_name, context, self.settings, session)
        self.is_amazon_ecr = is_amazon_ecr(registry_name)

    async def __aenter__(self) -> "RegistryClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.transport.close()

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def next_location(self, headers: Mapping[str, str], current: Optional[str] = None) -> str:
        """Resolve a ``Location`` header, which may be relative, against the base URL."""
        location = headers.get("Location")
        if not location:
            return current or self.base_url
        if location.startswith(("http://", "https://")):
            return location
        return urljoin(self.base_url + "/", location)

    async def check_registry_v2(self) -> bool:
        """Check if the registry supports v2 API."""
        result = await self.transport.request("GET", self.url("/v2/"))
        return result.status_code in (200, 401)

    async def get_manifest(self, repository: str, reference: str) -> RequestResult:
        """GET a manifest, accepting every manifest, list, index and config type.

        Raises:
            UnableToAccessRepositoryError: On 401/403
            RepositoryNotFoundError: On 404
            ManifestError: On any other non-2xx status
        """
        url = self.url(f"/v2/{repository}/manifests/{reference}")
        result = await self.transport.request(
            "GET", url, headers={"Accept": ", ".join(SUPPORTED_MANIFEST_ACCEPT)}
        )
        _raise_for_repository_status(result, self.registry_name, repository, reference)
        if not result.is_success:
            raise ManifestError("Failed to get manifest", url, result.status_code, result.text)
        return result

    async def get_blob(self, repository: str, digest: str) -> bytes:
        url = self.url(f"/v2/{repository}/blobs/{digest}")
        result = await self.transport.request("GET", url)
        _raise_for_repository_status(result, self.registry_name, repository)
        if not result.is_success:
            raise ContainerHttpError("Failed to get blob", url, result.status_code, result.text)
        return result.data

    @asynccontextmanager
    async def open_blob_stream(
        self, repository: str, digest: str
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """Yield the live response of a blob GET for streaming to disk."""
        url = self.url(f"/v2/{repository}/blobs/{digest}")
        async with self.transport.stream("GET", url) as resp:
            if resp.status in (401, 403):
                raise UnableToAccessRepositoryError(self.registry_name, repository)
            if resp.status == 404:
                raise RepositoryNotFoundError(self.registry_name, repository, digest)
            if resp.status >= 300:
                body = await resp.text(errors="replace")
                raise ContainerHttpError("Failed to get blob", url, resp.status, body)
            yield resp

    async def blob_exists(self, repository: str, digest: str) -> bool:
        result = await self.transport.request(
            "HEAD", self.url(f"/v2/{repository}/blobs/{digest}")
        )
        return result.status_code == 200

    async def start_upload(self, repository: str) -> StartUploadInformation:
        """Open an upload session.

        Raises:
            BlobUploadError: If the registry does not answer 202 Accepted
        """
        url = self.url(f"/v2/{repository}/blobs/uploads/")
        result = await self.transport.request("POST", url, headers={"Content-Length": "0"}, data=b"")
        if result.status_code != 202:
            _raise_for_repository_status(result, self.registry_name, repository)
            raise BlobUploadError("Failed to start upload", url, result.status_code, result.text)

        chunk_size = parse_range_amount(result.headers)
        if chunk_size is None:
            chunk_size = parse_chunk_min_length(result.headers)
        return StartUploadInformation(
            upload_uri=self.next_location(result.headers),
            registry_declared_chunk_size=chunk_size,
        )

    async def try_mount(self, repository: str, from_repository: str, digest: str) -> bool:
        """Ask the registry to link a blob from another repository; True if it did (201)."""
        url = self.url(f"/v2/{repository}/blobs/uploads/?mount={digest}&from={from_repository}")
        result = await self.transport.request("POST", url, headers={"Content-Length": "0"}, data=b"")
        return result.status_code == 201

    async def upload_atomically(self, uri: str, source: BlobSource) -> FinalizeUploadInformation:
        """PATCH the whole blob in one request.

        Raises:
            BlobUploadError: Unless the registry answers 202 (or 201 on Amazon ECR)
        """
        result = await self.transport.request(
            "PATCH",
            uri,
            headers={
                "Content-Type": "application/octet-stream",
                "Content-Length": str(source.size),
            },
            data=source.iter_chunks(),
        )
        accepted = result.status_code == 202 or (self.is_amazon_ecr and result.status_code == 201)
        if not accepted:
            raise BlobUploadError(
                "Whole PATCH failed", uri, result.status_code, f"{dict(result.headers)}\n{result.text}"
            )
        return FinalizeUploadInformation(self.next_location(result.headers, uri))

    async def upload_chunk(self, uri: str, data: bytes, start: int) -> RequestResult:
        # Content-Range is set by hand: some registries reject the "bytes a-b/*" form.
        return await self.transport.request(
            "PATCH",
            uri,
            headers={
                "Content-Type": "application/octet-stream",
                "Content-Length": str(len(data)),
                "Content-Range": f"{start}-{start + len(data) - 1}",
            },
            data=data,
        )

    async def get_upload_status(self, uri: str) -> RequestResult:
        return await self.transport.request("GET", uri)

    async def upload_chunked(
        self, upload: StartUploadInformation, source: BlobSource, chunk_size: int
    ) -> FinalizeUploadInformation:
        """Send the blob in sequential chunks, resuming from registry-reported offsets.

        Up to ten retries are shared by the whole blob; each accepted chunk
        gives one back.

        Returns:
            Final upload URI and the SHA-256 of the content the registry accepted

        Raises:
            BlobUploadError: When the retry budget is exhausted
        """
        state = ChunkedUploadState(uri=upload.upload_uri)
        hasher = _UploadHasher(source)
        logger.debug(f"Uploading {source.size} bytes in chunks of {chunk_size} bytes")

        while state.chunk_start < source.size:
            chunk = await source.read_at(state.chunk_start, chunk_size)
            if not chunk:
                raise BlobUploadError(
                    f"Blob source ended at {state.chunk_start} of {source.size} bytes", state.uri
                )
            chunk_start = state.chunk_start
            result = await self.upload_chunk(state.uri, chunk, chunk_start)

            if result.status_code == 202:
                state = state.on_chunk_accepted(
                    len(chunk),
                    self.next_location(result.headers, state.uri),
                    parse_range_amount(result.headers),
                )
                await hasher.advance(state.chunk_start, chunk_start, chunk)
            elif result.status_code == 201 and self.is_amazon_ecr:
                # ECR answers 201 and its Range header is not reliable here.
                state = state.on_chunk_accepted(
                    len(chunk), self.next_location(result.headers, state.uri), None
                )
                await hasher.advance(state.chunk_start, chunk_start, chunk)
            elif state.can_retry:
                state = state.on_chunk_failed()
                logger.debug(
                    f"Chunk at {chunk_start} failed with HTTP {result.status_code}, "
                    f"retry {state.retry_count}/{state.max_retries}"
                )
                status = await self.get_upload_status(state.uri)
                if status.status_code == 204:
                    state = state.on_status_reported(
                        self.next_location(status.headers, state.uri),
                        parse_range_amount(status.headers),
                    )
                    await hasher.advance(state.chunk_start, chunk_start, chunk)
            else:
                raise BlobUploadError(
                    "Chunked PATCH failed",
                    state.uri,
                    result.status_code,
                    f"{dict(result.headers)}\n{result.text}",
                )

        return FinalizeUploadInformation(state.uri, str(hasher.digest()))

    async def complete_upload(self, uri: str, digest: str) -> None:
        """Close the upload session with the blob digest.

        Raises:
            BlobUploadError: Unless the registry answers 201 Created
        """
        put_uri = _with_query(uri, "digest", digest)
        result = await self.transport.request(
            "PUT", put_uri, headers={"Content-Length": "0"}, data=b""
        )
        if result.status_code != 201:
            raise BlobUploadError(
                "Failed to finalize upload", put_uri, result.status_code, result.text
            )

    async def put_manifest(
        self, repository: str, reference: str, body: bytes, media_type: str
    ) -> str:
        """Upload a manifest under a tag or digest.

        Returns:
            Manifest digest reported by the registry (may be empty)

        Raises:
            ManifestError: If the registry rejects the manifest
        """
        url = self.url(f"/v2/{repository}/manifests/{reference}")
        result = await self.transport.request(
            "PUT",
            url,
            headers={"Content-Type": media_type, "Content-Length": str(len(body))},
            data=body,
        )
        if not result.is_success:
            _raise_for_repository_status(result, self.registry_name, repository, reference)
            raise ManifestError("Failed to upload manifest", url, result.status_code, result.text)
        return result.headers.get("Docker-Content-Digest", "")
