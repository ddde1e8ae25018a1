"""Registry orchestration: pulling base images and pushing blobs."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import urlsplit

import aiofiles
import aiohttp
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .builder import ImageBuilder
from .content_store import ContentStore
from .core.config import RegistrySettings
from .core.context import RegistryClientContext, ensure_context
from .core.registry_client import RegistryClient, is_amazon_ecr
from .core.types import BlobSource, FileBlobSource, FinalizeUploadInformation
from .core.upload import effective_chunk_size
from .exceptions import (
    BlobUploadError,
    ContainerHttpError,
    ManifestError,
    RegistryConnectionError,
    UnableToDownloadFromRepositoryError,
)
from .layer import Layer
from .models import media_types
from .models.descriptor import Descriptor
from .models.image import Image
from .models.manifest import ManifestList, ManifestV2, parse_manifest
from .resolver import RuntimeGraph, get_manifests_by_rid, pick_best_manifest_for_rid
from .utils.digest import Digest
from .utils.serialization import parse_json_bytes

logger = logging.getLogger(__name__)

DOCKER_HUB_REGISTRY = "registry-1.docker.io"
DOCKER_HUB_ALIASES = ("docker.io", "index.docker.io")
DOWNLOAD_RETRIES = 5
DEFAULT_RETRY_DELAY = 1.0

_DOWNLOAD_FAILURES = (
    ContainerHttpError,
    RegistryConnectionError,
    aiohttp.ClientError,
    asyncio.TimeoutError,
    OSError,
)


def parse_registry_location(base_url_or_name: str) -> tuple[str, str]:
    """Split a registry URL or host name into ``(base_url, registry_name)``.

    The registry name keeps the port only when one was given explicitly.
    Docker Hub's ``docker.io`` alias is replaced by its API host.

    Examples:
        "https://localhost:5000" -> ("https://localhost:5000", "localhost:5000")
        "docker.io" -> ("https://registry-1.docker.io", "registry-1.docker.io")
    """
    text = base_url_or_name.strip().rstrip("/")
    if "://" not in text:
        text = f"https://{text}"
    parts = urlsplit(text)
    host = parts.hostname or ""
    if host in DOCKER_HUB_ALIASES:
        host = DOCKER_HUB_REGISTRY
    registry_name = f"{host}:{parts.port}" if parts.port is not None else host
    return f"{parts.scheme}://{registry_name}", registry_name


def _content_type(headers: Any) -> Optional[str]:
    value = headers.get("Content-Type")
    if not value:
        return None
    media_type = value.split(";", 1)[0].strip()
    if media_type in media_types.MANIFEST_TYPES | media_types.MANIFEST_LIST_TYPES:
        return media_type
    return None


class Registry:
    """A container registry seen from the build: a base image source and a push target.

    Tuning knobs (chunking, parallelism) come from the settings the context
    hands out for this registry. Blobs and manifests read from the registry
    are cached in the content store.
    """

    def __init__(
        self,
        base_url_or_name: str,
        store: Optional[ContentStore] = None,
        context: Optional[RegistryClientContext] = None,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        """Initialize the registry.

        Args:
            base_url_or_name: Registry URL or host (e.g., "http://localhost:5000", "ghcr.io")
            store: Content store for downloaded blobs; a default one otherwise
            context: Shared auth cache and settings source; a fresh one otherwise
            retry_delay: Seconds between blob download attempts
            session: aiohttp session to reuse
        """
        self.base_url, self.registry_name = parse_registry_location(base_url_or_name)
        self.store = store or ContentStore()
        self.context = ensure_context(context)
        self.settings: RegistrySettings = self.context.settings_for(self.registry_name)
        self.retry_delay = retry_delay
        self.client = RegistryClient(
            self.base_url, self.registry_name, self.context, self.settings, session
        )

    def __repr__(self) -> str:
        return f"Registry({self.registry_name})"

    async def __aenter__(self) -> "Registry":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.close()

    @property
    def is_amazon_ecr(self) -> bool:
        return is_amazon_ecr(self.registry_name)

    @property
    def is_google_artifact_registry(self) -> bool:
        return self.registry_name.endswith("-docker.pkg.dev")

    @property
    def is_github_package_registry(self) -> bool:
        return self.registry_name.startswith("ghcr.io")

    @property
    def is_docker_hub(self) -> bool:
        return self.registry_name in (DOCKER_HUB_REGISTRY, "registry.hub.docker.com")

    @property
    def is_azure_container_registry(self) -> bool:
        return self.registry_name.lower().endswith(".azurecr.io")

    @property
    def supports_chunked_upload(self) -> bool:
        """An explicit setting wins; unset means off for Google Artifact Registry, on elsewhere."""
        enabled = self.settings.chunked_upload_enabled
        if enabled is None:
            return not self.is_google_artifact_registry
        return enabled

    @property
    def supports_parallel_uploads(self) -> bool:
        # ECR throttles concurrent upload sessions for the same repository.
        return not self.is_amazon_ecr and self.settings.parallel_upload_enabled

    @property
    def max_chunk_size(self) -> int:
        return effective_chunk_size(
            None, self.settings.chunked_upload_size_bytes, self.is_amazon_ecr
        )

    async def get_manifest_core(
        self, repository: str, reference: str, skip_cache: bool = True
    ) -> Union[ManifestV2, ManifestList]:
        """Fetch a manifest, list or index and remember it in the content store.

        Args:
            repository: Repository name (e.g., "dotnet/runtime")
            reference: Tag or digest
            skip_cache: Ignore a previously stored copy for this reference

        Returns:
            ManifestV2 for a single image, ManifestList for a list or index

        Raises:
            UnableToAccessRepositoryError: On 401/403
            RepositoryNotFoundError: On 404
            UnrecognizedMediaTypeError: If the document type is not supported
        """
        reference_path = self.store.path_for_manifest_by_reference_or_digest(
            self.registry_name, repository, reference
        )
        if not skip_cache:
            cached = await self.store.read_manifest_reference(reference_path)
            if cached is not None:
                content = await self.store.read_content(cached)
                if content is not None:
                    logger.debug(f"Using cached manifest {cached.digest} for {repository}:{reference}")
                    return parse_manifest(cached.media_type, content, cached.digest)

        result = await self.client.get_manifest(repository, reference)
        reported_digest = result.headers.get("Docker-Content-Digest")
        digest = Digest.parse(reported_digest) if reported_digest else Digest.from_bytes(result.data)
        manifest = parse_manifest(_content_type(result.headers), result.data, digest)

        descriptor = Descriptor(manifest.media_type, digest, len(result.data))
        await self.store.write_content(descriptor, result.data)
        await self.store.write_manifest_reference(reference_path, descriptor)
        return manifest

    async def get_manifest_list(self, repository: str, reference: str) -> Optional[ManifestList]:
        """The manifest list or index behind ``reference``, or None for a single image."""
        manifest = await self.get_manifest_core(repository, reference)
        return manifest if isinstance(manifest, ManifestList) else None

    async def get_json_blob(self, repository: str, descriptor: Descriptor) -> Any:
        """Fetch a small JSON blob (an image config), preferring the content store."""
        content = await self.store.read_content(descriptor)
        if content is None:
            content = await self.client.get_blob(repository, str(descriptor.digest))
            await self.store.write_content(descriptor, content)
        return parse_json_bytes(content)

    async def get_image_manifest(
        self,
        repository: str,
        reference: str,
        runtime_identifier: str,
        runtime_graph: Optional[RuntimeGraph] = None,
    ) -> ImageBuilder:
        """Resolve a base image for a platform and start building on top of it.

        Manifest lists and indexes are narrowed to the entry compatible with
        ``runtime_identifier``.

        Raises:
            BaseImageNotFoundError: If a list has no compatible entry
            ManifestError: If the selected entry is not a single-image manifest
        """
        # Digest references never change, so a cached copy is always valid.
        manifest = await self.get_manifest_core(
            repository, reference, skip_cache=not Digest.is_valid(reference)
        )
        if isinstance(manifest, ManifestList):
            by_rid = get_manifests_by_rid(manifest.manifests)
            picked = pick_best_manifest_for_rid(
                by_rid, runtime_identifier, repository, reference, runtime_graph
            )
            logger.info(f"Using {picked.digest} from {repository}:{reference} for {runtime_identifier}")
            manifest = await self.get_manifest_core(
                repository, str(picked.digest), skip_cache=False
            )
            if not isinstance(manifest, ManifestV2):
                raise ManifestError(
                    f"Manifest list entry {picked.digest} of {repository}:{reference} "
                    "is not an image manifest"
                )
        return await self._read_single_image(repository, reference, manifest)

    async def _read_single_image(
        self, repository: str, reference: str, manifest: ManifestV2
    ) -> ImageBuilder:
        config = Image.from_dict(await self.get_json_blob(repository, manifest.config))
        separator = "@" if Digest.is_valid(reference) else ":"
        return ImageBuilder(
            manifest,
            manifest.media_type or media_types.DOCKER_MANIFEST_V2,
            config,
            base_image_name=f"{self.registry_name}/{repository}{separator}{reference}",
        )

    async def download_blob(self, repository: str, descriptor: Descriptor) -> Path:
        """Download a blob into the content store unless it is already there.

        Transient failures are retried up to five times, ``retry_delay``
        seconds apart.

        Returns:
            Path of the blob in the content store

        Raises:
            UnableToDownloadFromRepositoryError: When every attempt failed
        """
        destination = self.store.path_for_descriptor(descriptor)
        if destination.exists():
            return destination

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(DOWNLOAD_RETRIES),
                wait=wait_fixed(self.retry_delay),
                retry=retry_if_exception_type(_DOWNLOAD_FAILURES),
                before_sleep=before_sleep_log(logger, logging.DEBUG),
            ):
                with attempt:
                    return await self._download_blob_once(repository, descriptor)
        except RetryError as e:
            logger.debug(f"Giving up on {descriptor.digest} after {DOWNLOAD_RETRIES} attempts")
            raise UnableToDownloadFromRepositoryError(repository) from e.last_attempt.exception()

    async def _download_blob_once(self, repository: str, descriptor: Descriptor) -> Path:
        logger.info(f"Downloading layer {descriptor.digest} from {self.registry_name}/{repository}")
        temp_path = self.store.get_temp_file()
        async with self.client.open_blob_stream(repository, str(descriptor.digest)) as resp:
            async with aiofiles.open(temp_path, "wb") as f:
                async for chunk in resp.content.iter_chunked(1024 * 64):
                    await f.write(chunk)
        return self.store.move_into_store(temp_path, descriptor)

    async def upload_blob(
        self, repository: str, digest: Union[Digest, str], source: BlobSource
    ) -> None:
        """Upload a blob unless the registry already has it.

        Raises:
            BlobUploadError: If the upload fails, or the registry received
                content whose digest differs from ``digest``
        """
        digest = str(Digest.parse(digest))
        if await self.client.blob_exists(repository, digest):
            logger.info(f"Layer {digest} already exists in {self.registry_name}/{repository}")
            return

        logger.info(f"Uploading layer {digest} ({source.size} bytes) to {self.registry_name}/{repository}")
        finalize = await self._upload_blob_content(repository, source)
        if finalize.digest is not None and finalize.digest != digest:
            raise BlobUploadError(
                f"Uploaded content has digest {finalize.digest}, expected {digest}",
                finalize.upload_uri,
            )
        await self.client.complete_upload(finalize.upload_uri, digest)
        logger.info(f"Finished uploading layer {digest} to {self.registry_name}/{repository}")

    async def _upload_blob_content(
        self, repository: str, source: BlobSource
    ) -> FinalizeUploadInformation:
        upload = await self.client.start_upload(repository)
        logger.debug(f"Upload session for {repository}: {upload.upload_uri}")
        declared = upload.registry_declared_chunk_size
        force_chunked = self.settings.force_chunked_upload

        if not force_chunked and not self.supports_chunked_upload:
            return await self.client.upload_atomically(upload.upload_uri, source)

        if not force_chunked and (declared is None or declared >= source.size):
            try:
                return await self.client.upload_atomically(upload.upload_uri, source)
            except (BlobUploadError, RegistryConnectionError) as e:
                logger.debug(f"Whole-blob upload failed, falling back to chunked upload: {e}")
                upload = await self.client.start_upload(repository)
                declared = upload.registry_declared_chunk_size

        chunk_size = effective_chunk_size(
            declared, self.settings.chunked_upload_size_bytes, self.is_amazon_ecr
        )
        return await self.client.upload_chunked(upload, source, chunk_size)

    async def push_layer(self, layer: Layer, repository: str) -> None:
        """Upload a layer from its backing file."""
        if layer.backing_file is None:
            raise FileNotFoundError(f"Layer {layer.descriptor.digest} has no backing file")
        await self.upload_blob(repository, layer.descriptor.digest, FileBlobSource(layer.backing_file))

    async def try_mount(self, repository: str, from_repository: str, digest: str) -> bool:
        return await self.client.try_mount(repository, from_repository, digest)

    async def blob_exists(self, repository: str, digest: str) -> bool:
        return await self.client.blob_exists(repository, digest)

    async def put_manifest(
        self, repository: str, reference: str, body: bytes, media_type: str
    ) -> str:
        return await self.client.put_manifest(repository, reference, body, media_type)


async def check_registry_connectivity(registry_url: str) -> bool:
    """레지스트리가 Docker Registry API v2를 지원하는지 확인합니다.

    Args:
        registry_url: 레지스트리 URL (예: "http://localhost:5000", "ghcr.io")

    Returns:
        bool: /v2/ 엔드포인트가 200 또는 401로 응답하면 True

    Raises:
        RegistryConnectionError: 연결 실패 시

    Examples:
        # 로컬 레지스트리 연결 확인
        accessible = await check_registry_connectivity("http://localhost:5000")
    """
    async with Registry(registry_url) as registry:
        return await registry.client.check_registry_v2()


async def pull_base_image(
    registry_url: str,
    repository: str,
    reference: str,
    runtime_identifier: str,
    store: Optional[ContentStore] = None,
) -> ImageBuilder:
    """베이스 이미지를 조회하여 ImageBuilder를 반환합니다.

    매니페스트 리스트(멀티 아키텍처)인 경우 runtime_identifier와 호환되는
    플랫폼의 매니페스트를 자동으로 선택합니다.

    Args:
        registry_url: 레지스트리 URL (예: "mcr.microsoft.com", "http://localhost:5000")
        repository: 저장소 이름 (예: "dotnet/runtime")
        reference: 태그 또는 digest (예: "8.0", "sha256:abc123...")
        runtime_identifier: 대상 런타임 식별자 (예: "linux-x64", "win10-x64")
        store: 콘텐츠 저장소 (선택사항, 기본값: 임시 디렉토리)

    Returns:
        ImageBuilder: 베이스 이미지 위에 레이어와 설정을 추가할 수 있는 빌더

    Raises:
        BaseImageNotFoundError: 호환되는 플랫폼이 없는 경우
        RepositoryNotFoundError: 저장소나 태그가 존재하지 않는 경우

    Examples:
        # linux-x64용 .NET 런타임 이미지 조회
        builder = await pull_base_image("mcr.microsoft.com", "dotnet/runtime", "8.0", "linux-x64")
    """
    async with Registry(registry_url, store=store) as registry:
        return await registry.get_image_manifest(repository, reference, runtime_identifier)
