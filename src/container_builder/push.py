"""Async functional style push operations."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from .builder import BuiltImage
from .core.types import BytesBlobSource
from .exceptions import RegistryError
from .layer import Layer
from .local_daemon import LocalDaemon
from .models.descriptor import Descriptor
from .models.references import (
    DestinationImageReference,
    DestinationKind,
    SourceImageReference,
)
from .multi_arch import MultiArchImage
from .registry import Registry

logger = logging.getLogger(__name__)


def _remote_registry(destination: DestinationImageReference) -> Registry:
    if destination.kind is not DestinationKind.REMOTE_REGISTRY or destination.registry is None:
        raise ValueError(f"{destination.repository} is not a remote registry destination")
    return destination.registry


def _local_layer_path(registry: Registry, descriptor: Descriptor) -> Optional[Path]:
    path = registry.store.path_for_descriptor(descriptor)
    return path if path.exists() else None


async def _push_layer(
    registry: Registry,
    repository: str,
    source: SourceImageReference,
    descriptor: Descriptor,
) -> None:
    """Make one layer available in the destination repository.

    Tries, in order: the blob is already there, a cross-repository mount
    within the same registry, the local content store, and finally a download
    from the source registry.
    """
    digest = str(descriptor.digest)
    if await registry.blob_exists(repository, digest):
        logger.info(f"Layer {digest} already exists in {registry.registry_name}/{repository}")
        return

    source_registry = source.registry
    if source_registry is not None and source_registry.registry_name == registry.registry_name:
        if await registry.try_mount(repository, source.repository, digest):
            logger.info(f"Mounted layer {digest} from {source.repository}")
            return

    path = _local_layer_path(registry, descriptor)
    if path is None:
        if source_registry is None:
            raise RegistryError(
                f"Layer {digest} is not in the content store and there is no source registry to download it from"
            )
        path = await source_registry.download_blob(source.repository, descriptor)

    await registry.push_layer(Layer(descriptor, path), repository)


async def _push_layers(
    registry: Registry,
    repository: str,
    source: SourceImageReference,
    layers: list[Descriptor],
) -> None:
    if registry.supports_parallel_uploads:
        tasks = [_push_layer(registry, repository, source, layer) for layer in layers]
        await asyncio.gather(*tasks)
    else:
        for layer in layers:
            await _push_layer(registry, repository, source, layer)


async def push_image(
    built: BuiltImage,
    source: SourceImageReference,
    destination: DestinationImageReference,
    push_tags: bool = True,
) -> str:
    """빌드된 이미지를 레지스트리에 비동기로 푸시합니다.

    레이어(병렬 업로드 지원 시 동시에), 설정(config) blob, 매니페스트 순서로
    업로드합니다. 레지스트리에 이미 있는 레이어는 건너뛰고, 같은 레지스트리의
    베이스 이미지 레이어는 마운트를 먼저 시도합니다.

    Args:
        built: ImageBuilder.build()로 만든 이미지
        source: 베이스 이미지 참조 (로컬에 없는 레이어를 내려받을 곳)
        destination: 원격 레지스트리 대상 (저장소와 태그 목록)
        push_tags: False이면 태그 대신 매니페스트 digest로만 업로드 (멀티 아키텍처용)

    Returns:
        str: 푸시된 매니페스트 digest (예: "sha256:abc123...")

    Raises:
        ValueError: 대상이 원격 레지스트리가 아닌 경우
        BlobUploadError: 레이어 또는 설정 업로드 실패 시
        ManifestError: 매니페스트 업로드 실패 시

    Examples:
        # 베이스 이미지 위에 빌드한 이미지를 두 개의 태그로 푸시
        destination = DestinationImageReference.remote(registry, "myapp", ["1.0", "latest"])
        digest = await push_image(built, source, destination)
    """
    registry = _remote_registry(destination)
    repository = destination.repository

    await _push_layers(registry, repository, source, built.layers)

    logger.info(f"Uploading config {built.image_digest} to {registry.registry_name}/{repository}")
    await registry.upload_blob(repository, built.image_digest, BytesBlobSource(built.config_json))

    manifest_json = built.manifest.to_json_bytes()
    if push_tags:
        for tag in destination.tags:
            await registry.put_manifest(repository, tag, manifest_json, built.manifest_media_type)
            logger.info(f"Uploaded tag {tag} to {registry.registry_name}/{repository}")
    else:
        await registry.put_manifest(
            repository, str(built.manifest_digest), manifest_json, built.manifest_media_type
        )
        logger.info(f"Uploaded manifest {built.manifest_digest} to {registry.registry_name}/{repository}")

    return str(built.manifest_digest)


async def push_manifest_list(
    multi_arch: MultiArchImage,
    destination: DestinationImageReference,
    source: Optional[SourceImageReference] = None,
) -> str:
    """멀티 아키텍처 이미지 인덱스(매니페스트 리스트)를 레지스트리에 푸시합니다.

    source를 지정하면 각 플랫폼 이미지를 digest로 먼저 푸시한 뒤 인덱스를
    태그별로 업로드합니다.

    Args:
        multi_arch: create_image_index()로 만든 멀티 아키텍처 이미지
        destination: 원격 레지스트리 대상 (저장소와 태그 목록)
        source: 베이스 이미지 참조 (선택사항, 플랫폼 이미지 푸시용)

    Returns:
        str: 이미지 인덱스 digest

    Raises:
        ValueError: 대상이 원격 레지스트리가 아닌 경우
        ManifestError: 인덱스 업로드 실패 시

    Examples:
        # linux-x64, linux-arm64 이미지를 하나의 태그로 묶어 푸시
        multi_arch = create_image_index([built_x64, built_arm64])
        digest = await push_manifest_list(multi_arch, destination, source)
    """
    registry = _remote_registry(destination)
    repository = destination.repository

    if source is not None:
        for image in multi_arch.images:
            await push_image(image, source, destination, push_tags=False)

    for tag in destination.tags:
        await registry.put_manifest(
            repository, tag, multi_arch.image_index, multi_arch.image_index_media_type
        )
        logger.info(f"Uploaded image index tag {tag} to {registry.registry_name}/{repository}")

    return str(multi_arch.index_digest)


async def publish_image(
    built: BuiltImage,
    source: SourceImageReference,
    destination: DestinationImageReference,
) -> str:
    """빌드된 이미지를 대상 종류에 맞게 게시합니다.

    원격 레지스트리 대상은 push_image()로 푸시하고, 로컬 대상은 tar로 묶어
    로컬 Docker/Podman 데몬에 로드합니다.

    Args:
        built: 빌드된 이미지
        source: 베이스 이미지 참조
        destination: 원격 또는 로컬 대상

    Returns:
        str: 매니페스트 digest

    Raises:
        LocalDaemonUnavailableError: 로컬 데몬을 찾을 수 없는 경우
        LocalDaemonLoadError: 로컬 데몬 로드 실패 시

    Examples:
        # 로컬 Docker 데몬에 로드
        await publish_image(built, source, DestinationImageReference.local("myapp", ["dev"]))
    """
    if destination.kind is DestinationKind.REMOTE_REGISTRY:
        return await push_image(built, source, destination)

    daemon = destination.local_daemon or LocalDaemon()
    await daemon.load(built, source, destination)
    return str(built.manifest_digest)
