"""Image tarball writer (docker load / OCI image layout)."""

import asyncio
import io
import logging
import tarfile
from pathlib import Path
from typing import BinaryIO, Optional

from ..builder import BuiltImage
from ..content_store import ContentStore
from ..exceptions import RegistryError, UnrecognizedMediaTypeError
from ..models import media_types
from ..models.references import DestinationImageReference, SourceImageReference
from ..utils.serialization import to_json_bytes

logger = logging.getLogger(__name__)

BLOBS_PATH = "blobs/sha256"
OCI_LAYOUT_CONTENT = b'{"imageLayoutVersion": "1.0.0"}'
OCI_REF_NAME_ANNOTATION = "org.opencontainers.image.ref.name"


def _add_bytes(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = 0o644
    tar.addfile(info, io.BytesIO(data))


def _add_file(tar: tarfile.TarFile, name: str, path: Path) -> None:
    info = tarfile.TarInfo(name)
    info.size = path.stat().st_size
    info.mode = 0o644
    with open(path, "rb") as f:
        tar.addfile(info, f)


async def _collect_layers(
    image: BuiltImage, source: SourceImageReference, store: ContentStore
) -> list[Path]:
    """Local paths of every layer, downloading the ones the store lacks."""
    paths = []
    for descriptor in image.layers:
        path = store.path_for_descriptor(descriptor)
        if not path.exists():
            if source.registry is None:
                raise RegistryError(
                    f"Layer {descriptor.digest} is not in the content store and there is no source registry to download it from"
                )
            path = await source.registry.download_blob(source.repository, descriptor)
        paths.append(path)
    return paths


def _write_docker_layout(
    image: BuiltImage,
    destination: DestinationImageReference,
    layer_paths: list[Path],
    stream: BinaryIO,
) -> None:
    with tarfile.open(fileobj=stream, mode="w|", format=tarfile.PAX_FORMAT) as tar:
        layer_entries = []
        for descriptor, path in zip(image.layers, layer_paths):
            name = f"{descriptor.digest.value}/layer.tar"
            _add_file(tar, name, path)
            layer_entries.append(name)

        config_name = f"{image.image_digest.value}.json"
        _add_bytes(tar, config_name, image.config_json)

        manifest = [
            {"Config": config_name, "RepoTags": destination.repo_tags, "Layers": layer_entries}
        ]
        _add_bytes(tar, "manifest.json", to_json_bytes(manifest))


def _write_oci_layout(
    image: BuiltImage,
    destination: DestinationImageReference,
    layer_paths: list[Path],
    stream: BinaryIO,
) -> None:
    with tarfile.open(fileobj=stream, mode="w|", format=tarfile.PAX_FORMAT) as tar:
        _add_bytes(tar, "oci-layout", OCI_LAYOUT_CONTENT)

        for descriptor, path in zip(image.layers, layer_paths):
            _add_file(tar, f"{BLOBS_PATH}/{descriptor.digest.value}", path)

        _add_bytes(tar, f"{BLOBS_PATH}/{image.image_digest.value}", image.config_json)

        manifest_json = image.manifest.to_json_bytes()
        _add_bytes(tar, f"{BLOBS_PATH}/{image.manifest_digest.value}", manifest_json)

        index = {
            "schemaVersion": 2,
            "mediaType": media_types.OCI_IMAGE_INDEX_V1,
            "manifests": [
                {
                    "mediaType": image.manifest_media_type,
                    "digest": str(image.manifest_digest),
                    "size": len(manifest_json),
                    "annotations": {OCI_REF_NAME_ANNOTATION: destination.repo_tags[0]},
                }
            ],
        }
        _add_bytes(tar, "index.json", to_json_bytes(index))


async def write_docker_image_to_stream(
    image: BuiltImage,
    source: SourceImageReference,
    destination: DestinationImageReference,
    stream: BinaryIO,
    store: Optional[ContentStore] = None,
) -> None:
    """Write a ``docker load`` tarball: ``<hex>/layer.tar``, ``<config-hex>.json``, ``manifest.json``.

    Any image can be written this way, OCI manifests included.
    """
    store = store or _default_store(source)
    layer_paths = await _collect_layers(image, source, store)
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(
        None, _write_docker_layout, image, destination, layer_paths, stream
    )
    logger.debug(f"Wrote Docker tarball for {destination.repository} ({len(layer_paths)} layers)")


async def write_oci_image_to_stream(
    image: BuiltImage,
    source: SourceImageReference,
    destination: DestinationImageReference,
    stream: BinaryIO,
    store: Optional[ContentStore] = None,
) -> None:
    """Write an OCI image layout tarball.

    Raises:
        ValueError: If the destination has more than one tag; an OCI layout
            names a single reference
    """
    if len(destination.tags) > 1:
        raise ValueError("An OCI image tarball can carry only one tag")
    store = store or _default_store(source)
    layer_paths = await _collect_layers(image, source, store)
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(None, _write_oci_layout, image, destination, layer_paths, stream)
    logger.debug(f"Wrote OCI tarball for {destination.repository} ({len(layer_paths)} layers)")


async def write_image_to_stream(
    image: BuiltImage,
    source: SourceImageReference,
    destination: DestinationImageReference,
    stream: BinaryIO,
    store: Optional[ContentStore] = None,
) -> None:
    """Write ``image`` as a tarball in the layout matching its manifest type.

    Docker manifests produce a ``docker load`` tarball, OCI manifests an OCI
    image layout. Layers come from the content store; missing ones are
    downloaded through the source registry.

    Args:
        image: Built image
        source: Base image reference, used to download missing layers
        destination: Repository and tags recorded in the tarball
        stream: Writable binary file object
        store: Content store holding the layers; the source registry's store
            when omitted

    Raises:
        UnrecognizedMediaTypeError: If the manifest type has no tarball layout
    """
    if image.manifest_media_type == media_types.DOCKER_MANIFEST_V2:
        await write_docker_image_to_stream(image, source, destination, stream, store)
    elif image.manifest_media_type == media_types.OCI_MANIFEST_V1:
        await write_oci_image_to_stream(image, source, destination, stream, store)
    else:
        raise UnrecognizedMediaTypeError(image.manifest_media_type)


def _default_store(source: SourceImageReference) -> ContentStore:
    if source.registry is not None:
        return source.registry.store
    return ContentStore()
