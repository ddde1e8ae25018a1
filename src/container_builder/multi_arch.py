"""Multi-architecture images: one image index over several built images."""

from collections.abc import Sequence
from dataclasses import dataclass

from .builder import BuiltImage
from .models.descriptor import PlatformInformation
from .models.manifest import ManifestList, PlatformSpecificManifest
from .models.media_types import ManifestKind
from .utils.digest import Digest


@dataclass(frozen=True)
class MultiArchImage:
    """An image index plus the per-platform images it references."""

    image_index: bytes
    image_index_media_type: str
    images: list[BuiltImage]

    @property
    def index_digest(self) -> Digest:
        return Digest.from_bytes(self.image_index)


def create_image_index(images: Sequence[BuiltImage]) -> MultiArchImage:
    """Create a Docker manifest list or OCI image index for ``images``.

    The index type follows the images' manifest type: Docker manifests get a
    manifest list, OCI manifests an image index.

    Raises:
        ValueError: If ``images`` is empty or mixes Docker and OCI manifests
    """
    if not images:
        raise ValueError("Cannot create an image index without images")

    media_type = images[0].manifest_media_type
    if any(image.manifest_media_type != media_type for image in images):
        raise ValueError(
            "All images in an index must use the same manifest media type, got "
            + ", ".join(sorted({image.manifest_media_type for image in images}))
        )
    kind = ManifestKind.from_media_type(media_type)

    entries = [
        PlatformSpecificManifest(
            media_type=image.manifest_media_type,
            digest=image.manifest_digest,
            size=len(image.manifest.to_json_bytes()),
            platform=PlatformInformation(
                architecture=image.architecture,
                os=image.os,
                variant=image.variant,
                os_version=image.os_version,
            ),
        )
        for image in images
    ]
    index = ManifestList(manifests=entries, media_type=kind.index_media_type)
    return MultiArchImage(index.to_json_bytes(), kind.index_media_type, list(images))
