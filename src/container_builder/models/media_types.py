"""Media type constants and the Docker/OCI manifest kind table."""

from dataclasses import dataclass
from enum import Enum

from ..exceptions import UnrecognizedMediaTypeError

DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST_V2 = "application/vnd.docker.distribution.manifest.list.v2+json"
DOCKER_CONTAINER_V1 = "application/vnd.docker.container.image.v1+json"
DOCKER_LAYER_GZIP = "application/vnd.docker.image.rootfs.diff.tar.gzip"
DOCKER_LAYER_TAR = "application/vnd.docker.image.rootfs.diff.tar"

OCI_MANIFEST_V1 = "application/vnd.oci.image.manifest.v1+json"
OCI_IMAGE_INDEX_V1 = "application/vnd.oci.image.index.v1+json"
OCI_IMAGE_CONFIG_V1 = "application/vnd.oci.image.config.v1+json"
OCI_LAYER_GZIP_V1 = "application/vnd.oci.image.layer.v1.tar+gzip"
OCI_LAYER_TAR_V1 = "application/vnd.oci.image.layer.v1.tar"

GZIP_LAYER_TYPES = frozenset({DOCKER_LAYER_GZIP, OCI_LAYER_GZIP_V1})
TAR_LAYER_TYPES = frozenset({DOCKER_LAYER_TAR, OCI_LAYER_TAR_V1})
MANIFEST_TYPES = frozenset({DOCKER_MANIFEST_V2, OCI_MANIFEST_V1})
MANIFEST_LIST_TYPES = frozenset({DOCKER_MANIFEST_LIST_V2, OCI_IMAGE_INDEX_V1})
CONFIG_TYPES = frozenset({DOCKER_CONTAINER_V1, OCI_IMAGE_CONFIG_V1})

# Sent on every manifest GET so the registry may answer with any shape we parse.
SUPPORTED_MANIFEST_ACCEPT = (
    DOCKER_MANIFEST_V2,
    DOCKER_MANIFEST_LIST_V2,
    OCI_MANIFEST_V1,
    OCI_IMAGE_INDEX_V1,
    DOCKER_CONTAINER_V1,
)


@dataclass(frozen=True)
class _KindInfo:
    manifest: str
    config: str
    layer_gzip: str
    layer_tar: str
    index: str


class ManifestKind(Enum):
    """The two manifest families an image can be written as."""

    DOCKER_V2 = _KindInfo(
        manifest=DOCKER_MANIFEST_V2,
        config=DOCKER_CONTAINER_V1,
        layer_gzip=DOCKER_LAYER_GZIP,
        layer_tar=DOCKER_LAYER_TAR,
        index=DOCKER_MANIFEST_LIST_V2,
    )
    OCI_V1 = _KindInfo(
        manifest=OCI_MANIFEST_V1,
        config=OCI_IMAGE_CONFIG_V1,
        layer_gzip=OCI_LAYER_GZIP_V1,
        layer_tar=OCI_LAYER_TAR_V1,
        index=OCI_IMAGE_INDEX_V1,
    )

    @property
    def manifest_media_type(self) -> str:
        return self.value.manifest

    @property
    def config_media_type(self) -> str:
        return self.value.config

    @property
    def layer_media_type(self) -> str:
        return self.value.layer_gzip

    @property
    def uncompressed_layer_media_type(self) -> str:
        return self.value.layer_tar

    @property
    def index_media_type(self) -> str:
        return self.value.index

    @classmethod
    def from_media_type(cls, media_type: str | None) -> "ManifestKind":
        """Find the kind owning a manifest, list, config or layer media type.

        Raises:
            UnrecognizedMediaTypeError: If no kind owns the media type
        """
        for kind in cls:
            if media_type in (
                kind.value.manifest,
                kind.value.config,
                kind.value.layer_gzip,
                kind.value.layer_tar,
                kind.value.index,
            ):
                return kind
        raise UnrecognizedMediaTypeError(media_type)


def layer_media_type_for(manifest_media_type: str) -> str:
    """Gzip layer media type to use inside a manifest of the given type."""
    if manifest_media_type == DOCKER_MANIFEST_V2:
        return DOCKER_LAYER_GZIP
    if manifest_media_type == OCI_MANIFEST_V1:
        return OCI_LAYER_GZIP_V1
    raise UnrecognizedMediaTypeError(manifest_media_type)


def config_media_type_for(manifest_media_type: str) -> str:
    if manifest_media_type == DOCKER_MANIFEST_V2:
        return DOCKER_CONTAINER_V1
    if manifest_media_type == OCI_MANIFEST_V1:
        return OCI_IMAGE_CONFIG_V1
    raise UnrecognizedMediaTypeError(manifest_media_type)


def uncompressed_media_type_for(layer_media_type: str) -> str:
    if layer_media_type == DOCKER_LAYER_GZIP:
        return DOCKER_LAYER_TAR
    if layer_media_type == OCI_LAYER_GZIP_V1:
        return OCI_LAYER_TAR_V1
    raise UnrecognizedMediaTypeError(layer_media_type)
