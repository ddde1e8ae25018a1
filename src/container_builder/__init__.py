"""Container Builder - Async Python library for building and pushing OCI/Docker images."""

__version__ = "0.1.0"

from .builder import (
    AppCommandInstruction,
    BuildError,
    BuildErrorCode,
    BuiltImage,
    ImageBuilder,
    Result,
)
from .content_store import ContentStore
from .core.config import RegistrySettings
from .core.context import RegistryClientContext
from .core.registry_client import RegistryClient
from .exceptions import (
    BaseImageNotFoundError,
    BlobUploadError,
    ContainerBuilderError,
    ContainerHttpError,
    DigestFormatError,
    LocalDaemonError,
    LocalDaemonLoadError,
    LocalDaemonUnavailableError,
    ManifestError,
    RegistryConnectionError,
    RegistryError,
    RepositoryNotFoundError,
    UnableToAccessRepositoryError,
    UnableToDownloadFromRepositoryError,
    UnrecognizedMediaTypeError,
)
from .layer import Layer
from .local_daemon import LocalDaemon
from .models import (
    Descriptor,
    DestinationImageReference,
    Image,
    ManifestKind,
    ManifestList,
    ManifestV2,
    SourceImageReference,
)
from .multi_arch import MultiArchImage, create_image_index
from .push import publish_image, push_image, push_manifest_list
from .registry import Registry, check_registry_connectivity, pull_base_image
from .resolver import RuntimeGraph, pick_best_manifest_for_rid, rid_for_platform
from .tar import write_image_to_stream
from .utils.digest import Digest, DigestAlgorithm

__all__ = [
    "AppCommandInstruction",
    "BaseImageNotFoundError",
    "BlobUploadError",
    "BuildError",
    "BuildErrorCode",
    "BuiltImage",
    "ContainerBuilderError",
    "ContainerHttpError",
    "ContentStore",
    "Descriptor",
    "DestinationImageReference",
    "Digest",
    "DigestAlgorithm",
    "DigestFormatError",
    "Image",
    "ImageBuilder",
    "Layer",
    "LocalDaemon",
    "LocalDaemonError",
    "LocalDaemonLoadError",
    "LocalDaemonUnavailableError",
    "ManifestError",
    "ManifestKind",
    "ManifestList",
    "ManifestV2",
    "MultiArchImage",
    "Registry",
    "RegistryClient",
    "RegistryClientContext",
    "RegistryConnectionError",
    "RegistryError",
    "RegistrySettings",
    "RepositoryNotFoundError",
    "Result",
    "RuntimeGraph",
    "SourceImageReference",
    "UnableToAccessRepositoryError",
    "UnableToDownloadFromRepositoryError",
    "UnrecognizedMediaTypeError",
    "check_registry_connectivity",
    "create_image_index",
    "pick_best_manifest_for_rid",
    "publish_image",
    "pull_base_image",
    "push_image",
    "push_manifest_list",
    "rid_for_platform",
    "write_image_to_stream",
]
