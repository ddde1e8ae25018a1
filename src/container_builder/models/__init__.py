"""Data models for manifests, image configs and references."""

from .descriptor import Descriptor, PlatformInformation
from .image import ContainerConfig, HistoryEntry, Image, Port, RootFS
from .manifest import ManifestList, ManifestV2, PlatformSpecificManifest, parse_manifest
from .media_types import ManifestKind
from .references import (
    DestinationImageReference,
    DestinationKind,
    SourceImageReference,
    parse_repository_tag,
)

__all__ = [
    "ContainerConfig",
    "Descriptor",
    "DestinationImageReference",
    "DestinationKind",
    "HistoryEntry",
    "Image",
    "ManifestKind",
    "ManifestList",
    "ManifestV2",
    "PlatformInformation",
    "PlatformSpecificManifest",
    "Port",
    "RootFS",
    "SourceImageReference",
    "parse_manifest",
    "parse_repository_tag",
]
