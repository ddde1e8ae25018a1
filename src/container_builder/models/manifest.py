"""Image manifest and manifest list models."""

import copy
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from ..exceptions import UnrecognizedMediaTypeError
from ..utils.digest import Digest
from ..utils.serialization import parse_json_bytes, to_json_bytes
from . import media_types
from .descriptor import Descriptor, PlatformInformation


@dataclass
class ManifestV2:
    """A single-image manifest (Docker V2 schema 2 or OCI v1)."""

    config: Descriptor
    layers: list[Descriptor] = field(default_factory=list)
    media_type: Optional[str] = media_types.DOCKER_MANIFEST_V2
    schema_version: int = 2
    annotations: Optional[dict[str, str]] = None
    known_digest: Optional[Digest] = field(default=None, compare=False)

    @property
    def digest(self) -> Digest:
        """Digest of this manifest.

        The digest reported by the registry wins. Otherwise it is computed from
        the canonical serialization once and remembered.
        """
        if self.known_digest is None:
            self.known_digest = Digest.from_bytes(self.to_json_bytes())
        return self.known_digest

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"schemaVersion": self.schema_version}
        if self.media_type is not None:
            data["mediaType"] = self.media_type
        data["config"] = self.config.to_dict()
        data["layers"] = [layer.to_dict() for layer in self.layers]
        if self.annotations is not None:
            data["annotations"] = dict(self.annotations)
        return data

    def to_json_bytes(self) -> bytes:
        return to_json_bytes(self)

    def copy(self) -> "ManifestV2":
        """Deep copy without the remembered digest."""
        clone = copy.deepcopy(self)
        clone.known_digest = None
        return clone

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], known_digest: Optional[Digest] = None
    ) -> "ManifestV2":
        return cls(
            schema_version=int(data.get("schemaVersion", 2)),
            media_type=data.get("mediaType"),
            config=Descriptor.from_dict(data["config"]),
            layers=[Descriptor.from_dict(layer) for layer in data.get("layers", [])],
            annotations=data.get("annotations"),
            known_digest=known_digest,
        )

    @classmethod
    def from_json(
        cls, data: Union[bytes, str], known_digest: Optional[Digest] = None
    ) -> "ManifestV2":
        return cls.from_dict(parse_json_bytes(data), known_digest)


@dataclass
class PlatformSpecificManifest:
    """One entry of a manifest list / image index."""

    media_type: str
    digest: Digest
    size: int
    platform: PlatformInformation

    def __post_init__(self) -> None:
        if isinstance(self.digest, str):
            self.digest = Digest.parse(self.digest)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mediaType": self.media_type,
            "digest": str(self.digest),
            "size": self.size,
            "platform": self.platform.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlatformSpecificManifest":
        return cls(
            media_type=data.get("mediaType", ""),
            digest=Digest.parse(data["digest"]),
            size=int(data.get("size", 0)),
            platform=PlatformInformation.from_dict(data.get("platform") or {}),
        )


@dataclass
class ManifestList:
    """A Docker manifest list or an OCI image index."""

    manifests: list[PlatformSpecificManifest]
    media_type: str = media_types.DOCKER_MANIFEST_LIST_V2
    schema_version: int = 2
    annotations: Optional[dict[str, str]] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "schemaVersion": self.schema_version,
            "mediaType": self.media_type,
            "manifests": [entry.to_dict() for entry in self.manifests],
        }
        if self.annotations is not None:
            data["annotations"] = dict(self.annotations)
        return data

    def to_json_bytes(self) -> bytes:
        return to_json_bytes(self)

    @property
    def digest(self) -> Digest:
        return Digest.from_bytes(self.to_json_bytes())

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], media_type: Optional[str] = None
    ) -> "ManifestList":
        return cls(
            schema_version=int(data.get("schemaVersion", 2)),
            media_type=data.get("mediaType") or media_type or media_types.OCI_IMAGE_INDEX_V1,
            manifests=[
                PlatformSpecificManifest.from_dict(entry)
                for entry in data.get("manifests", [])
            ],
            annotations=data.get("annotations"),
        )


def parse_manifest(
    media_type: Optional[str],
    body: Union[bytes, str],
    known_digest: Optional[Digest] = None,
) -> Union[ManifestV2, ManifestList]:
    """Parse a manifest document according to its media type.

    Args:
        media_type: Content-Type reported by the registry (or ``mediaType`` field)
        body: Raw JSON document
        known_digest: ``Docker-Content-Digest`` reported by the registry

    Returns:
        ManifestV2 for single images, ManifestList for lists and indexes

    Raises:
        UnrecognizedMediaTypeError: If the media type is not a manifest type
    """
    data = parse_json_bytes(body)
    if not media_type:
        media_type = data.get("mediaType")
    if media_type in media_types.MANIFEST_TYPES:
        manifest = ManifestV2.from_dict(data, known_digest)
        if manifest.media_type is None:
            manifest.media_type = media_type
        return manifest
    if media_type in media_types.MANIFEST_LIST_TYPES:
        return ManifestList.from_dict(data, media_type)
    raise UnrecognizedMediaTypeError(media_type)
