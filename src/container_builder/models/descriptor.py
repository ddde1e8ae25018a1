"""Content descriptors: typed pointers to addressable content."""

from dataclasses import dataclass, field
from typing import Any, Optional

from ..utils.digest import Digest, DigestAlgorithm
from ..utils.serialization import to_json_bytes


@dataclass
class PlatformInformation:
    """Platform an image in a manifest list was built for."""

    architecture: str
    os: str
    variant: Optional[str] = None
    features: Optional[list[str]] = None
    os_version: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"architecture": self.architecture, "os": self.os}
        if self.variant is not None:
            data["variant"] = self.variant
        if self.features is not None:
            data["features"] = list(self.features)
        if self.os_version is not None:
            data["os.version"] = self.os_version
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlatformInformation":
        return cls(
            architecture=data.get("architecture", ""),
            os=data.get("os", ""),
            variant=data.get("variant"),
            features=data.get("features"),
            os_version=data.get("os.version"),
        )


@dataclass
class Descriptor:
    """A ``(mediaType, digest, size)`` triple plus optional OCI fields.

    ``uncompressed_digest`` is local bookkeeping for layers and is never
    serialized or compared.
    """

    media_type: str
    digest: Digest
    size: int
    urls: Optional[list[str]] = None
    annotations: Optional[dict[str, str]] = None
    platform: Optional[PlatformInformation] = None
    uncompressed_digest: Optional[Digest] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.digest, str):
            self.digest = Digest.parse(self.digest)
        if isinstance(self.uncompressed_digest, str):
            self.uncompressed_digest = Digest.parse(self.uncompressed_digest)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "mediaType": self.media_type,
            "digest": str(self.digest),
            "size": self.size,
        }
        if self.urls is not None:
            data["urls"] = list(self.urls)
        if self.annotations is not None:
            data["annotations"] = dict(self.annotations)
        if self.platform is not None:
            data["platform"] = self.platform.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Descriptor":
        platform = data.get("platform")
        return cls(
            media_type=data["mediaType"],
            digest=Digest.parse(data["digest"]),
            size=int(data["size"]),
            urls=data.get("urls"),
            annotations=data.get("annotations"),
            platform=PlatformInformation.from_dict(platform) if platform else None,
        )

    @classmethod
    def from_content(
        cls,
        content: Any,
        media_type: str,
        algorithm: DigestAlgorithm = DigestAlgorithm.SHA256,
    ) -> "Descriptor":
        """Serialize ``content`` canonically, hash it and wrap the result.

        Args:
            content: A model object (with ``to_dict``), a JSON value, or raw bytes
            media_type: Media type recorded in the descriptor
            algorithm: Hash algorithm

        Returns:
            Descriptor whose digest and size match the serialized bytes
        """
        data = content if isinstance(content, (bytes, bytearray)) else to_json_bytes(content)
        return cls(
            media_type=media_type,
            digest=Digest.from_bytes(data, algorithm),
            size=len(data),
        )
