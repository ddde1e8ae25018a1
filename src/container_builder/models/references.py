"""Image references: where an image is pulled from and pushed to."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..local_daemon import LocalDaemon
    from ..registry import Registry

DEFAULT_TAG = "latest"


def parse_repository_tag(
    repo_tag: str, default_tag: Optional[str] = DEFAULT_TAG
) -> tuple[str, Optional[str]]:
    """Split ``repository[:tag]`` into its parts.

    A colon belonging to a registry port (``localhost:5000/app``) is not a tag
    separator.

    Args:
        repo_tag: Repository tag string (e.g., "nginx:alpine")
        default_tag: Tag returned when none is given

    Returns:
        Tuple of (repository, tag)
    """
    last_slash = repo_tag.rfind("/")
    last_colon = repo_tag.rfind(":")
    if last_colon > last_slash:
        return repo_tag[:last_colon], repo_tag[last_colon + 1 :]
    return repo_tag, default_tag


@dataclass
class SourceImageReference:
    """A base image: registry, repository and tag and/or digest."""

    registry: Optional["Registry"]
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @classmethod
    def parse(cls, registry: Optional["Registry"], image: str) -> "SourceImageReference":
        """Parse ``repository[:tag][@digest]`` as written on a command line.

        A digest-only reference carries no tag.

        Examples:
            SourceImageReference.parse(registry, "dotnet/runtime:8.0")
            SourceImageReference.parse(registry, "dotnet/runtime@sha256:abc...")
        """
        digest = None
        if "@" in image:
            image, digest = image.split("@", 1)
        repository, tag = parse_repository_tag(image, None if digest else DEFAULT_TAG)
        if not repository:
            raise ValueError(f"Image reference '{image}' has no repository")
        return cls(registry, repository, tag, digest)

    @property
    def reference(self) -> str:
        """Digest if pinned, else tag, else ``latest``."""
        return self.digest or self.tag or DEFAULT_TAG

    def __str__(self) -> str:
        separator = "@" if self.digest else ":"
        if self.registry is None:
            return f"{self.repository}{separator}{self.reference}"
        return f"{self.registry.registry_name}/{self.repository}{separator}{self.reference}"


class DestinationKind(Enum):
    LOCAL_REGISTRY = "local"
    REMOTE_REGISTRY = "remote"


@dataclass
class DestinationImageReference:
    """Where a built image goes: a remote registry or the local daemon."""

    kind: DestinationKind
    repository: str
    tags: list[str] = field(default_factory=lambda: [DEFAULT_TAG])
    registry: Optional["Registry"] = None
    local_daemon: Optional["LocalDaemon"] = None

    def __post_init__(self) -> None:
        if self.kind is DestinationKind.REMOTE_REGISTRY and self.registry is None:
            raise ValueError("A remote destination requires a registry")
        if not self.tags:
            raise ValueError("A destination requires at least one tag")

    @classmethod
    def remote(
        cls, registry: "Registry", repository: str, tags: Optional[list[str]] = None
    ) -> "DestinationImageReference":
        return cls(
            DestinationKind.REMOTE_REGISTRY,
            repository,
            list(tags or [DEFAULT_TAG]),
            registry=registry,
        )

    @classmethod
    def local(
        cls,
        repository: str,
        tags: Optional[list[str]] = None,
        local_daemon: Optional["LocalDaemon"] = None,
    ) -> "DestinationImageReference":
        return cls(
            DestinationKind.LOCAL_REGISTRY,
            repository,
            list(tags or [DEFAULT_TAG]),
            local_daemon=local_daemon,
        )

    @property
    def repo_tags(self) -> list[str]:
        """``repository:tag`` strings, as written into a Docker tarball."""
        return [f"{self.repository}:{tag}" for tag in self.tags]
