"""Custom exceptions for the container image builder."""

from collections.abc import Iterable


class ContainerBuilderError(Exception):
    """Base exception for all container builder errors."""

    pass


class DigestFormatError(ContainerBuilderError, ValueError):
    """Raised when a digest string, length or charset is malformed."""

    pass


class UnrecognizedMediaTypeError(ContainerBuilderError, ValueError):
    """Raised when a media type is not one of the known content types."""

    def __init__(self, media_type: str | None) -> None:
        self.media_type = media_type
        super().__init__(f"Unrecognized media type '{media_type}'")


class RegistryError(ContainerBuilderError):
    """Base exception for all registry-related errors."""

    pass


class RegistryConnectionError(RegistryError):
    """Raised when unable to connect to the registry."""

    pass


class ContainerHttpError(RegistryError):
    """Raised when the registry answers with an unexpected HTTP status.

    Carries the request URI and the response body so the failure can be
    diagnosed without re-running the request.
    """

    def __init__(
        self,
        message: str,
        uri: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        self.uri = uri
        self.status = status
        self.body = body
        details = message
        if uri:
            details += f" (request: {uri})"
        if status is not None:
            details += f" [HTTP {status}]"
        if body:
            details += f"\n{body}"
        super().__init__(details)


class BlobUploadError(ContainerHttpError):
    """Raised when blob upload fails."""

    pass


class ManifestError(ContainerHttpError):
    """Raised when manifest operations fail."""

    pass


class BaseImageNotFoundError(RegistryError):
    """Raised when no manifest in a manifest list matches the requested RID."""

    def __init__(
        self,
        runtime_identifier: str,
        repository: str,
        reference: str,
        available_rids: Iterable[str],
    ) -> None:
        self.runtime_identifier = runtime_identifier
        self.repository = repository
        self.reference = reference
        self.available_rids = list(available_rids)
        available = ", ".join(self.available_rids) or "<none>"
        super().__init__(
            f"The RID '{runtime_identifier}' is not supported by the base image "
            f"{repository}:{reference}. The supported RIDs are {available}."
        )


class RepositoryNotFoundError(RegistryError):
    """Raised when the registry reports that a repository does not exist."""

    def __init__(self, registry: str, repository: str, reference: str | None = None) -> None:
        self.registry = registry
        self.repository = repository
        self.reference = reference
        target = f"{repository}:{reference}" if reference else repository
        super().__init__(f"Repository '{target}' was not found on registry '{registry}'.")


class UnableToAccessRepositoryError(RegistryError):
    """Raised when the registry denies access to a repository."""

    def __init__(self, registry: str, repository: str) -> None:
        self.registry = registry
        self.repository = repository
        super().__init__(
            f"Unable to access the repository '{repository}' on registry '{registry}'. "
            "Check your credentials and that the repository exists."
        )


class UnableToDownloadFromRepositoryError(RegistryError):
    """Raised when a blob download keeps failing after all retries."""

    def __init__(self, repository: str) -> None:
        self.repository = repository
        super().__init__(f"Unable to download blobs from the repository '{repository}'.")


class LocalDaemonError(ContainerBuilderError):
    """Base exception for local container daemon failures."""

    pass


class LocalDaemonUnavailableError(LocalDaemonError):
    """Raised when no docker/podman CLI or daemon can be reached."""

    pass


class LocalDaemonLoadError(LocalDaemonError):
    """Raised when the daemon rejects an image during load."""

    pass
