"""Registry settings read from the process environment."""

import logging
from dataclasses import dataclass
from typing import Annotated, Any, Optional
from urllib.parse import urlsplit

from pydantic import Field, ValidationError, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger(__name__)

ENV_PREFIX = "CONTAINER_"
DEFAULT_TIMEOUT = 300

_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}


def is_local_registry(registry_name: str) -> bool:
    host = urlsplit(f"//{registry_name}").hostname or ""
    return host.lower() in _LOCAL_HOSTS


class ContainerEnvironment(BaseSettings):
    """``CONTAINER_*`` variables shared by every registry.

    Empty values count as unset. A value that does not parse is logged and
    replaced by the field default instead of failing the whole build.

    Examples:
        export CONTAINER_PUSH_CHUNKED_UPLOAD=false
        export CONTAINER_INSECURE_REGISTRIES="myregistry:5000;other.local"
    """

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, env_ignore_empty=True)

    push_chunked_upload: Optional[bool] = None
    push_force_chunked_upload: bool = False
    push_chunked_upload_size_bytes: Optional[int] = None
    push_parallel_upload: bool = True
    insecure_registries: Annotated[list[str], NoDecode] = Field(default_factory=list)
    registry_username: Optional[str] = None
    registry_password: Optional[str] = None
    registry_timeout: int = Field(default=DEFAULT_TIMEOUT, gt=0)

    @field_validator("insecure_registries", mode="before")
    @classmethod
    def split_registry_names(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [name.strip() for name in value.split(";") if name.strip()]
        return value

    @field_validator("*", mode="wrap")
    @classmethod
    def ignore_malformed(cls, value: Any, handler, info: ValidationInfo) -> Any:
        try:
            return handler(value)
        except ValidationError:
            name = f"{ENV_PREFIX}{info.field_name.upper()}"
            logger.warning(f"Ignoring {name}={value!r}: not a valid value")
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)


@dataclass
class RegistrySettings:
    """Per-registry upload tuning and connection settings.

    ``chunked_upload_enabled`` of None means "decide by registry": chunking is
    then disabled for Google Artifact Registry and enabled elsewhere.
    """

    chunked_upload_enabled: Optional[bool] = None
    force_chunked_upload: bool = False
    chunked_upload_size_bytes: Optional[int] = None
    parallel_upload_enabled: bool = True
    is_insecure: bool = False
    username: Optional[str] = None
    password: Optional[str] = None
    timeout: int = DEFAULT_TIMEOUT

    @property
    def credentials(self) -> Optional[tuple[str, str]]:
        if self.username is None:
            return None
        return self.username, self.password or ""

    @classmethod
    def from_environment(
        cls, registry_name: str, environment: ContainerEnvironment
    ) -> "RegistrySettings":
        """Apply already-parsed ``CONTAINER_*`` values to one registry.

        Local registries and the ones listed in ``CONTAINER_INSECURE_REGISTRIES``
        are insecure.
        """
        return cls(
            chunked_upload_enabled=environment.push_chunked_upload,
            force_chunked_upload=environment.push_force_chunked_upload,
            chunked_upload_size_bytes=environment.push_chunked_upload_size_bytes,
            parallel_upload_enabled=environment.push_parallel_upload,
            is_insecure=(
                registry_name in environment.insecure_registries
                or is_local_registry(registry_name)
            ),
            username=environment.registry_username,
            password=environment.registry_password,
            timeout=environment.registry_timeout,
        )

    @classmethod
    def from_env(cls, registry_name: str) -> "RegistrySettings":
        """Read settings for ``registry_name`` from the process environment."""
        return cls.from_environment(registry_name, ContainerEnvironment())
