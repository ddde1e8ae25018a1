"""Image assembly: customizing a base image and producing a BuiltImage."""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Generic, Optional, Sequence, TypeVar

from . import __version__
from .layer import Layer
from .models import media_types
from .models.descriptor import Descriptor
from .models.image import HistoryEntry, Image, Port
from .models.manifest import ManifestV2
from .utils.digest import Digest

logger = logging.getLogger(__name__)

T = TypeVar("T")

BASE_IMAGE_DIGEST_LABEL = "org.opencontainers.image.base.digest"
BASE_IMAGE_NAME_LABEL = "org.opencontainers.image.base.name"

APP_UID = "APP_UID"
ASPNETCORE_URLS = "ASPNETCORE_URLS"
ASPNETCORE_HTTP_PORTS = "ASPNETCORE_HTTP_PORTS"
ASPNETCORE_HTTPS_PORTS = "ASPNETCORE_HTTPS_PORTS"

HISTORY_AUTHOR = "container-builder"
HISTORY_CREATED_BY = f"container-builder {__version__}"

# Base images that ship `dotnet` alone as their ENTRYPOINT cannot run an app with it.
_DISCARDED_BASE_ENTRYPOINTS = (["dotnet"], ["/usr/bin/dotnet"])

_URL_PORT_PATTERN = re.compile(r"(?P<scheme>\w+)://(?P<domain>([*+]|).+):(?P<port>\d+)")


class BuildErrorCode(str, Enum):
    ENTRYPOINT_ARGS_SET_NO_ENTRYPOINT = "EntrypointArgsSetNoEntrypoint"
    APP_COMMAND_ARGS_SET_NO_APP_COMMAND = "AppCommandArgsSetNoAppCommand"
    ENTRYPOINT_CONFLICT_APP_COMMAND = "EntrypointConflictAppCommand"
    APP_COMMAND_SET_NOT_USED = "AppCommandSetNotUsed"
    INVALID_APP_COMMAND_INSTRUCTION = "InvalidAppCommandInstruction"


@dataclass(frozen=True)
class BuildError:
    code: BuildErrorCode
    message: str


@dataclass
class Result(Generic[T]):
    """A value, or the list of every validation error that prevented it."""

    value: Optional[T] = None
    errors: list[BuildError] = field(default_factory=list)

    @property
    def is_success(self) -> bool:
        return not self.errors

    def unwrap(self) -> T:
        """Return the value, raising ValueError listing the errors if there are any."""
        if self.errors:
            details = "; ".join(f"{e.code.value}: {e.message}" for e in self.errors)
            raise ValueError(f"Image build failed: {details}")
        return self.value  # type: ignore[return-value]


class AppCommandInstruction(str, Enum):
    """How the application command is wired into ENTRYPOINT/CMD."""

    NONE = "None"
    DEFAULT_ARGS = "DefaultArgs"
    ENTRYPOINT = "Entrypoint"

    @classmethod
    def parse(cls, text: str) -> Optional["AppCommandInstruction"]:
        for member in cls:
            if member.value.lower() == text.strip().lower():
                return member
        return None


@dataclass(frozen=True)
class BuiltImage:
    """The immutable outcome of ImageBuilder.build()."""

    config: Image
    config_json: bytes
    image_digest: Digest
    manifest: ManifestV2
    manifest_digest: Digest
    manifest_media_type: str
    layers: list[Descriptor]
    os: str
    architecture: str
    variant: Optional[str] = None
    os_version: Optional[str] = None

    @property
    def image_size(self) -> int:
        return len(self.config_json)

    @property
    def config_descriptor(self) -> Descriptor:
        return self.manifest.config


def determine_entrypoint_and_cmd(
    entrypoint: Sequence[str],
    entrypoint_args: Sequence[str],
    cmd: Sequence[str],
    app_command: Sequence[str],
    app_command_args: Sequence[str],
    app_command_instruction: Optional[str],
    base_image_entrypoint: Optional[Sequence[str]],
) -> Result[tuple[list[str], list[str]]]:
    """Decide the final ENTRYPOINT and CMD of an image.

    Args:
        entrypoint: Explicit entrypoint
        entrypoint_args: Arguments appended to the explicit entrypoint
        cmd: Explicit default arguments
        app_command: Command that starts the application
        app_command_args: Arguments that always follow the app command
        app_command_instruction: ``None``, ``DefaultArgs``, ``Entrypoint`` or
            empty to infer it
        base_image_entrypoint: ENTRYPOINT of the base image

    Returns:
        Result carrying ``(entrypoint, cmd)``; on any error the value is
        ``([], [])`` and the errors are listed
    """
    entrypoint = list(entrypoint)
    entrypoint_args = list(entrypoint_args)
    cmd = list(cmd)
    app_command = list(app_command)
    app_command_args = list(app_command_args)

    def failed(code: BuildErrorCode, message: str) -> Result[tuple[list[str], list[str]]]:
        return Result(value=([], []), errors=[BuildError(code, message)])

    sets_entrypoint = bool(entrypoint or entrypoint_args)
    sets_cmd = bool(cmd)

    fallback_entrypoint = list(base_image_entrypoint or [])
    if fallback_entrypoint in _DISCARDED_BASE_ENTRYPOINTS:
        fallback_entrypoint = []

    if not app_command_instruction:
        if sets_entrypoint:
            if not sets_cmd and not app_command_args and not entrypoint and app_command:
                # Legacy form: only entrypoint args were given, so the app command
                # takes the entrypoint's place and the args become CMD.
                entrypoint = app_command
                app_command = []
                cmd = entrypoint_args
                entrypoint_args = []
                logger.warning(
                    "Entrypoint args were set without an entrypoint; prefer app command "
                    "args for arguments that must always be set"
                )
                instruction: Optional[AppCommandInstruction] = AppCommandInstruction.NONE
            else:
                instruction = AppCommandInstruction.DEFAULT_ARGS
        else:
            if fallback_entrypoint:
                logger.warning(
                    f"The base image ENTRYPOINT {fallback_entrypoint} is replaced by the "
                    "app command"
                )
            instruction = AppCommandInstruction.ENTRYPOINT
    else:
        instruction = AppCommandInstruction.parse(app_command_instruction)
        if instruction is None:
            return failed(
                BuildErrorCode.INVALID_APP_COMMAND_INSTRUCTION,
                f"'{app_command_instruction}' is not a valid app command instruction. "
                "Use one of: None, DefaultArgs, Entrypoint.",
            )

    if entrypoint_args and not entrypoint:
        return failed(
            BuildErrorCode.ENTRYPOINT_ARGS_SET_NO_ENTRYPOINT,
            "Entrypoint args were set but no entrypoint was set.",
        )
    if app_command_args and not app_command:
        return failed(
            BuildErrorCode.APP_COMMAND_ARGS_SET_NO_APP_COMMAND,
            "App command args were set but no app command was set.",
        )

    if instruction is AppCommandInstruction.NONE:
        if app_command or app_command_args:
            return failed(
                BuildErrorCode.APP_COMMAND_SET_NOT_USED,
                "An app command was set but the instruction 'None' does not use it.",
            )
    elif instruction is AppCommandInstruction.DEFAULT_ARGS:
        cmd = app_command + app_command_args + cmd
    elif instruction is AppCommandInstruction.ENTRYPOINT:
        if sets_entrypoint:
            return failed(
                BuildErrorCode.ENTRYPOINT_CONFLICT_APP_COMMAND,
                "An entrypoint was set but the instruction 'Entrypoint' makes the app "
                "command the entrypoint.",
            )
        entrypoint = app_command
        entrypoint_args = app_command_args

    final_entrypoint = entrypoint + entrypoint_args if entrypoint else fallback_entrypoint
    return Result(value=(final_entrypoint, cmd))


def _split_list(value: str) -> list[str]:
    return [part.strip() for part in value.split(";") if part.strip()]


class ImageBuilder:
    """Customizes a base image and produces a BuiltImage.

    The base manifest and config are deep-copied on construction; the caller's
    objects are never mutated. Setters that can fail record a BuildError and
    ``build()`` reports every recorded error at once.
    """

    def __init__(
        self,
        base_manifest: ManifestV2,
        manifest_media_type: str,
        base_config: Image,
        base_image_name: Optional[str] = None,
    ) -> None:
        self._base_manifest = base_manifest
        self.manifest = base_manifest.copy()
        self.manifest_media_type = manifest_media_type
        self.config = base_config.copy()
        self.base_image_name = base_image_name
        self._base_entrypoint = list(base_config.config.entrypoint or [])
        self._user_set_explicitly = False
        self._new_layers: list[Layer] = []
        self._errors: list[BuildError] = []

    @property
    def is_windows(self) -> bool:
        return self.config.is_windows

    @property
    def base_config(self) -> Image:
        return self.config

    @property
    def errors(self) -> list[BuildError]:
        return list(self._errors)

    def add_layer(self, layer: Layer) -> None:
        """Append a layer, keeping manifest layers and rootfs diff_ids in step."""
        uncompressed = layer.descriptor.uncompressed_digest
        if uncompressed is None:
            raise ValueError(
                f"Layer {layer.descriptor.digest} has no uncompressed digest; "
                "decompress it before adding"
            )
        self.manifest.layers.append(layer.descriptor)
        self.config.rootfs.diff_ids.append(uncompressed)
        self._new_layers.append(layer)

    def add_label(self, name: str, value: str) -> None:
        self.config.config.labels[name] = value

    def add_environment_variable(self, name: str, value: str) -> None:
        self.config.config.add_env(name, value)

    def expose_port(self, number: int, port_type: str = "tcp") -> None:
        port_type = port_type.lower()
        if port_type not in ("tcp", "udp"):
            raise ValueError(f"Unsupported port type '{port_type}'")
        self.config.config.add_port(Port(int(number), port_type))

    def set_working_directory(self, working_directory: str) -> None:
        self.config.config.working_dir = working_directory

    def set_user(self, user: str, is_explicit: bool = True) -> None:
        """Set the container user; an inferred user never replaces an explicit one."""
        if not is_explicit and self._user_set_explicitly:
            return
        self.config.config.user = user
        if is_explicit:
            self._user_set_explicitly = True

    def set_entrypoint_and_cmd(
        self,
        entrypoint: Sequence[str] = (),
        entrypoint_args: Sequence[str] = (),
        cmd: Sequence[str] = (),
        app_command: Sequence[str] = (),
        app_command_args: Sequence[str] = (),
        app_command_instruction: Optional[str] = None,
    ) -> Result[tuple[list[str], list[str]]]:
        result = determine_entrypoint_and_cmd(
            entrypoint,
            entrypoint_args,
            cmd,
            app_command,
            app_command_args,
            app_command_instruction,
            self._base_entrypoint,
        )
        if result.errors:
            self._errors.extend(result.errors)
            return result
        final_entrypoint, final_cmd = result.value  # type: ignore[misc]
        self.config.config.entrypoint = final_entrypoint or None
        self.config.config.cmd = final_cmd or None
        return result

    def add_base_image_digest_label(self) -> None:
        """Annotate the image with the base image it was built from."""
        if self._base_manifest.known_digest is not None:
            self.add_label(BASE_IMAGE_DIGEST_LABEL, str(self._base_manifest.known_digest))
        if self.base_image_name:
            self.add_label(BASE_IMAGE_NAME_LABEL, self.base_image_name)

    def assign_user_from_environment(self) -> None:
        app_uid = self.config.config.get_env(APP_UID)
        if app_uid:
            logger.debug("Setting user from APP_UID environment variable")
            self.set_user(app_uid, is_explicit=False)

    def assign_ports_from_environment(self) -> None:
        """Expose the ports an ASP.NET Core base image is configured to listen on.

        ``ASPNETCORE_URLS`` is the most specific setting and, when present, the
        port-specific variables are ignored. Malformed entries are skipped.
        """
        urls = self.config.config.get_env(ASPNETCORE_URLS)
        if urls is not None:
            for url in _split_list(urls):
                match = _URL_PORT_PATTERN.match(url)
                if match:
                    logger.debug(f"Exposing port {match.group('port')} from {ASPNETCORE_URLS}")
                    self.expose_port(int(match.group("port")))
            return

        for variable in (ASPNETCORE_HTTP_PORTS, ASPNETCORE_HTTPS_PORTS):
            ports = self.config.config.get_env(variable)
            if ports is None:
                continue
            for port in _split_list(ports):
                if port.isdigit():
                    logger.debug(f"Exposing port {port} from {variable}")
                    self.expose_port(int(port))

    def build(self) -> Result[BuiltImage]:
        """Finalize the config and manifest.

        Returns:
            Result with the BuiltImage, or every error recorded by the setters
        """
        if self._errors:
            return Result(errors=list(self._errors))

        self.assign_user_from_environment()
        self.assign_ports_from_environment()

        created = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        self.config.created = created
        for _ in self._new_layers:
            self.config.history.append(
                HistoryEntry(created=created, created_by=HISTORY_CREATED_BY, author=HISTORY_AUTHOR)
            )
        self._new_layers = []

        config_json = self.config.to_json_bytes()
        config_descriptor = Descriptor.from_content(
            config_json, media_types.config_media_type_for(self.manifest_media_type)
        )
        manifest = ManifestV2(
            schema_version=self.manifest.schema_version,
            media_type=self.manifest_media_type,
            config=config_descriptor,
            layers=[
                Descriptor(layer.media_type, layer.digest, layer.size, layer.urls, layer.annotations)
                for layer in self.manifest.layers
            ],
            annotations=self.manifest.annotations,
        )

        return Result(
            value=BuiltImage(
                config=self.config.copy(),
                config_json=config_json,
                image_digest=config_descriptor.digest,
                manifest=manifest,
                manifest_digest=manifest.digest,
                manifest_media_type=self.manifest_media_type,
                layers=list(manifest.layers),
                os=self.config.os,
                architecture=self.config.architecture,
                variant=self.config.variant,
                os_version=self.config.os_version,
            )
        )
