"""Image configuration document (the config blob of an image)."""

import copy
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from ..utils.digest import Digest
from ..utils.serialization import parse_json_bytes, to_json_bytes

# Keys modelled explicitly; everything else is carried through untouched.
_IMAGE_KEYS = ("architecture", "os", "variant", "os.version", "created", "rootfs", "config", "history")
_CONFIG_KEYS = ("Entrypoint", "Cmd", "Env", "WorkingDir", "ExposedPorts", "Labels", "User")


@dataclass(frozen=True)
class Port:
    number: int
    type: str = "tcp"

    def __str__(self) -> str:
        return f"{self.number}/{self.type}"

    @classmethod
    def parse(cls, text: str) -> "Port":
        number, _, port_type = text.partition("/")
        return cls(int(number), port_type or "tcp")


@dataclass
class HistoryEntry:
    created: Optional[str] = None
    created_by: Optional[str] = None
    author: Optional[str] = None
    comment: Optional[str] = None
    empty_layer: Optional[bool] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for key in ("created", "created_by", "author", "comment", "empty_layer"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        return cls(
            created=data.get("created"),
            created_by=data.get("created_by"),
            author=data.get("author"),
            comment=data.get("comment"),
            empty_layer=data.get("empty_layer"),
        )


@dataclass
class RootFS:
    diff_ids: list[Digest] = field(default_factory=list)
    type: str = "layers"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "diff_ids": [str(d) for d in self.diff_ids]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RootFS":
        return cls(
            type=data.get("type", "layers"),
            diff_ids=[Digest.parse(d) for d in data.get("diff_ids") or []],
        )


@dataclass
class ContainerConfig:
    """The ``config`` section: how a container of this image is started."""

    entrypoint: Optional[list[str]] = None
    cmd: Optional[list[str]] = None
    env: list[tuple[str, str]] = field(default_factory=list)
    working_dir: Optional[str] = None
    exposed_ports: list[Port] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    user: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def get_env(self, key: str) -> Optional[str]:
        """The value a container sees: the last entry for ``key`` wins."""
        for name, value in reversed(self.env):
            if name == key:
                return value
        return None

    def add_env(self, key: str, value: str) -> None:
        """Append an environment variable; earlier entries for ``key`` stay in place."""
        self.env.append((key, value))

    def add_port(self, port: Port) -> None:
        if port not in self.exposed_ports:
            self.exposed_ports.append(port)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.entrypoint is not None:
            data["Entrypoint"] = list(self.entrypoint)
        if self.cmd is not None:
            data["Cmd"] = list(self.cmd)
        if self.env:
            data["Env"] = [f"{key}={value}" for key, value in self.env]
        if self.working_dir is not None:
            data["WorkingDir"] = self.working_dir
        if self.exposed_ports:
            data["ExposedPorts"] = {str(port): {} for port in self.exposed_ports}
        if self.labels:
            data["Labels"] = dict(self.labels)
        if self.user is not None:
            data["User"] = self.user
        data.update(copy.deepcopy(self.extra))
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "ContainerConfig":
        data = data or {}
        env = []
        for item in data.get("Env") or []:
            key, _, value = item.partition("=")
            env.append((key, value))
        return cls(
            entrypoint=data.get("Entrypoint"),
            cmd=data.get("Cmd"),
            env=env,
            working_dir=data.get("WorkingDir"),
            exposed_ports=[Port.parse(p) for p in (data.get("ExposedPorts") or {})],
            labels=dict(data.get("Labels") or {}),
            user=data.get("User"),
            extra={k: v for k, v in data.items() if k not in _CONFIG_KEYS},
        )


@dataclass
class Image:
    """An image configuration document.

    Unknown top-level and ``config`` keys are preserved so that a base image's
    config survives a parse/serialize round trip.
    """

    os: str = "linux"
    architecture: str = "amd64"
    variant: Optional[str] = None
    os_version: Optional[str] = None
    created: Optional[str] = None
    rootfs: RootFS = field(default_factory=RootFS)
    config: ContainerConfig = field(default_factory=ContainerConfig)
    history: list[HistoryEntry] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_windows(self) -> bool:
        return self.os.lower() == "windows"

    def copy(self) -> "Image":
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"architecture": self.architecture, "os": self.os}
        if self.variant is not None:
            data["variant"] = self.variant
        if self.os_version is not None:
            data["os.version"] = self.os_version
        if self.created is not None:
            data["created"] = self.created
        data["rootfs"] = self.rootfs.to_dict()
        data["config"] = self.config.to_dict()
        if self.history:
            data["history"] = [entry.to_dict() for entry in self.history]
        data.update(copy.deepcopy(self.extra))
        return data

    def to_json_bytes(self) -> bytes:
        return to_json_bytes(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Image":
        return cls(
            os=data.get("os", "linux"),
            architecture=data.get("architecture", "amd64"),
            variant=data.get("variant"),
            os_version=data.get("os.version"),
            created=data.get("created"),
            rootfs=RootFS.from_dict(data.get("rootfs") or {}),
            config=ContainerConfig.from_dict(data.get("config")),
            history=[HistoryEntry.from_dict(h) for h in data.get("history") or []],
            extra={k: v for k, v in data.items() if k not in _IMAGE_KEYS},
        )

    @classmethod
    def from_json(cls, data: Union[bytes, str]) -> "Image":
        return cls.from_dict(parse_json_bytes(data))
