"""Tests for the image configuration document."""

import json

from container_builder.models.image import ContainerConfig, Image, Port
from container_builder.utils.digest import Digest

BASE_CONFIG = {
    "architecture": "arm64",
    "os": "linux",
    "variant": "v8",
    "created": "2024-01-01T00:00:00Z",
    "docker_version": "24.0.0",
    "rootfs": {"type": "layers", "diff_ids": [str(Digest.from_bytes(b"base"))]},
    "config": {
        "Env": ["PATH=/usr/bin", "EMPTY=", "WITH_EQUALS=a=b"],
        "Entrypoint": ["/entry"],
        "WorkingDir": "/srv",
        "ExposedPorts": {"80/tcp": {}, "53/udp": {}},
        "Labels": {"maintainer": "team"},
        "StopSignal": "SIGTERM",
    },
    "history": [{"created_by": "base layer"}],
}


def test_unknown_keys_preserved():
    """Keys the model does not know survive parsing and serialization."""
    image = Image.from_dict(BASE_CONFIG)
    data = json.loads(image.to_json_bytes())

    assert data["docker_version"] == "24.0.0"
    assert data["config"]["StopSignal"] == "SIGTERM"
    assert data["variant"] == "v8"
    assert data["rootfs"] == BASE_CONFIG["rootfs"]


def test_env_parsing_and_order():
    config = ContainerConfig.from_dict(BASE_CONFIG["config"])
    assert config.env == [("PATH", "/usr/bin"), ("EMPTY", ""), ("WITH_EQUALS", "a=b")]
    assert config.get_env("WITH_EQUALS") == "a=b"
    assert config.get_env("MISSING") is None


def test_add_env_appends_duplicates():
    """A repeated key is appended; the later value is the one that applies."""
    config = ContainerConfig.from_dict(BASE_CONFIG["config"])
    config.add_env("PATH", "/opt/bin")
    config.add_env("NEW", "1")
    assert config.to_dict()["Env"] == [
        "PATH=/usr/bin",
        "EMPTY=",
        "WITH_EQUALS=a=b",
        "PATH=/opt/bin",
        "NEW=1",
    ]
    assert config.get_env("PATH") == "/opt/bin"


def test_ports():
    config = ContainerConfig.from_dict(BASE_CONFIG["config"])
    assert config.exposed_ports == [Port(80, "tcp"), Port(53, "udp")]
    config.add_port(Port(80))
    config.add_port(Port(8080))
    assert list(config.to_dict()["ExposedPorts"]) == ["80/tcp", "53/udp", "8080/tcp"]


def test_port_parse_defaults_to_tcp():
    assert Port.parse("443") == Port(443, "tcp")
    assert str(Port.parse("53/udp")) == "53/udp"


def test_copy_is_independent():
    image = Image.from_dict(BASE_CONFIG)
    clone = image.copy()
    clone.config.labels["extra"] = "x"
    clone.rootfs.diff_ids.append(Digest.from_bytes(b"new"))

    assert "extra" not in image.config.labels
    assert len(image.rootfs.diff_ids) == 1


def test_empty_config_defaults():
    image = Image.from_dict({"os": "windows", "architecture": "amd64", "os.version": "10.0.20348"})
    assert image.is_windows
    assert image.os_version == "10.0.20348"
    assert image.config.entrypoint is None
    assert image.rootfs.diff_ids == []
    assert Image.from_json(image.to_json_bytes()) == image
