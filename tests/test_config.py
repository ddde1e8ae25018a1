"""Tests for registry settings read from the environment."""

import logging

import pytest

from container_builder.core.config import (
    DEFAULT_TIMEOUT,
    ContainerEnvironment,
    RegistrySettings,
    is_local_registry,
)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every CONTAINER_* variable the settings read."""
    for name in ContainerEnvironment.model_fields:
        monkeypatch.delenv(f"CONTAINER_{name.upper()}", raising=False)
    return monkeypatch


def test_defaults(clean_env):
    settings = RegistrySettings.from_env("registry.example.com")
    assert settings.chunked_upload_enabled is None
    assert not settings.force_chunked_upload
    assert settings.chunked_upload_size_bytes is None
    assert settings.parallel_upload_enabled
    assert not settings.is_insecure
    assert settings.credentials is None
    assert settings.timeout == DEFAULT_TIMEOUT


def test_values_parsed(clean_env):
    clean_env.setenv("CONTAINER_PUSH_CHUNKED_UPLOAD", "false")
    clean_env.setenv("CONTAINER_PUSH_FORCE_CHUNKED_UPLOAD", "1")
    clean_env.setenv("CONTAINER_PUSH_CHUNKED_UPLOAD_SIZE_BYTES", "1048576")
    clean_env.setenv("CONTAINER_PUSH_PARALLEL_UPLOAD", "No")
    clean_env.setenv("CONTAINER_REGISTRY_USERNAME", "bot")
    clean_env.setenv("CONTAINER_REGISTRY_PASSWORD", "secret")
    clean_env.setenv("CONTAINER_REGISTRY_TIMEOUT", "30")

    settings = RegistrySettings.from_env("registry.example.com")

    assert settings.chunked_upload_enabled is False
    assert settings.force_chunked_upload
    assert settings.chunked_upload_size_bytes == 1048576
    assert not settings.parallel_upload_enabled
    assert settings.credentials == ("bot", "secret")
    assert settings.timeout == 30


def test_malformed_values_ignored(clean_env, caplog):
    clean_env.setenv("CONTAINER_PUSH_CHUNKED_UPLOAD", "maybe")
    clean_env.setenv("CONTAINER_PUSH_CHUNKED_UPLOAD_SIZE_BYTES", "big")
    clean_env.setenv("CONTAINER_REGISTRY_TIMEOUT", "-5")

    with caplog.at_level(logging.WARNING, logger="container_builder.core.config"):
        settings = RegistrySettings.from_env("registry.example.com")

    assert settings.chunked_upload_enabled is None
    assert settings.chunked_upload_size_bytes is None
    assert settings.timeout == DEFAULT_TIMEOUT
    assert "CONTAINER_REGISTRY_TIMEOUT" in caplog.text


def test_empty_values_are_unset(clean_env):
    clean_env.setenv("CONTAINER_PUSH_PARALLEL_UPLOAD", "")
    clean_env.setenv("CONTAINER_REGISTRY_USERNAME", "")

    settings = RegistrySettings.from_env("registry.example.com")
    assert settings.parallel_upload_enabled
    assert settings.credentials is None


def test_insecure_registries(clean_env):
    clean_env.setenv("CONTAINER_INSECURE_REGISTRIES", "myregistry:5000; other.local")

    assert ContainerEnvironment().insecure_registries == ["myregistry:5000", "other.local"]
    assert RegistrySettings.from_env("myregistry:5000").is_insecure
    assert RegistrySettings.from_env("other.local").is_insecure
    assert not RegistrySettings.from_env("myregistry").is_insecure


def test_settings_from_parsed_environment():
    environment = ContainerEnvironment(
        push_force_chunked_upload=True, insecure_registries=["registry.internal"]
    )
    settings = RegistrySettings.from_environment("registry.internal", environment)
    assert settings.force_chunked_upload
    assert settings.is_insecure


def test_local_registries_are_insecure(clean_env):
    assert is_local_registry("localhost:5000")
    assert is_local_registry("127.0.0.1")
    assert not is_local_registry("ghcr.io")
    assert RegistrySettings.from_env("localhost:5000").is_insecure
