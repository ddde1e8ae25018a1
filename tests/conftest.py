"""Test configuration and fixtures."""

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer

from container_builder import ContentStore, Registry, RegistryClientContext, RegistrySettings
from tests.helpers import FakeRegistry


@pytest.fixture
def store(tmp_path):
    """Isolated content store."""
    return ContentStore(tmp_path / "store")


@pytest.fixture
def settings():
    """Settings that ignore the process environment."""
    return RegistrySettings()


@pytest_asyncio.fixture
async def fake_registry():
    """Start an in-process registry and yield it with its URL set."""
    registry = FakeRegistry()
    server = TestServer(registry.make_app())
    await server.start_server()
    registry.url = str(server.make_url("")).rstrip("/")
    yield registry
    await server.close()


@pytest_asyncio.fixture
async def registry(fake_registry, store, settings):
    """Client-side Registry pointed at the fake registry."""
    context = RegistryClientContext.with_settings(settings)
    async with Registry(fake_registry.url, store=store, context=context, retry_delay=0) as reg:
        yield reg


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")
