"""Registry HTTP API v2 wire layer."""

from .config import RegistrySettings
from .context import RegistryClientContext
from .registry_client import RegistryClient

__all__ = ["RegistryClient", "RegistryClientContext", "RegistrySettings"]
