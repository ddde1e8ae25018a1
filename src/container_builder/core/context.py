"""Shared state for registry clients, passed explicitly instead of living in globals."""

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Optional

from .auth import AuthHeaderCache
from .config import RegistrySettings


@dataclass
class RegistryClientContext:
    """Settings source, auth cache and HTTP-fallback decisions for a set of clients.

    Every Registry gets a fresh context unless one is passed in, so tests and
    independent pushes never share cached credentials.
    """

    settings_factory: Callable[[str], RegistrySettings] = RegistrySettings.from_env
    auth_cache: AuthHeaderCache = field(default_factory=AuthHeaderCache)
    http_fallback_registries: set[str] = field(default_factory=set)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def settings_for(self, registry_name: str) -> RegistrySettings:
        return self.settings_factory(registry_name)

    def uses_http_fallback(self, registry_name: str) -> bool:
        with self._lock:
            return registry_name in self.http_fallback_registries

    def mark_http_fallback(self, registry_name: str) -> None:
        with self._lock:
            self.http_fallback_registries.add(registry_name)

    @classmethod
    def with_settings(cls, settings: RegistrySettings, **kwargs) -> "RegistryClientContext":
        """A context that hands out the same settings for every registry."""
        return cls(settings_factory=lambda _name: settings, **kwargs)


def ensure_context(context: Optional[RegistryClientContext]) -> RegistryClientContext:
    return context if context is not None else RegistryClientContext()
