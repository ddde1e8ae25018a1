"""HTTP transport with registry auth handshake and insecure-registry fallback."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

import aiohttp

from ..exceptions import RegistryConnectionError
from .auth import answer_challenge, is_upload_session_url
from .config import RegistrySettings
from .context import RegistryClientContext
from .session import create_session
from .types import RequestResult

logger = logging.getLogger(__name__)

# Raised by aiohttp when an https request reaches a plain-http server.
_TLS_FAILURES = (aiohttp.ClientSSLError, aiohttp.ClientOSError, aiohttp.ServerDisconnectedError)


def _repository_from_url(url: str) -> str:
    path = urlsplit(url).path
    if not path.startswith("/v2/"):
        return ""
    for marker in ("/manifests/", "/blobs/", "/tags/"):
        if marker in path:
            return path[len("/v2/") : path.index(marker)]
    return path[len("/v2/") :]


def _with_http_scheme(url: str) -> str:
    parts = urlsplit(url)
    if parts.scheme != "https":
        return url
    return urlunsplit(("http",) + tuple(parts[1:]))


class RegistryTransport:
    """Sends requests to one registry.

    Adds a cached Authorization header when one is known, answers a 401
    challenge once per request, and for insecure registries switches from
    https to http after a TLS failure (remembered in the context).
    """

    def __init__(
        self,
        registry_name: str,
        context: RegistryClientContext,
        settings: RegistrySettings,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.registry_name = registry_name
        self.context = context
        self.settings = settings
        self.session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = await create_session(timeout=self.settings.timeout)
            self._owns_session = True
        return self.session

    async def close(self) -> None:
        if self._owns_session and self.session is not None and not self.session.closed:
            await self.session.close()

    def _effective_url(self, url: str) -> str:
        if self.settings.is_insecure and self.context.uses_http_fallback(self.registry_name):
            return _with_http_scheme(url)
        return url

    async def _send(
        self, method: str, url: str, headers: dict[str, str], data: Any
    ) -> aiohttp.ClientResponse:
        session = await self._get_session()
        target = self._effective_url(url)
        try:
            return await session.request(method, target, headers=headers, data=data)
        except _TLS_FAILURES as e:
            if not (self.settings.is_insecure and urlsplit(target).scheme == "https"):
                raise RegistryConnectionError(f"{method} {target} failed: {e}") from e
            logger.warning(
                f"TLS connection to insecure registry {self.registry_name} failed, "
                "falling back to http"
            )
            self.context.mark_http_fallback(self.registry_name)
        except aiohttp.ClientError as e:
            raise RegistryConnectionError(f"{method} {target} failed: {e}") from e

        target = _with_http_scheme(url)
        try:
            return await session.request(method, target, headers=headers, data=data)
        except aiohttp.ClientError as e:
            raise RegistryConnectionError(f"{method} {target} failed: {e}") from e

    @asynccontextmanager
    async def stream(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        data: Any = None,
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """Send a request and yield the live response.

        Only ``bytes`` or ``None`` bodies can be replayed after an auth
        challenge; a streamed body that meets a 401 is returned as is.
        """
        request_headers = dict(headers or {})
        cached = self.context.auth_cache.try_get(url)
        if cached and "Authorization" not in request_headers:
            request_headers["Authorization"] = cached

        response = await self._send(method, url, request_headers, data)
        try:
            challenge = response.headers.get("WWW-Authenticate")
            replayable = data is None or isinstance(data, (bytes, bytearray))
            if response.status == 401 and challenge and replayable:
                session = await self._get_session()
                auth_header = await answer_challenge(
                    session,
                    challenge,
                    self.settings.credentials,
                    self.registry_name,
                    _repository_from_url(url),
                )
                if auth_header is not None:
                    response.release()
                    request_headers["Authorization"] = auth_header
                    response = await self._send(method, url, request_headers, data)
                    # Some registries answer upload-session challenges with the wrong scope.
                    if response.status != 401 and not is_upload_session_url(url):
                        self.context.auth_cache.add_or_update(url, auth_header)
            yield response
        finally:
            response.release()

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        data: Any = None,
    ) -> RequestResult:
        """Send a request and read the whole response body."""
        async with self.stream(method, url, headers=headers, data=data) as resp:
            try:
                body = await resp.read()
            except aiohttp.ClientError as e:
                raise RegistryConnectionError(f"{method} {url} failed: {e}") from e
            return RequestResult(
                status_code=resp.status, headers=resp.headers, data=body, url=str(resp.url)
            )
