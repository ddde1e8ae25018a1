"""Registry authentication: challenge parsing, token exchange and header caching."""

import base64
import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlsplit

import aiohttp

from ..exceptions import UnableToAccessRepositoryError

logger = logging.getLogger(__name__)

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')
_REPOSITORY_PATH = re.compile(r"^(/v2/.+?)/(?:manifests|blobs|tags)(?:/|$)")


@dataclass
class AuthChallenge:
    """A parsed ``WWW-Authenticate`` header."""

    scheme: str
    params: dict[str, str] = field(default_factory=dict)

    @property
    def realm(self) -> Optional[str]:
        return self.params.get("realm")

    @classmethod
    def parse(cls, header: str) -> "AuthChallenge":
        scheme, _, rest = header.strip().partition(" ")
        return cls(scheme=scheme, params=dict(_CHALLENGE_PARAM.findall(rest)))


def cache_key_for(url: str) -> Optional[str]:
    """Cache key ``host + /v2/<repository>`` for a registry URL.

    Returns None for URLs that are not repository-scoped.
    """
    parts = urlsplit(url)
    match = _REPOSITORY_PATH.match(parts.path)
    if not match:
        return None
    return f"{parts.netloc}{match.group(1)}"


def is_upload_session_url(url: str) -> bool:
    return "/blobs/uploads" in urlsplit(url).path


class AuthHeaderCache:
    """Remembers the Authorization header that satisfied a repository's challenge."""

    def __init__(self) -> None:
        self._headers: dict[str, str] = {}
        self._lock = threading.Lock()

    def try_get(self, url: str) -> Optional[str]:
        key = cache_key_for(url)
        if key is None:
            return None
        with self._lock:
            return self._headers.get(key)

    def add_or_update(self, url: str, header: str) -> None:
        key = cache_key_for(url)
        if key is None:
            return
        with self._lock:
            self._headers[key] = header

    def clear(self) -> None:
        with self._lock:
            self._headers.clear()

    def __len__(self) -> int:
        return len(self._headers)


def basic_auth_header(credentials: tuple[str, str]) -> str:
    username, password = credentials
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


async def fetch_bearer_token(
    session: aiohttp.ClientSession,
    challenge: AuthChallenge,
    credentials: Optional[tuple[str, str]],
    registry_name: str,
    repository: str,
) -> str:
    """Exchange a Bearer challenge for a token at the challenge's realm.

    Args:
        session: HTTP session
        challenge: Parsed Bearer challenge
        credentials: Optional username/password for the token server
        registry_name: Registry name (for error messages)
        repository: Repository being accessed (for error messages)

    Returns:
        Authorization header value ``Bearer <token>``

    Raises:
        UnableToAccessRepositoryError: If the token server refuses
    """
    realm = challenge.realm
    if not realm:
        raise UnableToAccessRepositoryError(registry_name, repository)

    query = {key: challenge.params[key] for key in ("service", "scope") if key in challenge.params}
    auth = aiohttp.BasicAuth(*credentials) if credentials else None
    logger.debug(f"Requesting token from {realm} for {query.get('scope', '<no scope>')}")

    async with session.get(realm, params=query, auth=auth) as resp:
        if resp.status != 200:
            logger.debug(f"Token request to {realm} failed with HTTP {resp.status}")
            raise UnableToAccessRepositoryError(registry_name, repository)
        data = await resp.json(content_type=None)

    token = data.get("token") or data.get("access_token")
    if not token:
        raise UnableToAccessRepositoryError(registry_name, repository)
    return f"Bearer {token}"


async def answer_challenge(
    session: aiohttp.ClientSession,
    header: str,
    credentials: Optional[tuple[str, str]],
    registry_name: str,
    repository: str,
) -> Optional[str]:
    """Compute an Authorization header answering a ``WWW-Authenticate`` challenge.

    Returns:
        Header value, or None when the challenge cannot be answered
    """
    challenge = AuthChallenge.parse(header)
    scheme = challenge.scheme.lower()
    if scheme == "bearer":
        return await fetch_bearer_token(session, challenge, credentials, registry_name, repository)
    if scheme == "basic":
        if credentials is None:
            raise UnableToAccessRepositoryError(registry_name, repository)
        return basic_auth_header(credentials)
    logger.debug(f"Unsupported authentication scheme '{challenge.scheme}'")
    return None
