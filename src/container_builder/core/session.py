"""HTTP session helpers."""

from typing import Optional

import aiohttp

from .. import __version__

USER_AGENT = f"container-builder/{__version__}"


async def create_session(
    timeout: int = 300, connector: Optional[aiohttp.BaseConnector] = None
) -> aiohttp.ClientSession:
    """Create an aiohttp session for registry traffic.

    Args:
        timeout: Total request timeout in seconds
        connector: Optional connector for connection pooling

    Returns:
        Configured ClientSession; the caller owns and closes it
    """
    return aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=timeout),
        headers={"User-Agent": USER_AGENT},
    )
