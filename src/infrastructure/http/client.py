from __future__ import annotations

import ssl

import aiohttp
import certifi

from shared.constants import (
    HTTP_OK_MAX,
    HTTP_OK_MIN,
    HTTP_TIMEOUT_DEFAULT,
    HTTP_USER_AGENT,
)
from sources.url import mask_url_secrets


class TileFetchError(RuntimeError):
    """Non-success HTTP response for a tile request."""

    def __init__(self, status: int, url: str) -> None:
        self.status = status
        self.url = url
        super().__init__(f'HTTP {status} for {mask_url_secrets(url)}')


def make_http_session(connection_limit: int = 0) -> aiohttp.ClientSession:
    """Creates the session used for tile downloads (certifi CA bundle)."""
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context, limit=max(0, connection_limit))
    return aiohttp.ClientSession(
        connector=connector,
        headers={'User-Agent': HTTP_USER_AGENT},
    )


async def fetch_tile_bytes(
    client: aiohttp.ClientSession,
    url: str,
    *,
    timeout_s: float = HTTP_TIMEOUT_DEFAULT,
) -> bytes:
    """
    Downloads one tile body.

    Single attempt, no retry. Raises TileFetchError for any non-2xx status;
    network failures surface as aiohttp.ClientError or TimeoutError.
    """
    timeout = aiohttp.ClientTimeout(total=timeout_s)
    async with client.get(url, timeout=timeout) as resp:
        if not (HTTP_OK_MIN <= resp.status < HTTP_OK_MAX):
            raise TileFetchError(resp.status, url)
        return await resp.read()
