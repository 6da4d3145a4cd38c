"""HTTP client infrastructure."""
from infrastructure.http.client import (
    TileFetchError,
    fetch_tile_bytes,
    make_http_session,
)

__all__ = [
    'TileFetchError',
    'fetch_tile_bytes',
    'make_http_session',
]
