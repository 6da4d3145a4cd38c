"""Map service URL strategies."""
from sources.url import (
    TileUrlSource,
    make_tile_source,
    mask_url_secrets,
    parse_query_string,
)

__all__ = [
    'TileUrlSource',
    'make_tile_source',
    'mask_url_secrets',
    'parse_query_string',
]
