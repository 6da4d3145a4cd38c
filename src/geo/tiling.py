"""Web Mercator tile math (XYZ scheme, row 0 at the north edge)."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from shared.constants import (
    MERCATOR_HALF_EXTENT_M,
    MERCATOR_MAX_LAT_DEG,
    WORLD_LNG_HALF_SPAN_DEG,
    WORLD_LNG_SPAN_DEG,
    XY_EPSILON,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from domain.models import TileCoordinate


def lonlat_to_tile_xy(lon_deg: float, lat_deg: float, zoom: int) -> tuple[float, float]:
    """Converts WGS84 (lon, lat) to fractional tile (x, y) at the given zoom."""
    lat = min(max(lat_deg, -MERCATOR_MAX_LAT_DEG), MERCATOR_MAX_LAT_DEG)
    n = 2**zoom
    x = (lon_deg + WORLD_LNG_HALF_SPAN_DEG) / WORLD_LNG_SPAN_DEG * n
    lat_rad = math.radians(lat)
    y = (1.0 - math.asinh(math.tan(lat_rad)) / math.pi) / 2.0 * n
    return x, y


def _clamp_index(value: float, n: int) -> int:
    return max(0, min(n - 1, math.floor(value)))


def tile_index_ranges(
    zoom: int,
    min_lon: float,
    min_lat: float,
    max_lon: float,
    max_lat: float,
) -> tuple[int, int, int, int]:
    """
    Returns the inclusive (row_min, row_max, col_min, col_max) of the tiles
    intersecting the bbox.

    Rows and columns are clamped to the world grid; a bbox edge lying exactly
    on a tile border does not pull in the neighbouring tile.
    """
    n = 2**zoom
    x_min, y_min = lonlat_to_tile_xy(min_lon, max_lat, zoom)
    x_max, y_max = lonlat_to_tile_xy(max_lon, min_lat, zoom)

    col_min = _clamp_index(x_min, n)
    row_min = _clamp_index(y_min, n)
    col_max = max(col_min, _clamp_index(x_max - XY_EPSILON, n))
    row_max = max(row_min, _clamp_index(y_max - XY_EPSILON, n))
    return row_min, row_max, col_min, col_max


def tile_count_for_zoom(
    zoom: int,
    min_lon: float,
    min_lat: float,
    max_lon: float,
    max_lat: float,
) -> int:
    row_min, row_max, col_min, col_max = tile_index_ranges(zoom, min_lon, min_lat, max_lon, max_lat)
    return (row_max - row_min + 1) * (col_max - col_min + 1)


def tile_coordinates_for_zoom(
    zoom: int,
    min_lon: float,
    min_lat: float,
    max_lon: float,
    max_lat: float,
) -> Iterator[tuple[int, int]]:
    """Yields the (row, column) pairs of every tile intersecting the bbox, row by row."""
    row_min, row_max, col_min, col_max = tile_index_ranges(zoom, min_lon, min_lat, max_lon, max_lat)
    for row in range(row_min, row_max + 1):
        for col in range(col_min, col_max + 1):
            yield row, col


def tile_bounds_mercator(coordinate: TileCoordinate) -> tuple[float, float, float, float]:
    """Tile extent in EPSG:3857 meters as (minx, miny, maxx, maxy)."""
    size = 2 * MERCATOR_HALF_EXTENT_M / (2**coordinate.level)
    minx = -MERCATOR_HALF_EXTENT_M + coordinate.column * size
    maxy = MERCATOR_HALF_EXTENT_M - coordinate.row * size
    return minx, maxy - size, minx + size, maxy


def _tile_lat(row: int, n: int) -> float:
    return math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * row / n))))


def tile_bounds_lonlat(coordinate: TileCoordinate) -> tuple[float, float, float, float]:
    """Tile extent in WGS84 degrees as (min_lon, min_lat, max_lon, max_lat)."""
    n = 2**coordinate.level
    min_lon = coordinate.column / n * WORLD_LNG_SPAN_DEG - WORLD_LNG_HALF_SPAN_DEG
    max_lon = (coordinate.column + 1) / n * WORLD_LNG_SPAN_DEG - WORLD_LNG_HALF_SPAN_DEG
    return min_lon, _tile_lat(coordinate.row + 1, n), max_lon, _tile_lat(coordinate.row, n)
