"""Geo module - Web Mercator tile math."""

from geo.tiling import (
    lonlat_to_tile_xy,
    tile_bounds_lonlat,
    tile_bounds_mercator,
    tile_coordinates_for_zoom,
    tile_count_for_zoom,
    tile_index_ranges,
)

__all__ = [
    'lonlat_to_tile_xy',
    'tile_bounds_lonlat',
    'tile_bounds_mercator',
    'tile_coordinates_for_zoom',
    'tile_count_for_zoom',
    'tile_index_ranges',
]
