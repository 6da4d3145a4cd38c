from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from domain.models import TileCoordinate
from geo.tiling import tile_coordinates_for_zoom, tile_count_for_zoom

if TYPE_CHECKING:
    from collections.abc import Iterator


def iter_tile_coordinates(
    min_zoom: int,
    max_zoom: int,
    min_lon: float,
    min_lat: float,
    max_lon: float,
    max_lat: float,
) -> Iterator[TileCoordinate]:
    """Yield every tile coordinate of the bbox for each zoom in [min_zoom, max_zoom]."""
    for zoom in range(min_zoom, max_zoom + 1):
        for row, column in tile_coordinates_for_zoom(zoom, min_lon, min_lat, max_lon, max_lat):
            yield TileCoordinate(level=zoom, row=row, column=column)


@dataclass(frozen=True)
class TileRange:
    """Restartable, lazy sequence of the tiles covering a bbox over a zoom range.

    Usage:
        tiles = TileRange(7, 10, -95.8, 35.9, -88.9, 40.5)
        for coord in tiles:
            ...
    """

    min_zoom: int
    max_zoom: int
    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def __iter__(self) -> Iterator[TileCoordinate]:
        return iter_tile_coordinates(
            self.min_zoom,
            self.max_zoom,
            self.min_lon,
            self.min_lat,
            self.max_lon,
            self.max_lat,
        )

    def __len__(self) -> int:
        return sum(
            tile_count_for_zoom(z, self.min_lon, self.min_lat, self.max_lon, self.max_lat)
            for z in range(self.min_zoom, self.max_zoom + 1)
        )
