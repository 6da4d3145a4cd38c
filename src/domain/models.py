from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, field_validator, model_validator

from shared.constants import (
    AGS_SAMPLE_SERVICE_URL,
    CACHE_FILE_NAME,
    DEFAULT_MAX_LAT,
    DEFAULT_MAX_LON,
    DEFAULT_MAX_PARALLELISM,
    DEFAULT_MAX_ZOOM,
    DEFAULT_MIN_LAT,
    DEFAULT_MIN_LON,
    DEFAULT_MIN_ZOOM,
    HTTP_TIMEOUT_DEFAULT,
    MAX_ZOOM,
    OSM_BASE_URL_TEMPLATE,
    TILE_BATCH_SIZE,
    TILE_CHANNEL_SIZE,
    WORLD_LAT_MAX_DEG,
    WORLD_LNG_HALF_SPAN_DEG,
    MapServiceType,
    default_map_service_type,
)


@dataclass(frozen=True)
class TileCoordinate:
    """Position of one tile in the XYZ grid."""

    level: int
    row: int
    column: int

    def __str__(self) -> str:
        return f'z{self.level}/r{self.row}/c{self.column}'


@dataclass(frozen=True)
class TileImage:
    """Downloaded tile body bound to its coordinate."""

    coordinate: TileCoordinate
    data: bytes = field(repr=False)


class CacheJobSettings(BaseModel):
    """
    Everything a cache run needs: area, zoom range, map service
    and pipeline tuning.
    """

    model_config = {
        'extra': 'ignore',  # unknown keys in profiles are ignored
    }

    # Directory that receives the cache file
    output_dir: Path = Path()
    cache_file_name: str = CACHE_FILE_NAME

    # Zoom range, inclusive on both ends
    min_zoom: int = DEFAULT_MIN_ZOOM
    max_zoom: int = DEFAULT_MAX_ZOOM

    # Bounding box in WGS84 degrees
    min_lon: float = DEFAULT_MIN_LON
    min_lat: float = DEFAULT_MIN_LAT
    max_lon: float = DEFAULT_MAX_LON
    max_lat: float = DEFAULT_MAX_LAT

    # Map service
    service_type: MapServiceType = default_map_service_type()
    # Empty means the default for the service type
    service_url: str = ''
    # Extra query-string values for the service, "a=b&c=d"
    service_settings: str = ''

    # Total number of concurrent operations, half fetch / half write
    max_parallelism: int = DEFAULT_MAX_PARALLELISM
    batch_size: int = TILE_BATCH_SIZE
    channel_size: int = TILE_CHANNEL_SIZE
    request_timeout_s: float = HTTP_TIMEOUT_DEFAULT

    # Delete an existing cache file before the run
    replace_existing: bool = True
    # Log every downloaded tile
    verbose: bool = True

    @field_validator('service_type', mode='before')
    @classmethod
    def normalize_service_type(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator('min_zoom', 'max_zoom')
    @classmethod
    def validate_zoom(cls, v: int) -> int:
        if not (0 <= v <= MAX_ZOOM):
            msg = f'Zoom level must be within [0, {MAX_ZOOM}], got {v}'
            raise ValueError(msg)
        return v

    @field_validator('min_lon', 'max_lon')
    @classmethod
    def validate_lon(cls, v: float) -> float:
        if not (-WORLD_LNG_HALF_SPAN_DEG <= v <= WORLD_LNG_HALF_SPAN_DEG):
            msg = f'Longitude must be within [-180, 180], got {v}'
            raise ValueError(msg)
        return v

    @field_validator('min_lat', 'max_lat')
    @classmethod
    def validate_lat(cls, v: float) -> float:
        if not (-WORLD_LAT_MAX_DEG <= v <= WORLD_LAT_MAX_DEG):
            msg = f'Latitude must be within [-90, 90], got {v}'
            raise ValueError(msg)
        return v

    @field_validator('max_parallelism', 'batch_size', 'channel_size')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            msg = f'Value must be at least 1, got {v}'
            raise ValueError(msg)
        return v

    @field_validator('request_timeout_s')
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            msg = f'Request timeout must be positive, got {v}'
            raise ValueError(msg)
        return v

    @model_validator(mode='after')
    def validate_ranges(self) -> CacheJobSettings:
        if self.min_zoom > self.max_zoom:
            msg = f'min_zoom ({self.min_zoom}) is greater than max_zoom ({self.max_zoom})'
            raise ValueError(msg)
        if self.min_lon >= self.max_lon:
            msg = f'min_lon ({self.min_lon}) must be less than max_lon ({self.max_lon})'
            raise ValueError(msg)
        if self.min_lat >= self.max_lat:
            msg = f'min_lat ({self.min_lat}) must be less than max_lat ({self.max_lat})'
            raise ValueError(msg)
        if not self.effective_service_url:
            msg = f'A map service URL is required for service type {self.service_type.value}'
            raise ValueError(msg)
        return self

    @property
    def effective_service_url(self) -> str:
        """service_url, or the default endpoint of the service type when it is empty.

        The default is resolved on access and never stored, so a saved profile
        keeps an empty URL and follows a later change of service type.
        """
        if self.service_url:
            return self.service_url
        if self.service_type == MapServiceType.OSM:
            return OSM_BASE_URL_TEMPLATE
        if self.service_type == MapServiceType.AGS_DYNAMIC:
            return AGS_SAMPLE_SERVICE_URL
        return ''

    @property
    def cache_path(self) -> Path:
        return self.output_dir / self.cache_file_name

    @property
    def fetch_concurrency(self) -> int:
        return max(1, self.max_parallelism // 2)

    @property
    def write_concurrency(self) -> int:
        return max(1, self.max_parallelism - self.fetch_concurrency)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return self.min_lon, self.min_lat, self.max_lon, self.max_lat
