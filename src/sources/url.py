"""Tile URL generation for the supported map service protocols."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from geo.tiling import tile_bounds_mercator
from shared.constants import (
    DEFAULT_IMAGE_FORMAT,
    OSM_SUBDOMAINS,
    SECRET_QUERY_KEYS,
    SECRET_VISIBLE_PREFIX_LEN,
    TILE_SIZE,
    WEB_MERCATOR_CODE,
    WMS_IMAGE_FORMAT,
    WMS_VERSION_1_1_1,
    WMS_VERSION_1_3_0,
    MapServiceType,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from domain.models import TileCoordinate

logger = logging.getLogger(__name__)


def parse_query_string(settings: str) -> dict[str, str]:
    """Parses "a=b&c=d" service settings into a flat dict."""
    if not settings:
        return {}
    return dict(parse_qsl(settings.strip().lstrip('?'), keep_blank_values=True))


def _format_bbox(bounds: tuple[float, float, float, float]) -> str:
    return ','.join(f'{v:.6f}' for v in bounds)


def _append_query(base_url: str, params: Mapping[str, str]) -> str:
    sep = '&' if '?' in base_url else '?'
    if base_url.endswith(('?', '&')):
        sep = ''
    return f'{base_url}{sep}{urlencode(params)}'


@dataclass(frozen=True)
class TileUrlSource:
    """
    URL strategy for one map service.

    ``kind`` selects the protocol; ``query_values`` are extra query-string
    values that override the defaults of that protocol.
    """

    kind: MapServiceType
    map_service_url: str
    query_values: Mapping[str, str] = field(default_factory=dict)

    def url_for(self, coordinate: TileCoordinate) -> str:
        if self.kind == MapServiceType.OSM:
            return self._template_url(coordinate)
        if self.kind == MapServiceType.AGS_DYNAMIC:
            return self._ags_export_url(coordinate)
        if self.kind == MapServiceType.WMS_1_1_1:
            return self._wms_url(coordinate, WMS_VERSION_1_1_1, 'SRS')
        if self.kind == MapServiceType.WMS_1_3_0:
            return self._wms_url(coordinate, WMS_VERSION_1_3_0, 'CRS')
        msg = f"The map service type '{self.kind}' is not supported."
        raise ValueError(msg)

    def _template_url(self, coordinate: TileCoordinate) -> str:
        template = self.map_service_url
        if '{z}' not in template:
            template = template.rstrip('/') + '/{z}/{x}/{y}.png'
        subdomain = OSM_SUBDOMAINS[(coordinate.column + coordinate.row) % len(OSM_SUBDOMAINS)]
        url = (
            template.replace('{z}', str(coordinate.level))
            .replace('{x}', str(coordinate.column))
            .replace('{y}', str(coordinate.row))
            .replace('{s}', subdomain)
        )
        if self.query_values:
            url = _append_query(url, self.query_values)
        return url

    def _ags_export_url(self, coordinate: TileCoordinate) -> str:
        params = {
            'bbox': _format_bbox(tile_bounds_mercator(coordinate)),
            'bboxSR': str(WEB_MERCATOR_CODE),
            'imageSR': str(WEB_MERCATOR_CODE),
            'size': f'{TILE_SIZE},{TILE_SIZE}',
            'format': DEFAULT_IMAGE_FORMAT,
            'transparent': 'true',
            'f': 'image',
        }
        params.update(self.query_values)
        base = self.map_service_url.rstrip('/')
        if not base.lower().endswith('/export'):
            base = f'{base}/export'
        return _append_query(base, params)

    def _wms_url(self, coordinate: TileCoordinate, version: str, crs_key: str) -> str:
        # EPSG:3857 keeps easting/northing axis order in both versions
        params = {
            'SERVICE': 'WMS',
            'VERSION': version,
            'REQUEST': 'GetMap',
            crs_key: f'EPSG:{WEB_MERCATOR_CODE}',
            'BBOX': _format_bbox(tile_bounds_mercator(coordinate)),
            'WIDTH': str(TILE_SIZE),
            'HEIGHT': str(TILE_SIZE),
            'FORMAT': WMS_IMAGE_FORMAT,
            'STYLES': '',
            'TRANSPARENT': 'TRUE',
        }
        # WMS parameter names are case-insensitive
        params.update({k.upper(): v for k, v in self.query_values.items()})
        return _append_query(self.map_service_url, params)


def make_tile_source(
    service_type: MapServiceType | str,
    map_service_url: str,
    settings: str = '',
) -> TileUrlSource:
    """Builds the URL strategy for a service type name such as "osm" or "wms1.3.0"."""
    try:
        kind = MapServiceType(str(getattr(service_type, 'value', service_type)).lower())
    except ValueError:
        msg = f"The map service type '{service_type}' is not supported."
        raise ValueError(msg) from None
    if not map_service_url:
        msg = f'A map service URL is required for service type {kind.value}'
        raise ValueError(msg)
    source = TileUrlSource(
        kind=kind,
        map_service_url=map_service_url,
        query_values=parse_query_string(settings),
    )
    logger.info('Tile source: %s %s', kind.value, mask_url_secrets(map_service_url))
    return source


def mask_url_secrets(url: str) -> str:
    """Hides credential values in the query string, keeping a short prefix."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    pairs = []
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        if key.lower() in SECRET_QUERY_KEYS and value:
            value = value[:SECRET_VISIBLE_PREFIX_LEN] + '***'
        pairs.append((key, value))
    return urlunsplit(parts._replace(query=urlencode(pairs, safe='*')))
