import math
from enum import Enum

# Base tile size of a Web Mercator tile (px)
TILE_SIZE = 256

# Highest zoom level accepted for caching
MAX_ZOOM = 22

# Earth radius for Web Mercator (meters)
EARTH_RADIUS_M = 6378137.0

# Half of the Web Mercator world extent (meters)
MERCATOR_HALF_EXTENT_M = math.pi * EARTH_RADIUS_M

# Latitude limit of Web Mercator (degrees)
MERCATOR_MAX_LAT_DEG = 85.05112878

WORLD_LNG_SPAN_DEG = 360.0
WORLD_LNG_HALF_SPAN_DEG = 180.0
WORLD_LAT_MAX_DEG = 90.0

# Keeps a bbox edge lying exactly on a tile border out of the next tile
XY_EPSILON = 1e-9

# Spatial reference used by the dynamic map server and WMS requests
WEB_MERCATOR_CODE = 3857

# OpenStreetMap tile server template ({s} rotates over the subdomains)
OSM_BASE_URL_TEMPLATE = 'https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png'
OSM_SUBDOMAINS = ('a', 'b', 'c')

# ArcGIS sample dynamic map service
AGS_SAMPLE_SERVICE_URL = (
    'http://sampleserver1.arcgisonline.com/ArcGIS/rest/services/'
    'Demographics/ESRI_Census_USA/MapServer'
)

WMS_VERSION_1_1_1 = '1.1.1'
WMS_VERSION_1_3_0 = '1.3.0'

# Default image format requested from dynamic services
DEFAULT_IMAGE_FORMAT = 'png'
WMS_IMAGE_FORMAT = 'image/png'

# HTTP
HTTP_TIMEOUT_DEFAULT = 20.0
HTTP_OK_MIN = 200
HTTP_OK_MAX = 300
HTTP_USER_AGENT = 'tilecutter/1.0'

# Total number of concurrent operations (split between fetch and write)
DEFAULT_MAX_PARALLELISM = 10

# Number of tiles written per transaction
TILE_BATCH_SIZE = 50

# Number of fetched tiles buffered between the fetch and write stages
TILE_CHANNEL_SIZE = 256

# Name of the cache file inside the output directory
CACHE_FILE_NAME = 'tilecache.mbtiles'

# Default bounding box and zoom range
DEFAULT_MIN_ZOOM = 7
DEFAULT_MAX_ZOOM = 10
DEFAULT_MIN_LON = -95.844727
DEFAULT_MIN_LAT = 35.978006
DEFAULT_MAX_LON = -88.989258
DEFAULT_MAX_LAT = 40.563895

# Metadata written once when the cache file is created
METADATA_NAME = 'cache'
METADATA_TYPE = 'overlay'
METADATA_VERSION = '1'
METADATA_DESCRIPTION = 'Offline tile cache'

# Number of visible characters of a masked query-string secret
SECRET_VISIBLE_PREFIX_LEN = 4

# Query-string keys treated as credentials when logging URLs
SECRET_QUERY_KEYS = ('token', 'access_token', 'apikey', 'api_key', 'key')


class MapServiceType(str, Enum):
    OSM = 'osm'
    AGS_DYNAMIC = 'agsd'
    WMS_1_1_1 = 'wms1.1.1'
    WMS_1_3_0 = 'wms1.3.0'


# Human readable names for CLI help
MAP_SERVICE_TYPE_LABELS: dict[MapServiceType, str] = {
    MapServiceType.OSM: 'Plain tile server ({z}/{x}/{y} template)',
    MapServiceType.AGS_DYNAMIC: 'ArcGIS dynamic map service (export)',
    MapServiceType.WMS_1_1_1: 'OGC WMS 1.1.1',
    MapServiceType.WMS_1_3_0: 'OGC WMS 1.3.0',
}


def default_map_service_type() -> MapServiceType:
    return MapServiceType.OSM
