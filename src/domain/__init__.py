"""Domain layer - tile value objects, job settings and profiles."""
from domain.models import CacheJobSettings, TileCoordinate, TileImage
from domain.profiles import load_profile, read_profile_data, save_profile

__all__ = [
    'CacheJobSettings',
    'TileCoordinate',
    'TileImage',
    'load_profile',
    'read_profile_data',
    'save_profile',
]
