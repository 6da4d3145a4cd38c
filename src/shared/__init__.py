"""Shared constants and helpers."""
from shared.constants import MapServiceType

__all__ = [
    'MapServiceType',
]
