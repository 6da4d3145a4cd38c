"""Tile acquisition and persistence pipeline.

This module provides:
- TileRange: lazy enumeration of the tiles covering a bbox and zoom range
- TileFetcher: bounded-parallel downloader feeding a TileChannel
- BatchAccumulator: groups fetched tiles into batches
- DeduplicatingBatchWriter: content-addressed, transactional batch writes
- CacheStore: the MBTiles-style cache file
"""

from tiles.accumulator import BatchAccumulator, TileBuffer
from tiles.channel import ChannelClosedError, TileChannel
from tiles.enumerator import TileRange, iter_tile_coordinates
from tiles.fetcher import TileFetcher
from tiles.pipeline import PipelineResult, build_cache, run_pipeline
from tiles.store import CacheStats, CacheStore, PersistenceError, build_metadata
from tiles.writer import DeduplicatingBatchWriter, content_hash

__all__ = [
    'BatchAccumulator',
    'CacheStats',
    'CacheStore',
    'ChannelClosedError',
    'DeduplicatingBatchWriter',
    'PersistenceError',
    'PipelineResult',
    'TileBuffer',
    'TileChannel',
    'TileFetcher',
    'TileRange',
    'build_cache',
    'build_metadata',
    'content_hash',
    'iter_tile_coordinates',
    'run_pipeline',
]
