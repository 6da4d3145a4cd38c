"""Fetch → channel → accumulate → write → finalize."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING

from infrastructure.http.client import fetch_tile_bytes, make_http_session
from shared.constants import TILE_BATCH_SIZE, TILE_CHANNEL_SIZE
from sources.url import make_tile_source
from tiles.accumulator import BatchAccumulator
from tiles.channel import TileChannel
from tiles.enumerator import TileRange
from tiles.fetcher import TileFetcher
from tiles.store import CacheStore, build_metadata
from tiles.writer import DeduplicatingBatchWriter

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from domain.models import CacheJobSettings, TileCoordinate
    from sources.url import TileUrlSource

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Summary of a finished run."""

    downloaded: int
    failed: int
    batches: int
    tiles_written: int
    images_written: int
    elapsed_s: float


async def run_pipeline(
    coordinates: Iterable[TileCoordinate],
    source: TileUrlSource,
    download: Callable[[str], Awaitable[bytes]],
    store: CacheStore,
    *,
    fetch_concurrency: int = 5,
    write_concurrency: int = 5,
    batch_size: int = TILE_BATCH_SIZE,
    channel_size: int = TILE_CHANNEL_SIZE,
    verbose: bool = False,
) -> PipelineResult:
    """
    Runs both stages to completion and finalizes the store.

    The store must already be bootstrapped. A persistence error cancels the
    remaining work and propagates; finalize is not applied in that case.
    """
    started = time.monotonic()
    channel = TileChannel(maxsize=channel_size)
    writer = DeduplicatingBatchWriter(store)
    fetcher = TileFetcher(
        source,
        download,
        channel,
        concurrency=fetch_concurrency,
        verbose=verbose,
    )
    accumulator = BatchAccumulator(
        channel,
        writer,
        concurrency=write_concurrency,
        batch_size=batch_size,
    )

    tasks = [
        asyncio.create_task(fetcher.run(coordinates), name='fetch'),
        asyncio.create_task(accumulator.run(), name='accumulate'),
    ]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    await asyncio.to_thread(store.finalize)

    fetch_stats = fetcher.stats
    write_stats = writer.stats
    result = PipelineResult(
        downloaded=fetch_stats['downloaded'],
        failed=fetch_stats['failed'],
        batches=write_stats['batches'],
        tiles_written=write_stats['tiles'],
        images_written=write_stats['images'],
        elapsed_s=time.monotonic() - started,
    )
    logger.info(
        'Pipeline finished in %.1fs: %d tiles in %d batches, %d distinct images, %d failed',
        result.elapsed_s,
        result.tiles_written,
        result.batches,
        result.images_written,
        result.failed,
    )
    return result


async def build_cache(settings: CacheJobSettings) -> PipelineResult:
    """Full run for a settings object: bootstrap, fetch everything, finalize."""
    source = make_tile_source(
        settings.service_type,
        settings.effective_service_url,
        settings.service_settings,
    )
    tiles = TileRange(
        settings.min_zoom,
        settings.max_zoom,
        settings.min_lon,
        settings.min_lat,
        settings.max_lon,
        settings.max_lat,
    )
    store = CacheStore(settings.cache_path)
    store.bootstrap(build_metadata(settings), replace=settings.replace_existing)
    logger.info(
        'Caching %d tiles, zoom %d-%d, %d fetch / %d write workers',
        len(tiles),
        settings.min_zoom,
        settings.max_zoom,
        settings.fetch_concurrency,
        settings.write_concurrency,
    )

    async with make_http_session(settings.fetch_concurrency) as client:
        download = partial(fetch_tile_bytes, client, timeout_s=settings.request_timeout_s)
        return await run_pipeline(
            tiles,
            source,
            download,
            store,
            fetch_concurrency=settings.fetch_concurrency,
            write_concurrency=settings.write_concurrency,
            batch_size=settings.batch_size,
            channel_size=settings.channel_size,
            verbose=settings.verbose,
        )
