from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import aiohttp

from domain.models import TileImage
from infrastructure.http.client import TileFetchError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Iterator

    from domain.models import TileCoordinate
    from sources.url import TileUrlSource
    from tiles.channel import TileChannel

logger = logging.getLogger(__name__)


class TileFetcher:
    """Downloads tiles with bounded parallelism and streams them into a channel.

    Failed tiles are logged and dropped; the run goes on without them.
    The channel is closed once every worker has finished.

    Usage:
        fetcher = TileFetcher(source, download, channel, concurrency=5)
        await fetcher.run(TileRange(...))
    """

    def __init__(
        self,
        source: TileUrlSource,
        download: Callable[[str], Awaitable[bytes]],
        channel: TileChannel,
        *,
        concurrency: int = 5,
        verbose: bool = False,
    ) -> None:
        self.source = source
        self._download = download
        self._channel = channel
        self.concurrency = max(1, concurrency)
        self.verbose = verbose
        self._stats_downloaded = 0
        self._stats_failed = 0

    @property
    def stats(self) -> dict:
        return {
            'downloaded': self._stats_downloaded,
            'failed': self._stats_failed,
        }

    async def run(self, coordinates: Iterable[TileCoordinate]) -> None:
        # Workers share one iterator so the coordinate sequence stays lazy
        it = iter(coordinates)
        workers = [asyncio.create_task(self._worker(it)) for _ in range(self.concurrency)]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        await self._channel.close()
        logger.info(
            'Fetch stage finished: %d downloaded, %d failed',
            self._stats_downloaded,
            self._stats_failed,
        )

    async def _worker(self, it: Iterator[TileCoordinate]) -> None:
        for coord in it:
            image = await self.fetch_one(coord)
            if image is not None:
                await self._channel.put(image)

    async def fetch_one(self, coord: TileCoordinate) -> TileImage | None:
        url = self.source.url_for(coord)
        try:
            data = await self._download(url)
        except (aiohttp.ClientError, TimeoutError, TileFetchError) as e:
            self._stats_failed += 1
            logger.warning(
                'Error while downloading tile Level:%d, Row:%d, Column:%d - %s.',
                coord.level,
                coord.row,
                coord.column,
                e,
            )
            return None
        self._stats_downloaded += 1
        logger.log(
            logging.INFO if self.verbose else logging.DEBUG,
            'Tile Level:%d, Row:%d, Column:%d downloaded.',
            coord.level,
            coord.row,
            coord.column,
        )
        return TileImage(coordinate=coord, data=data)
