"""Groups fetched tiles into fixed-size batches for the writer."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Protocol

from shared.constants import TILE_BATCH_SIZE

if TYPE_CHECKING:
    from domain.models import TileImage
    from tiles.channel import TileChannel

logger = logging.getLogger(__name__)


class BatchSink(Protocol):
    def write_batch(self, batch: list[TileImage]) -> int: ...


class TileBuffer:
    """Thread-safe multi-producer buffer with an all-or-nothing take."""

    def __init__(self) -> None:
        self._items: list[TileImage] = []
        self._lock = threading.Lock()

    def push(self, image: TileImage) -> int:
        """Add a tile and return the buffer size after the push."""
        with self._lock:
            self._items.append(image)
            return len(self._items)

    def take(self, n: int) -> list[TileImage]:
        """Remove exactly n tiles, or nothing when fewer are buffered."""
        with self._lock:
            if n <= 0 or len(self._items) < n:
                return []
            batch = self._items[:n]
            del self._items[:n]
            return batch

    def drain(self) -> list[TileImage]:
        """Remove and return everything left."""
        with self._lock:
            batch = self._items
            self._items = []
            return batch

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class BatchAccumulator:
    """Drains the channel with parallel workers and forwards batches to the writer.

    Writes run in worker threads; the writer serializes them. After the
    channel is closed and drained, whatever is left goes out as one final
    (possibly short) batch.
    """

    def __init__(
        self,
        channel: TileChannel,
        writer: BatchSink,
        *,
        concurrency: int = 5,
        batch_size: int = TILE_BATCH_SIZE,
    ) -> None:
        self._channel = channel
        self._writer = writer
        self.concurrency = max(1, concurrency)
        self.batch_size = max(1, batch_size)
        self._buffer = TileBuffer()
        self._stats_batches = 0
        self._stats_tiles = 0

    @property
    def stats(self) -> dict:
        return {
            'batches': self._stats_batches,
            'tiles': self._stats_tiles,
            'buffered': len(self._buffer),
        }

    async def run(self) -> None:
        workers = [asyncio.create_task(self._worker()) for _ in range(self.concurrency)]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        await self._flush()

    async def _worker(self) -> None:
        async for image in self._channel:
            if self._buffer.push(image) < self.batch_size:
                continue
            batch = self._buffer.take(self.batch_size)
            if not batch:
                continue
            await self._forward(batch)

    async def _flush(self) -> None:
        batch = self._buffer.drain()
        if not batch:
            return
        logger.debug('Flushing final batch of %d tiles', len(batch))
        await self._forward(batch)

    async def _forward(self, batch: list[TileImage]) -> None:
        await asyncio.to_thread(self._writer.write_batch, batch)
        self._stats_batches += 1
        self._stats_tiles += len(batch)
