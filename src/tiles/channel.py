"""Bounded hand-off between the fetch stage and the write stage."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from shared.constants import TILE_CHANNEL_SIZE

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from domain.models import TileImage


class ChannelClosedError(RuntimeError):
    """Raised on put() or close() after the channel was closed."""


# End marker; at most one instance sits in the queue once closed
_CLOSED = object()


class TileChannel:
    """Many-producer queue of fetched tiles with a single close signal.

    put() suspends while the channel holds ``maxsize`` items. After close(),
    consumers drain what is left and then get None. The end marker is put
    back by whichever consumer takes it, so every concurrent consumer ends.
    """

    def __init__(self, maxsize: int = TILE_CHANNEL_SIZE) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def put(self, image: TileImage) -> None:
        if self._closed:
            msg = 'Cannot put a tile into a closed channel'
            raise ChannelClosedError(msg)
        await self._queue.put(image)

    async def close(self) -> None:
        """Signal that no more tiles will arrive. Allowed once."""
        if self._closed:
            msg = 'Channel already closed'
            raise ChannelClosedError(msg)
        self._closed = True
        await self._queue.put(_CLOSED)

    def _unwrap(self, item: object) -> TileImage | None:
        if item is _CLOSED:
            # A slot was just freed and producers are done, so this never blocks
            self._queue.put_nowait(_CLOSED)
            return None
        return item  # type: ignore[return-value]

    async def get(self) -> TileImage | None:
        """Next tile, or None once the channel is closed and drained."""
        return self._unwrap(await self._queue.get())

    def get_nowait(self) -> TileImage | None:
        """Next tile if one is ready, otherwise None."""
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        return self._unwrap(item)

    def __aiter__(self) -> AsyncIterator[TileImage]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[TileImage]:
        while True:
            image = await self.get()
            if image is None:
                return
            yield image
