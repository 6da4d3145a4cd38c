"""Tests for TileFetcher."""

from __future__ import annotations

import asyncio
import logging

import aiohttp
import pytest

from domain.models import TileCoordinate
from infrastructure.http.client import TileFetchError
from shared.constants import MapServiceType
from sources.url import TileUrlSource
from tiles.channel import TileChannel
from tiles.fetcher import TileFetcher

SOURCE = TileUrlSource(MapServiceType.OSM, 'http://tiles/{z}/{x}/{y}.png')


def coords(n: int) -> list[TileCoordinate]:
    return [TileCoordinate(level=3, row=0, column=i) for i in range(n)]


async def drain(channel: TileChannel) -> list:
    return [t async for t in channel]


class TestTileFetcher:
    """Tests for TileFetcher class."""

    @pytest.mark.asyncio
    async def test_fetches_all_and_closes(self):
        async def download(url: str) -> bytes:
            return url.encode()

        channel = TileChannel(maxsize=16)
        fetcher = TileFetcher(SOURCE, download, channel, concurrency=3)
        await fetcher.run(coords(5))
        assert channel.closed
        images = await drain(channel)
        assert sorted(i.coordinate.column for i in images) == [0, 1, 2, 3, 4]
        by_col = {i.coordinate.column: i.data for i in images}
        assert by_col[2] == b'http://tiles/3/2/0.png'
        assert fetcher.stats == {'downloaded': 5, 'failed': 0}

    @pytest.mark.asyncio
    async def test_failed_tile_dropped_and_logged(self, caplog):
        async def download(url: str) -> bytes:
            if '/3/1/' in url:
                raise aiohttp.ClientConnectionError('connection reset')
            if '/3/2/' in url:
                raise TileFetchError(500, url)
            return b'ok'

        channel = TileChannel(maxsize=16)
        fetcher = TileFetcher(SOURCE, download, channel, concurrency=2)
        with caplog.at_level(logging.WARNING, logger='tiles.fetcher'):
            await fetcher.run(coords(4))
        images = await drain(channel)
        assert sorted(i.coordinate.column for i in images) == [0, 3]
        assert fetcher.stats == {'downloaded': 2, 'failed': 2}
        messages = [r.getMessage() for r in caplog.records]
        assert any('Level:3, Row:0, Column:1' in m and 'connection reset' in m for m in messages)
        assert any('Level:3, Row:0, Column:2' in m and 'HTTP 500' in m for m in messages)

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        async def download(url: str) -> bytes:
            raise TimeoutError

        channel = TileChannel()
        fetcher = TileFetcher(SOURCE, download, channel, concurrency=2)
        await fetcher.run(coords(3))
        assert await drain(channel) == []
        assert fetcher.stats['failed'] == 3

    @pytest.mark.asyncio
    async def test_unexpected_error_propagates(self):
        async def download(url: str) -> bytes:
            raise KeyError('bug')

        fetcher = TileFetcher(SOURCE, download, TileChannel(), concurrency=1)
        with pytest.raises(KeyError):
            await fetcher.run(coords(1))

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self):
        in_flight = 0
        peak = 0

        async def download(url: str) -> bytes:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return b'x'

        channel = TileChannel(maxsize=64)
        await TileFetcher(SOURCE, download, channel, concurrency=3).run(coords(12))
        assert peak == 3

    @pytest.mark.asyncio
    async def test_backpressure_from_full_channel(self):
        async def download(url: str) -> bytes:
            return b'x'

        channel = TileChannel(maxsize=2)
        fetcher = TileFetcher(SOURCE, download, channel, concurrency=2)
        task = asyncio.create_task(fetcher.run(coords(6)))
        await asyncio.sleep(0.05)
        assert not task.done()
        assert channel.qsize() == 2
        images = await drain(channel)
        await asyncio.wait_for(task, timeout=1.0)
        assert len(images) == 6

    @pytest.mark.asyncio
    async def test_consumes_lazy_iterator(self):
        async def download(url: str) -> bytes:
            return b'x'

        channel = TileChannel(maxsize=64)
        fetcher = TileFetcher(SOURCE, download, channel, concurrency=4)
        await fetcher.run(c for c in coords(10))
        assert len(await drain(channel)) == 10

    @pytest.mark.asyncio
    async def test_verbose_logs_success(self, caplog):
        async def download(url: str) -> bytes:
            return b'x'

        fetcher = TileFetcher(SOURCE, download, TileChannel(), concurrency=1, verbose=True)
        with caplog.at_level(logging.INFO, logger='tiles.fetcher'):
            await fetcher.run(coords(1))
        assert any('downloaded' in r.getMessage() and r.levelno == logging.INFO for r in caplog.records)
