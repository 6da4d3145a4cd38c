"""End-to-end tests for the fetch/write pipeline."""

from __future__ import annotations

import logging
import sqlite3
from unittest.mock import patch

import aiohttp
import pytest

from domain.models import CacheJobSettings, TileCoordinate
from shared.constants import MapServiceType
from sources.url import TileUrlSource
from tiles.enumerator import TileRange
from tiles.pipeline import build_cache, run_pipeline
from tiles.store import CacheStore, PersistenceError
from tiles.writer import DeduplicatingBatchWriter

SOURCE = TileUrlSource(MapServiceType.OSM, 'http://tiles/{z}/{x}/{y}.png')

# Whole world at zoom 1: exactly four tiles
WORLD_Z1 = TileRange(1, 1, -180.0, -85.0, 180.0, 85.0)


def make_download(bodies: dict[str, bytes], failing: set[str] = frozenset()):
    async def download(url: str) -> bytes:
        if url in failing:
            raise aiohttp.ClientConnectionError('network unreachable')
        return bodies.get(url, url.encode())

    return download


def url(z: int, x: int, y: int) -> str:
    return f'http://tiles/{z}/{x}/{y}.png'


@pytest.fixture
def store(tmp_path):
    s = CacheStore(tmp_path / 'tilecache.mbtiles')
    s.bootstrap({'name': 'cache'}, replace=True)
    return s


class TestRunPipeline:
    """Scenario tests for run_pipeline."""

    @pytest.mark.asyncio
    async def test_four_distinct_tiles(self, store):
        result = await run_pipeline(WORLD_Z1, SOURCE, make_download({}), store)
        stats = store.get_stats()
        assert stats.image_rows == 4
        assert stats.map_rows == 4
        assert store.is_finalized()
        assert result.downloaded == 4
        assert result.failed == 0
        assert result.tiles_written == 4
        assert result.images_written == 4

    @pytest.mark.asyncio
    async def test_two_identical_tiles_share_content(self, store):
        bodies = {url(1, 0, 0): b'ocean', url(1, 1, 0): b'ocean'}
        await run_pipeline(WORLD_Z1, SOURCE, make_download(bodies), store)
        stats = store.get_stats()
        assert stats.image_rows == 3
        assert stats.map_rows == 4
        conn = store.connect()
        ids = dict(
            ((r[0], r[1]), r[2])
            for r in conn.execute('SELECT tile_column, tile_row, tile_id FROM map')
        )
        conn.close()
        assert ids[(0, 0)] == ids[(1, 0)]
        assert len(set(ids.values())) == 3

    @pytest.mark.asyncio
    async def test_failed_fetch_is_skipped(self, store, caplog):
        download = make_download({}, failing={url(1, 1, 1)})
        with caplog.at_level(logging.WARNING):
            result = await run_pipeline(WORLD_Z1, SOURCE, download, store)
        assert store.get_stats().map_rows == 3
        assert store.get_tile(TileCoordinate(level=1, row=1, column=1)) is None
        assert store.is_finalized()
        assert result.failed == 1
        assert any('Level:1, Row:1, Column:1' in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_batches_of_two_for_five_tiles(self, store):
        tiles = [TileCoordinate(level=3, row=0, column=i) for i in range(5)]
        with patch.object(
            DeduplicatingBatchWriter,
            'write_batch',
            autospec=True,
            side_effect=DeduplicatingBatchWriter.write_batch,
        ) as write_batch:
            result = await run_pipeline(
                tiles,
                SOURCE,
                make_download({}),
                store,
                fetch_concurrency=2,
                write_concurrency=2,
                batch_size=2,
            )
        sizes = sorted((len(c.args[1]) for c in write_batch.call_args_list), reverse=True)
        assert sizes == [2, 2, 1]
        assert result.batches == 3
        assert store.get_stats().map_rows == 5

    @pytest.mark.asyncio
    async def test_round_trip_through_tiles_view(self, store):
        tiles = TileRange(2, 3, -20.0, -20.0, 20.0, 20.0)
        download = make_download({})
        await run_pipeline(tiles, SOURCE, download, store, batch_size=3)
        rows = list(store.iter_tiles())
        assert len(rows) == len(tiles)
        for z, col, row, data in rows:
            assert data == url(z, col, row).encode()

    @pytest.mark.asyncio
    async def test_all_fetches_fail(self, store):
        download = make_download({}, failing={url(1, x, y) for x in range(2) for y in range(2)})
        result = await run_pipeline(WORLD_Z1, SOURCE, download, store)
        assert result.batches == 0
        assert store.get_stats().map_rows == 0
        assert store.is_finalized()

    @pytest.mark.asyncio
    async def test_persistence_error_is_fatal(self, store):
        def broken_write(self, batch):
            raise PersistenceError('disk I/O error')

        with patch.object(DeduplicatingBatchWriter, 'write_batch', broken_write):
            with pytest.raises(PersistenceError):
                await run_pipeline(
                    TileRange(3, 3, -180.0, -85.0, 180.0, 85.0),
                    SOURCE,
                    make_download({}),
                    store,
                    batch_size=4,
                    channel_size=2,
                )
        assert not store.is_finalized()

    @pytest.mark.asyncio
    async def test_duplicate_coordinates_fail(self, store):
        coord = TileCoordinate(level=2, row=1, column=1)
        with pytest.raises(PersistenceError):
            await run_pipeline([coord, coord], SOURCE, make_download({}), store)
        assert not store.is_finalized()


class TestBuildCache:
    """Tests for build_cache with a mocked HTTP layer."""

    @pytest.mark.asyncio
    async def test_full_run(self, tmp_path):
        settings = CacheJobSettings(
            output_dir=tmp_path,
            min_zoom=0,
            max_zoom=1,
            min_lon=-180.0,
            min_lat=-85.0,
            max_lon=180.0,
            max_lat=85.0,
            service_url='http://tiles/{z}/{x}/{y}.png',
            max_parallelism=4,
            batch_size=2,
        )

        async def fake_fetch(client, url, *, timeout_s):
            return b'same' if url.endswith('/0/0/0.png') else url.encode()

        with patch('tiles.pipeline.fetch_tile_bytes', fake_fetch):
            result = await build_cache(settings)

        store = CacheStore(settings.cache_path)
        assert store.is_finalized()
        assert result.tiles_written == 5
        assert store.get_stats().map_rows == 5
        assert store.read_metadata()['bounds'] == '-180.0,-85.0,180.0,85.0'

    @pytest.mark.asyncio
    async def test_replace_discards_previous_rows(self, tmp_path):
        settings = CacheJobSettings(
            output_dir=tmp_path,
            min_zoom=1,
            max_zoom=1,
            min_lon=-180.0,
            min_lat=-85.0,
            max_lon=180.0,
            max_lat=85.0,
            service_url='http://tiles/{z}/{x}/{y}.png',
            replace_existing=True,
        )

        # Leftover rows from an earlier run at a zoom level not requested now
        store = CacheStore(settings.cache_path)
        store.bootstrap({'name': 'old'})
        conn = sqlite3.connect(settings.cache_path)
        with conn:
            conn.execute("INSERT INTO images VALUES (1, 'old', x'00')")
            conn.execute('INSERT INTO map (tile_id, zoom_level, tile_row, tile_column) VALUES (1, 9, 9, 9)')
        conn.close()

        async def fake_fetch(client, url, *, timeout_s):
            return url.encode()

        with patch('tiles.pipeline.fetch_tile_bytes', fake_fetch):
            await build_cache(settings)

        stats = store.get_stats()
        assert stats.tiles_by_zoom == {1: 4}
        assert stats.image_rows == 4
        assert store.read_metadata()['name'] == 'cache'

    @pytest.mark.asyncio
    async def test_unsupported_service_fails_before_bootstrap(self, tmp_path):
        # model_copy skips validation
        settings = CacheJobSettings(output_dir=tmp_path).model_copy(update={'service_type': 'tms'})
        with pytest.raises(ValueError):
            await build_cache(settings)
        assert not settings.cache_path.exists()
