"""Single-file SQLite tile cache in MBTiles layout.

Images are stored once per distinct content hash in ``images``; ``map``
holds one row per tile coordinate pointing at an image. The ``tiles`` view
and the coordinate uniqueness index are added by finalize() after the
last batch was committed.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from shared.constants import (
    DEFAULT_IMAGE_FORMAT,
    METADATA_DESCRIPTION,
    METADATA_NAME,
    METADATA_TYPE,
    METADATA_VERSION,
)

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from domain.models import CacheJobSettings, TileCoordinate

logger = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    """Unrecoverable failure while writing the cache file."""


# Executed one by one inside the bootstrap transaction
_CREATE_METADATA = (
    'CREATE TABLE metadata (name TEXT, value TEXT)',
    'CREATE UNIQUE INDEX name ON metadata (name)',
)

_CREATE_IMAGES = (
    '''CREATE TABLE images (
        tile_id INTEGER NOT NULL PRIMARY KEY,
        tile_md5hash VARCHAR(256) NOT NULL,
        tile_data BLOB NULL
    )''',
    'CREATE UNIQUE INDEX images_hash ON images (tile_md5hash)',
)

_CREATE_MAP = (
    '''CREATE TABLE map (
        map_id INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT,
        tile_id INTEGER NOT NULL,
        zoom_level INTEGER NOT NULL,
        tile_row INTEGER NOT NULL,
        tile_column INTEGER NOT NULL
    )''',
)

_CREATE_MAP_INDEX = (
    'CREATE UNIQUE INDEX IF NOT EXISTS map_index ON map (zoom_level, tile_column, tile_row)'
)

_CREATE_TILES_VIEW = '''
    CREATE VIEW IF NOT EXISTS tiles AS
    SELECT map.zoom_level AS zoom_level,
           map.tile_column AS tile_column,
           map.tile_row AS tile_row,
           images.tile_data AS tile_data
    FROM map JOIN images ON images.tile_id = map.tile_id
'''


def build_metadata(settings: CacheJobSettings) -> dict[str, str]:
    """Metadata rows written when the cache file is created."""
    return {
        'name': METADATA_NAME,
        'type': METADATA_TYPE,
        'version': METADATA_VERSION,
        'description': METADATA_DESCRIPTION,
        'format': DEFAULT_IMAGE_FORMAT,
        'bounds': ','.join(str(v) for v in settings.bounds),
    }


@dataclass
class CacheStats:
    """Row counts of a cache file."""

    image_rows: int
    map_rows: int
    image_bytes: int
    tiles_by_zoom: dict[int, int]


class CacheStore:
    """Owns the cache file: schema bootstrap, connections, finalize and reads.

    Usage:
        store = CacheStore(Path('out/tilecache.mbtiles'))
        store.bootstrap(metadata, replace=True)
        ...  # batches written through DeduplicatingBatchWriter
        store.finalize()
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def connect(self) -> sqlite3.Connection:
        """Open a new connection to the cache file."""
        return sqlite3.connect(str(self.path), check_same_thread=False)

    def bootstrap(self, metadata: Mapping[str, str], *, replace: bool = False) -> None:
        """Create missing tables; with replace=True start from an empty file.

        Metadata rows are only written when the metadata table is created.
        Schema and metadata are committed together or not at all.
        """
        try:
            if replace and self.path.exists():
                self.path.unlink()
                logger.info('Existing cache %s deleted', self.path)
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            msg = f'Failed to prepare cache file {self.path}: {e}'
            raise PersistenceError(msg) from e

        try:
            conn = self.connect()
        except sqlite3.Error as e:
            msg = f'Failed to open cache file {self.path}: {e}'
            raise PersistenceError(msg) from e
        try:
            with conn:
                conn.execute('BEGIN')
                existing = self._table_names(conn)
                statements: list[str] = []
                if 'images' not in existing:
                    statements.extend(_CREATE_IMAGES)
                if 'map' not in existing:
                    statements.extend(_CREATE_MAP)
                if 'metadata' not in existing:
                    statements.extend(_CREATE_METADATA)
                for sql in statements:
                    conn.execute(sql)
                if 'metadata' not in existing:
                    conn.executemany(
                        'INSERT INTO metadata (name, value) VALUES (?, ?)',
                        list(metadata.items()),
                    )
        except sqlite3.Error as e:
            msg = f'Failed to initialize cache schema in {self.path}: {e}'
            raise PersistenceError(msg) from e
        finally:
            conn.close()
        logger.info('Cache store ready at %s', self.path)

    def finalize(self) -> None:
        """Add the coordinate uniqueness index and the tiles view.

        Must run after the last batch commit. Duplicate coordinates make the
        index creation fail, which is reported as PersistenceError.
        """
        conn = self.connect()
        try:
            with conn:
                conn.execute('BEGIN')
                conn.execute(_CREATE_MAP_INDEX)
                conn.execute(_CREATE_TILES_VIEW)
        except sqlite3.Error as e:
            msg = f'Failed to finalize cache {self.path}: {e}'
            raise PersistenceError(msg) from e
        finally:
            conn.close()
        logger.info('Cache %s finalized', self.path)

    def is_finalized(self) -> bool:
        if not self.path.exists():
            return False
        conn = self.connect()
        try:
            rows = conn.execute(
                "SELECT name FROM sqlite_master WHERE name IN ('map_index', 'tiles')"
            ).fetchall()
        finally:
            conn.close()
        return len(rows) == 2

    def next_content_id(self) -> int:
        """First unused tile_id of the images table."""
        conn = self.connect()
        try:
            row = conn.execute('SELECT COALESCE(MAX(tile_id), 0) FROM images').fetchone()
        finally:
            conn.close()
        return int(row[0]) + 1

    def read_metadata(self) -> dict[str, str]:
        conn = self.connect()
        try:
            return dict(conn.execute('SELECT name, value FROM metadata').fetchall())
        finally:
            conn.close()

    def iter_tiles(self) -> Iterator[tuple[int, int, int, bytes]]:
        """Yield (zoom_level, tile_column, tile_row, tile_data) from the tiles view."""
        conn = self.connect()
        try:
            yield from conn.execute(
                'SELECT zoom_level, tile_column, tile_row, tile_data FROM tiles'
            )
        finally:
            conn.close()

    def get_tile(self, coordinate: TileCoordinate) -> bytes | None:
        """Image bytes stored for a coordinate, or None."""
        conn = self.connect()
        try:
            row = conn.execute(
                '''SELECT images.tile_data FROM map
                   JOIN images ON images.tile_id = map.tile_id
                   WHERE map.zoom_level = ? AND map.tile_column = ? AND map.tile_row = ?''',
                (coordinate.level, coordinate.column, coordinate.row),
            ).fetchone()
        finally:
            conn.close()
        return None if row is None else row[0]

    def get_stats(self) -> CacheStats:
        conn = self.connect()
        try:
            image_rows, image_bytes = conn.execute(
                'SELECT COUNT(*), COALESCE(SUM(LENGTH(tile_data)), 0) FROM images'
            ).fetchone()
            map_rows = conn.execute('SELECT COUNT(*) FROM map').fetchone()[0]
            tiles_by_zoom = dict(
                conn.execute('SELECT zoom_level, COUNT(*) FROM map GROUP BY zoom_level')
            )
        finally:
            conn.close()
        return CacheStats(
            image_rows=image_rows,
            map_rows=map_rows,
            image_bytes=image_bytes,
            tiles_by_zoom=tiles_by_zoom,
        )

    @staticmethod
    def _table_names(conn: sqlite3.Connection) -> set[str]:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        return {r[0] for r in rows}
