"""Content-deduplicating batch writer for the tile cache.

Each batch is committed as one transaction: new image contents go into
``images`` (one row per distinct MD5), every tile gets a ``map`` row
pointing at its content. Batches are serialized by a lock that also owns
the tile_id counter, so ids stay unique across concurrent callers.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import sqlite3
import threading
from typing import TYPE_CHECKING

from tiles.store import PersistenceError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from domain.models import TileImage
    from tiles.store import CacheStore

logger = logging.getLogger(__name__)


def content_hash(data: bytes) -> str:
    """Base64 encoded MD5 digest of a tile body."""
    return base64.b64encode(hashlib.md5(data).digest()).decode('ascii')


class DeduplicatingBatchWriter:
    """Writes tile batches into a CacheStore, storing each distinct image once.

    Usage:
        writer = DeduplicatingBatchWriter(store)
        writer.write_batch(batch)  # safe to call from several threads
    """

    def __init__(self, store: CacheStore) -> None:
        self.store = store
        self._lock = threading.Lock()
        self._next_content_id: int | None = None
        self._stats_batches = 0
        self._stats_tiles = 0
        self._stats_images = 0

    @property
    def stats(self) -> dict:
        return {
            'batches': self._stats_batches,
            'tiles': self._stats_tiles,
            'images': self._stats_images,
        }

    def write_batch(self, batch: Sequence[TileImage]) -> int:
        """Commit one batch atomically.

        Args:
            batch: Tiles to persist.

        Returns:
            Number of new image rows inserted.

        Raises:
            PersistenceError: the batch was rolled back.
        """
        if not batch:
            return 0
        with self._lock:
            if self._next_content_id is None:
                self._next_content_id = self.store.next_content_id()
            return self._write_locked(batch)

    def _write_locked(self, batch: Sequence[TileImage]) -> int:
        next_id = self._next_content_id
        assert next_id is not None
        added: dict[str, int] = {}
        image_rows: list[tuple[int, str, bytes]] = []
        map_rows: list[tuple[int, int, int, int]] = []

        conn = self.store.connect()
        try:
            with conn:
                for tile in batch:
                    digest = content_hash(tile.data)
                    if digest not in added:
                        row = conn.execute(
                            'SELECT tile_id FROM images WHERE tile_md5hash = ?',
                            (digest,),
                        ).fetchone()
                        if row is not None:
                            added[digest] = int(row[0])
                        else:
                            added[digest] = next_id
                            image_rows.append((next_id, digest, tile.data))
                            next_id += 1
                    c = tile.coordinate
                    map_rows.append((added[digest], c.level, c.row, c.column))

                conn.executemany(
                    'INSERT INTO images (tile_id, tile_md5hash, tile_data) VALUES (?, ?, ?)',
                    image_rows,
                )
                conn.executemany(
                    'INSERT INTO map (tile_id, zoom_level, tile_row, tile_column) '
                    'VALUES (?, ?, ?, ?)',
                    map_rows,
                )
        except sqlite3.Error as e:
            msg = f'Failed to save a batch of {len(batch)} tiles: {e}'
            raise PersistenceError(msg) from e
        finally:
            conn.close()

        # Ids are only consumed once the transaction is committed
        self._next_content_id = next_id
        self._stats_batches += 1
        self._stats_tiles += len(batch)
        self._stats_images += len(image_rows)
        logger.info('Saving an image batch of %d.', len(batch))
        return len(image_rows)
