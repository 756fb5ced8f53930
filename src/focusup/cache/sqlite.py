"""
SQLite-backed persistent cache.

Every call opens a short-lived connection on a worker thread, so the
event loop never blocks on disk I/O and no connection crosses threads.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Mapping

from focusup.cache.base import PersistentCache

logger = logging.getLogger(__name__)


class SQLiteCache(PersistentCache):
    """Key-value cache stored in a single SQLite table."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path))
        conn.execute("PRAGMA journal_mode = WAL")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_database(self) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value BLOB NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

    # -------------------------------------------------------------------------
    # Blocking helpers (run on a worker thread)
    # -------------------------------------------------------------------------

    def _get(self, key: str) -> bytes | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return bytes(row[0]) if row else None

    def _set_many(self, items: Mapping[str, bytes]) -> None:
        with self._get_connection() as conn:
            conn.executemany(
                """
                INSERT INTO kv (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                               updated_at = CURRENT_TIMESTAMP
                """,
                [(k, sqlite3.Binary(v)) for k, v in items.items()],
            )

    def _remove(self, key: str) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    # -------------------------------------------------------------------------
    # PersistentCache
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._get, key)

    async def set(self, key: str, value: bytes) -> None:
        await asyncio.to_thread(self._set_many, {key: value})

    async def set_many(self, items: Mapping[str, bytes]) -> None:
        if items:
            await asyncio.to_thread(self._set_many, dict(items))

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)
