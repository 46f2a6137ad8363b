"""SQLite-backed key-value store for durable device-local persistence."""

import asyncio
import sqlite3
from pathlib import Path
from typing import Optional, Union

import structlog

from ..domain.errors import StoreError
from .base import KeyValueStore

logger = structlog.get_logger()


class SQLiteKeyValueStore(KeyValueStore):
    """Key-value store kept in a single SQLite table.

    Every write runs in its own transaction: a failed write rolls back and
    leaves the previous value in place.
    """

    def __init__(self, path: Union[str, Path] = ":memory:") -> None:
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_items (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )
        self._conn.commit()
        self._async_lock = asyncio.Lock()
        logger.info("kv_store_initialized", backend="sqlite", path=self.path)

    def _get(self, key: str) -> Optional[str]:
        row = self._conn.execute("SELECT value FROM kv_items WHERE key = ?", (key,)).fetchone()
        return None if row is None else str(row[0])

    def _set(self, key: str, value: str) -> None:
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO kv_items (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )

    def _remove(self, key: str) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM kv_items WHERE key = ?", (key,))

    async def get_item(self, key: str) -> Optional[str]:
        async with self._async_lock:
            try:
                return await asyncio.to_thread(self._get, key)
            except sqlite3.Error as e:
                logger.error("kv_read_failed", key=key, error=str(e))
                raise StoreError(f"Failed to read {key}") from e

    async def set_item(self, key: str, value: str) -> None:
        async with self._async_lock:
            try:
                await asyncio.to_thread(self._set, key, value)
            except sqlite3.Error as e:
                logger.error("kv_write_failed", key=key, error=str(e))
                raise StoreError(f"Failed to write {key}") from e

    async def remove_item(self, key: str) -> None:
        async with self._async_lock:
            try:
                await asyncio.to_thread(self._remove, key)
            except sqlite3.Error as e:
                logger.error("kv_remove_failed", key=key, error=str(e))
                raise StoreError(f"Failed to remove {key}") from e

    def close(self) -> None:
        self._conn.close()
