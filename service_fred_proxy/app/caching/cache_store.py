"""
Durable SQLite-backed store for upstream payloads.
"""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from shared.errors import StoreError
from shared.logging import get_logger


_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    payload BLOB NOT NULL,
    fetched_at TEXT NOT NULL
)
"""

_UPSERT = """
INSERT INTO cache_entries (key, payload, fetched_at)
VALUES (?, ?, ?)
ON CONFLICT (key) DO UPDATE SET
    payload = excluded.payload,
    fetched_at = excluded.fetched_at
"""


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: bytes
    fetched_at: datetime


class CacheStore:
    """Keyed store mapping a request fingerprint to its last fetched payload.

    Every operation opens its own connection on a worker thread. Each ``put``
    is a single upsert committed in its own transaction.
    """

    def __init__(self, db_path: Union[str, Path], *, timeout: float = 5.0):
        self.db_path = Path(db_path)
        self.timeout = timeout
        self.logger = get_logger("fred_proxy.cache_store")

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=self.timeout)

    def create_tables(self) -> None:
        """Create the schema and switch the file to WAL mode."""
        try:
            if not self.db_path.parent.exists():
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with closing(self._connect()) as conn:
                conn.execute("PRAGMA journal_mode=WAL")
                with conn:
                    conn.execute(_SCHEMA)
        except (sqlite3.Error, OSError) as exc:
            raise StoreError("Failed to initialise cache store", {"reason": type(exc).__name__}) from exc
        self.logger.info("Cache store ready", db_file=self.db_path.name)

    async def get(self, key: str) -> Optional[CacheEntry]:
        return await asyncio.to_thread(self._get, key)

    async def put(self, entry: CacheEntry) -> None:
        await asyncio.to_thread(self._put, entry)

    async def count(self) -> int:
        return await asyncio.to_thread(self._count)

    def _get(self, key: str) -> Optional[CacheEntry]:
        try:
            with closing(self._connect()) as conn:
                row = conn.execute(
                    "SELECT payload, fetched_at FROM cache_entries WHERE key = ?",
                    (key,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError("Cache read failed", {"reason": type(exc).__name__}) from exc

        if row is None:
            return None

        payload, fetched_at = row
        try:
            parsed = datetime.fromisoformat(fetched_at)
        except (TypeError, ValueError) as exc:
            raise StoreError("Corrupt cache entry", {"key": key}) from exc
        return CacheEntry(key=key, payload=bytes(payload), fetched_at=parsed)

    def _put(self, entry: CacheEntry) -> None:
        fetched_at = entry.fetched_at
        if fetched_at.tzinfo is None:
            fetched_at = fetched_at.replace(tzinfo=timezone.utc)
        try:
            with closing(self._connect()) as conn:
                with conn:
                    conn.execute(
                        _UPSERT,
                        (entry.key, sqlite3.Binary(entry.payload), fetched_at.isoformat()),
                    )
        except sqlite3.Error as exc:
            raise StoreError("Cache write failed", {"reason": type(exc).__name__}) from exc

    def _count(self) -> int:
        try:
            with closing(self._connect()) as conn:
                (total,) = conn.execute("SELECT COUNT(*) FROM cache_entries").fetchone()
                return int(total)
        except sqlite3.Error as exc:
            raise StoreError("Cache count failed", {"reason": type(exc).__name__}) from exc
