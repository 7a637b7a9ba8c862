# src/gtaskall/storage/local_cache.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class LocalCache:
    """
    SQLite key/value store for state that should survive a restart
    (account registry, last published task collection).

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "cache.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("LocalCache ready db=%s", self._db_path)

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    def get_json(self, key: str) -> Any | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            logger.warning("Corrupt cache entry key=%s; ignoring", key)
            return None

    def put_json(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO kv(key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, payload, time.time()),
            )
            conn.commit()
        finally:
            conn.close()
        logger.debug("Cache write key=%s bytes=%d", key, len(payload))

    def delete(self, key: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()


class DebouncedCache:
    """
    Write-behind wrapper around LocalCache.

    put_json() only records the latest value per key and schedules a flush
    `delay` seconds later on the running event loop; bursts of changes collapse
    into one write. Without a running loop the write happens immediately.
    Reads see pending values.
    """

    def __init__(self, cache: LocalCache, *, delay: float = 0.1) -> None:
        self._cache = cache
        self._delay = max(0.0, float(delay))
        self._pending: dict[str, Any] = {}
        self._handle: asyncio.TimerHandle | None = None

    def get_json(self, key: str) -> Any | None:
        if key in self._pending:
            return self._pending[key]
        return self._cache.get_json(key)

    def put_json(self, key: str, value: Any) -> None:
        self._pending[key] = value
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self._delay, self.flush)

    def flush(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        pending, self._pending = self._pending, {}
        for key, value in pending.items():
            try:
                self._cache.put_json(key, value)
            except Exception:
                logger.exception("Debounced cache write failed key=%s", key)

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)
