"""
Local persisted storage for the offline manager.

`LocalStorage` is a small synchronous key -> text store backed by SQLite (one row per key).
`LocalCacheStore` keeps one full snapshot per collection on top of it:

    {"data": [...records...], "timestamp": <ms since epoch>, "last_modified": "<iso>"}

Snapshots are always replaced wholesale; there is no partial merge.
"""

from __future__ import annotations

import json
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

from .logs import json_log
from .record_ids import now_ms

COLLECTION_KEYS = {
    "supply": "knox_supply_data",
    "stock": "knox_stock_data",
    "recipes": "knox_recipes_data",
}

STORAGE_KEYS = {
    **COLLECTION_KEYS,
    "pending_changes": "knox_pending_changes",
    "temp_ids": "knox_temp_ids",
    "last_sync": "knox_last_sync",
    "sync_lease": "knox_sync_lease",
    "pos_settings": "knox-pos-settings",
}

_SCHEMA = """
CREATE TABLE IF NOT EXISTS local_kv (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  updated_at TEXT NOT NULL
)
"""


def _get(cur, key: str) -> Optional[str]:
    cur.execute("SELECT value FROM local_kv WHERE key = ?", (key,))
    row = cur.fetchone()
    return row[0] if row else None


def _set(cur, key: str, value: str) -> None:
    cur.execute(
        """
        INSERT INTO local_kv (key, value, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET
          value=excluded.value,
          updated_at=excluded.updated_at
        """,
        (key, value, datetime.now(timezone.utc).isoformat()),
    )


def _remove(cur, key: str) -> None:
    cur.execute("DELETE FROM local_kv WHERE key = ?", (key,))


class LocalStorage:
    """
    Key -> text rows in one SQLite file.

    The file may be shared by several processes (API + sync worker). Single-key calls are
    atomic on their own; read-modify-write sequences must go through `transaction()`, which
    holds SQLite's write lock (`BEGIN IMMEDIATE`) until the block exits.
    """

    def __init__(self, path: str, busy_timeout_s: float = 10.0):
        self.path = os.path.abspath(path) if path != ":memory:" else path
        self.busy_timeout_s = busy_timeout_s
        self._memory_conn = (
            sqlite3.connect(":memory:", check_same_thread=False, isolation_level=None) if path == ":memory:" else None
        )
        # One shared connection cannot hold two transactions; serialize its users.
        self._memory_lock = threading.RLock()
        with self._connect() as conn:
            conn.execute(_SCHEMA)

    @contextmanager
    def _connect(self):
        if self._memory_conn is not None:
            with self._memory_lock:
                yield self._memory_conn
            return
        conn = sqlite3.connect(self.path, timeout=self.busy_timeout_s, isolation_level=None)
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self):
        """Yield a `StorageTransaction`; commits on exit, rolls back on error."""
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield StorageTransaction(conn.cursor())
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def get_item(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            return _get(conn.cursor(), key)

    def set_item(self, key: str, value: str) -> None:
        with self._connect() as conn:
            _set(conn.cursor(), key, value)

    def remove_item(self, key: str) -> None:
        with self._connect() as conn:
            _remove(conn.cursor(), key)


class StorageTransaction:
    """`LocalStorage`-shaped view of one open write transaction."""

    def __init__(self, cur):
        self._cur = cur

    def get_item(self, key: str) -> Optional[str]:
        return _get(self._cur, key)

    def set_item(self, key: str, value: str) -> None:
        _set(self._cur, key, value)

    def remove_item(self, key: str) -> None:
        _remove(self._cur, key)


class LocalCacheStore:
    def __init__(self, storage, clock: Callable[[], int] = now_ms):
        self.storage = storage
        self.clock = clock
        self.storage_errors = 0
        self.last_storage_error: Optional[str] = None

    def _key(self, collection: str) -> str:
        key = COLLECTION_KEYS.get(collection)
        if not key:
            raise ValueError(f"unknown collection: {collection}")
        return key

    def _note_storage_error(self, event: str, key: str, ex: Exception) -> None:
        self.storage_errors += 1
        self.last_storage_error = str(ex)
        json_log("error", event, key=key, error=str(ex))

    def _read_envelope(self, collection: str) -> Optional[dict]:
        key = self._key(collection)
        try:
            raw = self.storage.get_item(key)
        except Exception as ex:
            self._note_storage_error("local_cache.read_failed", key, ex)
            return None
        if not raw:
            return None
        try:
            parsed = json.loads(raw)
        except Exception as ex:
            json_log("warning", "local_cache.corrupt", key=key, error=str(ex))
            return None
        if not isinstance(parsed, dict):
            json_log("warning", "local_cache.corrupt", key=key, error="snapshot is not an object")
            return None
        return parsed

    def save(self, collection: str, records: list) -> bool:
        key = self._key(collection)
        ts = self.clock()
        envelope = {
            "data": list(records or []),
            "timestamp": ts,
            "last_modified": datetime.fromtimestamp(ts / 1000, tz=timezone.utc).isoformat(),
        }
        try:
            self.storage.set_item(key, json.dumps(envelope, default=str))
        except Exception as ex:
            self._note_storage_error("local_cache.save_failed", key, ex)
            return False
        return True

    def load(self, collection: str) -> list:
        envelope = self._read_envelope(collection)
        if not envelope:
            return []
        data = envelope.get("data")
        if not isinstance(data, list):
            return []
        return [r for r in data if isinstance(r, dict)]

    def last_write_time(self, collection: str) -> int:
        envelope = self._read_envelope(collection)
        if not envelope:
            return 0
        try:
            return int(envelope.get("timestamp") or 0)
        except Exception:
            return 0

    def clear(self) -> None:
        # POS settings and a running pass's lease survive a local data reset.
        for name, key in STORAGE_KEYS.items():
            if name in {"pos_settings", "sync_lease"}:
                continue
            try:
                self.storage.remove_item(key)
            except Exception as ex:
                self._note_storage_error("local_cache.clear_failed", key, ex)
        json_log("info", "local_cache.cleared")
