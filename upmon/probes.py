from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Any, Protocol

from upmon.store import LAST_CRON_START, ConfigStore


class StorageProbe(Protocol):
    def select_one(self) -> Any:
        """Run a trivial scalar query; a healthy backend returns 1."""
        ...


class CacheBackend(Protocol):
    def set(self, key: str, value: str) -> None: ...

    def get(self, key: str) -> str | None: ...

    def delete(self, key: str) -> None: ...


class CronSignal(Protocol):
    def last_cron_start(self) -> float | None: ...


def _connect(path: str, timeout: float) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing db_path")
    if p != ":memory:":
        Path(p).parent.mkdir(parents=True, exist_ok=True)
    return sqlite3.connect(p, timeout=timeout, isolation_level=None)


class SqliteStorageProbe:
    def __init__(self, db_path: str, *, timeout: float = 30.0) -> None:
        self.db_path = db_path
        self.timeout = timeout

    def select_one(self) -> Any:
        conn = _connect(self.db_path, self.timeout)
        try:
            row = conn.execute("SELECT 1").fetchone()
        finally:
            conn.close()
        return row[0] if row else None


class MemoryCache:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class SqliteCache:
    """Tiny key/value cache table; shared by every process pointing at the same file."""

    def __init__(self, db_path: str, *, timeout: float = 30.0) -> None:
        self.db_path = db_path
        self.timeout = timeout

    def _conn(self) -> sqlite3.Connection:
        conn = _connect(self.db_path, self.timeout)
        conn.execute("CREATE TABLE IF NOT EXISTS cache (k TEXT PRIMARY KEY, v TEXT NOT NULL);")
        return conn

    def set(self, key: str, value: str) -> None:
        conn = self._conn()
        try:
            conn.execute("INSERT OR REPLACE INTO cache (k, v) VALUES (?, ?)", (key, value))
        finally:
            conn.close()

    def get(self, key: str) -> str | None:
        conn = self._conn()
        try:
            row = conn.execute("SELECT v FROM cache WHERE k = ?", (key,)).fetchone()
        finally:
            conn.close()
        return str(row[0]) if row else None

    def delete(self, key: str) -> None:
        conn = self._conn()
        try:
            conn.execute("DELETE FROM cache WHERE k = ?", (key,))
        finally:
            conn.close()


class StoreCronSignal:
    """Reads the last scheduled-job start recorded by the host's cron runner."""

    def __init__(self, store: ConfigStore) -> None:
        self.store = store

    def last_cron_start(self) -> float | None:
        raw = self.store.get(LAST_CRON_START)
        if raw is None or raw == "":
            return None
        ts = float(raw)
        return ts if ts > 0 else None


def record_cron_start(store: ConfigStore, ts: float | None = None) -> float:
    value = float(time.time() if ts is None else ts)
    store.set(LAST_CRON_START, value)
    return value
