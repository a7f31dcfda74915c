"""Key-value cache backends with per-entry TTL.

Values are JSON-serialisable objects. Absence (never written, or expired)
is reported as ``None``; writes at an existing key replace the value and
restart its TTL clock.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Protocol

from ..common.config import Config
from ..database.connection import get_connection

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...

    def clear(self) -> None: ...


class MemoryCache:
    """Thread-safe in-process cache, bounded with LRU eviction.

    Args:
        max_entries: Entries kept before the least recently used is evicted.
        clock: Time source (seconds); injectable for tests.
    """

    def __init__(self, max_entries: int = 500, clock=time.monotonic) -> None:
        self.max_entries = max(max_entries, 1)
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, str]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, payload = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
        return json.loads(payload)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (self._clock() + ttl_seconds, payload)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted cache entry %s", evicted)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class SQLiteCache:
    """Durable cache stored in the ``cache_entries`` table.

    Shared across processes using the same database file; last write wins.
    """

    def __init__(self, config: Config | None = None, clock=time.time) -> None:
        self.config = config or Config()
        self._clock = clock

    def get(self, key: str) -> Any | None:
        conn = get_connection(self.config)
        try:
            row = conn.execute(
                "SELECT value_json, expires_at FROM cache_entries WHERE key = ?",
                (key,),
            ).fetchone()
            if row is None:
                return None
            if row["expires_at"] <= self._clock():
                conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
                conn.commit()
                return None
            return json.loads(row["value_json"])
        finally:
            conn.close()

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        conn = get_connection(self.config)
        try:
            conn.execute(
                "INSERT OR REPLACE INTO cache_entries (key, value_json, expires_at) "
                "VALUES (?, ?, ?)",
                (key, json.dumps(value, ensure_ascii=False), self._clock() + ttl_seconds),
            )
            conn.commit()
        finally:
            conn.close()

    def delete(self, key: str) -> None:
        conn = get_connection(self.config)
        try:
            conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()

    def clear(self) -> None:
        conn = get_connection(self.config)
        try:
            conn.execute("DELETE FROM cache_entries")
            conn.commit()
        finally:
            conn.close()

    def purge_expired(self) -> int:
        """Delete expired rows. Returns the number removed."""
        conn = get_connection(self.config)
        try:
            cursor = conn.execute(
                "DELETE FROM cache_entries WHERE expires_at <= ?", (self._clock(),)
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()
