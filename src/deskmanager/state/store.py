"""Key-value store abstraction with per-entry TTLs.

Components that need shared persisted state (token store, rate limiter,
caches, drafts) take a ``KeyValueStore`` in their constructor instead of
reaching for process-wide globals.  ``SQLiteKeyValueStore`` is the
production implementation; it uses parameterized queries exclusively and
commits synchronously after writes.

Reads and writes are not locked against each other.  Concurrent writers to
the same key follow last-write-wins.
"""

from __future__ import annotations

import json
import sqlite3
import time
from collections.abc import Callable
from typing import Any, Protocol


class KeyValueStore(Protocol):
    """Minimal TTL-aware key-value interface."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl: float | None = None) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> list[str]: ...

    def delete_prefix(self, prefix: str) -> int: ...


class SQLiteKeyValueStore:
    """Persist JSON values in the ``kv_store`` table with optional expiry.

    Expired rows read as absent and are removed lazily on access.

    Args:
        conn: An open sqlite3.Connection whose database already has the
            ``kv_store`` table (see ``init_kv_table``).
        clock: Returns the current time in epoch seconds.  Injectable so
            tests can move time forward.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._conn = conn
        self._clock = clock

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store *value* under *key*, replacing any previous entry.

        Args:
            key: Entry key.
            value: Any JSON-serializable value.
            ttl: Lifetime in seconds.  ``None`` stores without expiry.
        """
        expires_at = self._clock() + ttl if ttl is not None else None
        self._conn.execute(
            "INSERT OR REPLACE INTO kv_store (key, value_json, expires_at) VALUES (?, ?, ?)",
            (key, json.dumps(value), expires_at),
        )
        self._conn.commit()

    def delete(self, key: str) -> None:
        """Remove *key* if present."""
        self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        self._conn.commit()

    def delete_prefix(self, prefix: str) -> int:
        """Remove every live entry whose key starts with *prefix*.

        Returns:
            Number of live entries removed.
        """
        self._purge_expired()
        cursor = self._conn.execute(
            "DELETE FROM kv_store WHERE substr(key, 1, ?) = ?",
            (len(prefix), prefix),
        )
        self._conn.commit()
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        """Return the value stored under *key*, or ``None`` if absent or expired."""
        row = self._conn.execute(
            "SELECT value_json, expires_at FROM kv_store WHERE key = ?",
            (key,),
        ).fetchone()
        if row is None:
            return None

        value_json, expires_at = row
        if expires_at is not None and expires_at <= self._clock():
            self.delete(key)
            return None
        return json.loads(value_json)

    def keys(self, prefix: str = "") -> list[str]:
        """List live keys starting with *prefix*, most recently written first."""
        self._purge_expired()
        cursor = self._conn.execute(
            "SELECT key FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY rowid DESC",
            (len(prefix), prefix),
        )
        return [row[0] for row in cursor.fetchall()]

    def ttl(self, key: str) -> float | None:
        """Seconds until *key* expires, or ``None`` when absent or non-expiring."""
        row = self._conn.execute(
            "SELECT expires_at FROM kv_store WHERE key = ?",
            (key,),
        ).fetchone()
        if row is None or row[0] is None:
            return None
        return max(0.0, row[0] - self._clock())

    def _purge_expired(self) -> None:
        self._conn.execute(
            "DELETE FROM kv_store WHERE expires_at IS NOT NULL AND expires_at <= ?",
            (self._clock(),),
        )
        self._conn.commit()
