"""Persisted key-value state package.

Provides the ``KeyValueStore`` interface and its SQLite-backed
implementation used for tokens, rate-limit buckets, caches and drafts.
"""

from deskmanager.state.schema import init_kv_table, open_state_db
from deskmanager.state.store import KeyValueStore, SQLiteKeyValueStore

__all__ = [
    "KeyValueStore",
    "SQLiteKeyValueStore",
    "init_kv_table",
    "open_state_db",
]
