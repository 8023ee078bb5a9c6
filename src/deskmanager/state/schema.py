"""SQLite schema for the TTL-bearing key-value store.

Holds OAuth tokens, rate-limit buckets, response caches and drafts in a
single table.  Follows the ``init_*`` DDL-function pattern so tests can
build the table on an in-memory connection.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path


def init_kv_table(conn: sqlite3.Connection) -> None:
    """Create the kv_store table if it does not already exist.

    ``expires_at`` is epoch seconds, or NULL for entries that never expire.
    An index on ``expires_at`` keeps expiry sweeps cheap.

    Args:
        conn: An open sqlite3.Connection.
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value_json TEXT NOT NULL,
            expires_at REAL
        )
    """)

    conn.execute("CREATE INDEX IF NOT EXISTS idx_kv_expires ON kv_store (expires_at)")

    conn.commit()


def open_state_db(db_path: Path) -> sqlite3.Connection:
    """Open (creating if needed) the state database with WAL mode enabled.

    Args:
        db_path: Path to the SQLite database file.  Parent directories are
            created when missing.

    Returns:
        An open sqlite3.Connection with the kv_store table initialized.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL")
    init_kv_table(conn)
    return conn
