"""Construct the shared services used by the CLI and the dashboard API.

Every component takes its dependencies in its constructor; this module is
the one place that builds them from ``Settings`` and hands the same
key-value store to the token store, the rate limiter, the response caches
and the draft store.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass

import httpx
import structlog

from deskmanager.auth.tokens import TokenStore
from deskmanager.config import Settings, get_settings
from deskmanager.desk.client import DeskClient
from deskmanager.desk.ratelimit import RateLimiter
from deskmanager.drafts.generators import DraftGenerator, select_generator
from deskmanager.drafts.store import DraftStore
from deskmanager.state.schema import init_kv_table, open_state_db
from deskmanager.state.store import SQLiteKeyValueStore

logger = structlog.get_logger()


@dataclass
class Services:
    """Initialized service instances shared by one process."""

    settings: Settings
    conn: sqlite3.Connection
    kv: SQLiteKeyValueStore
    http: httpx.Client
    tokens: TokenStore
    limiter: RateLimiter
    client: DeskClient
    drafts: DraftStore

    def generator(self) -> DraftGenerator:
        """Return the configured draft generator.

        Raises:
            GenerationError: If no usable provider is configured.
        """
        return select_generator(self.settings, self.http)

    def close(self) -> None:
        """Release the HTTP client and the state database."""
        self.http.close()
        self.conn.close()


def initialize_services(
    settings: Settings | None = None,
    *,
    http: httpx.Client | None = None,
    conn: sqlite3.Connection | None = None,
) -> Services:
    """Set up all shared services for the application.

    Args:
        settings: Application settings.  If ``None``, ``get_settings()`` is used.
        http: HTTP client for Desk, OAuth and AI calls.  Tests pass one
            built on ``httpx.MockTransport``.
        conn: Open state database.  Defaults to ``settings.state_db_path``.

    Returns:
        The initialized ``Services``.
    """
    if settings is None:
        settings = get_settings()

    if conn is None:
        conn = open_state_db(settings.state_db_path)
    else:
        init_kv_table(conn)

    kv = SQLiteKeyValueStore(conn)
    http = http or httpx.Client()

    tokens = TokenStore.from_settings(kv, http, settings)
    tokens.on_refresh(lambda _token: logger.info("access_token_rotated"))

    limiter = RateLimiter(kv, max_calls=settings.rate_limit_per_minute)
    client = DeskClient.from_settings(http, tokens, limiter, kv, settings)
    drafts = DraftStore(kv, ttl_days=settings.draft_ttl_days)

    logger.info(
        "services_initialized",
        state_db=str(settings.state_db_path),
        rate_limit=settings.rate_limit_per_minute,
        ai_mode=settings.ai_mode.value,
    )
    return Services(
        settings=settings,
        conn=conn,
        kv=kv,
        http=http,
        tokens=tokens,
        limiter=limiter,
        client=client,
        drafts=drafts,
    )
