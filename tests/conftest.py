"""Shared pytest fixtures for the Desk ticket manager test suite."""

from __future__ import annotations

import sqlite3
import sys
import time
from collections.abc import Callable, Iterator
from typing import Any

import httpx
import pytest
import structlog
from pydantic import SecretStr

from deskmanager.auth.tokens import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, TOKEN_EXPIRES_KEY, TokenStore
from deskmanager.config import Settings
from deskmanager.desk.client import DeskClient
from deskmanager.desk.ratelimit import RateLimiter
from deskmanager.state.schema import init_kv_table
from deskmanager.state.store import SQLiteKeyValueStore
from deskmanager.wiring import Services, initialize_services

# 2023-11-14 22:13:00 UTC, the start of a minute bucket
START_TIME = 1_699_999_980.0

DESK_BASE = "https://desk.test/api/v1"
ACCOUNTS_BASE = "https://accounts.test/oauth/v2"

Handler = Callable[[httpx.Request], httpx.Response]


class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def mock_http(handler: Handler) -> httpx.Client:
    """An ``httpx.Client`` whose requests are answered by *handler*."""
    return httpx.Client(transport=httpx.MockTransport(handler))


def ticket_payload(ticket_id: str = "1001", **fields: Any) -> dict[str, Any]:
    """A Desk-shaped ticket payload with sensible defaults."""
    payload: dict[str, Any] = {
        "id": ticket_id,
        "ticketNumber": "101",
        "subject": "Cannot log in",
        "description": "I get an error when I try to log in.",
        "email": "jane@example.com",
        "status": "Open",
        "priority": "Medium",
        "createdTime": "2023-11-14T20:00:00.000Z",
        "modifiedTime": "2023-11-14T21:00:00.000Z",
        "contact": {"firstName": "Jane", "lastName": "Doe", "email": "jane@example.com"},
    }
    payload.update(fields)
    return payload


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    """Send log lines to stderr and drop any config a test installed."""
    structlog.reset_defaults()
    structlog.configure(logger_factory=structlog.PrintLoggerFactory(file=sys.stderr))
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def clock() -> FakeClock:
    """A clock frozen at the start of a minute."""
    return FakeClock()


@pytest.fixture
def conn() -> sqlite3.Connection:
    """In-memory SQLite connection with the kv_store table initialized."""
    connection = sqlite3.connect(":memory:", check_same_thread=False)
    init_kv_table(connection)
    return connection


@pytest.fixture
def kv(conn: sqlite3.Connection, clock: FakeClock) -> SQLiteKeyValueStore:
    """Key-value store backed by the in-memory connection and fake clock."""
    return SQLiteKeyValueStore(conn, clock=clock)


@pytest.fixture
def settings() -> Settings:
    """Settings with test credentials and no .env file."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        client_id="client-id",
        client_secret="client-secret",  # type: ignore[arg-type]
        org_id="org-1",
        api_base_url=DESK_BASE,
        accounts_base_url=ACCOUNTS_BASE,
    )


@pytest.fixture
def authorized_kv(kv: SQLiteKeyValueStore, clock: FakeClock) -> SQLiteKeyValueStore:
    """Key-value store holding a fresh access token and a refresh token."""
    kv.set(ACCESS_TOKEN_KEY, "access-1", ttl=3600)
    kv.set(REFRESH_TOKEN_KEY, "refresh-1")
    kv.set(TOKEN_EXPIRES_KEY, clock() + 3600)
    return kv


@pytest.fixture
def make_client(
    authorized_kv: SQLiteKeyValueStore, clock: FakeClock
) -> Callable[..., DeskClient]:
    """Factory building a ``DeskClient`` around a mock transport handler."""

    def _make(handler: Handler, *, max_calls: int = 45, org_id: str = "org-1") -> DeskClient:
        http = mock_http(handler)
        tokens = TokenStore(
            authorized_kv,
            http,
            client_id="client-id",
            client_secret=SecretStr("client-secret"),
            accounts_base_url=ACCOUNTS_BASE,
            clock=clock,
        )
        limiter = RateLimiter(authorized_kv, max_calls=max_calls, clock=clock)
        return DeskClient(
            http, tokens, limiter, authorized_kv, base_url=DESK_BASE, org_id=org_id
        )

    return _make


@pytest.fixture
def make_ticket() -> Callable[..., dict[str, Any]]:
    """Factory for Desk-shaped ticket payloads."""
    return ticket_payload


@pytest.fixture
def http_factory() -> Callable[[Handler], httpx.Client]:
    """Factory for ``httpx.Client`` instances backed by a mock transport."""
    return mock_http


@pytest.fixture
def make_services(settings: Settings) -> Callable[..., Services]:
    """Factory building real ``Services`` around a mock transport handler.

    Each call gets its own in-memory state DB holding a fresh token pair.
    Keyword arguments override settings fields.
    """

    def _make(handler: Handler, **overrides: Any) -> Services:
        services = initialize_services(
            settings.model_copy(update=overrides),
            http=mock_http(handler),
            conn=sqlite3.connect(":memory:", check_same_thread=False),
        )
        services.kv.set(ACCESS_TOKEN_KEY, "access-1", ttl=3600)
        services.kv.set(REFRESH_TOKEN_KEY, "refresh-1")
        services.kv.set(TOKEN_EXPIRES_KEY, time.time() + 3600)
        return services

    return _make
