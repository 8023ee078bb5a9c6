"""Tests for TokenStore refresh, code exchange and authorization URL building.

The OAuth server is simulated with ``httpx.MockTransport``.
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from pydantic import SecretStr

from deskmanager.auth.tokens import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    TOKEN_EXPIRES_KEY,
    TokenStore,
)
from deskmanager.config import Settings
from deskmanager.domain.errors import AuthError, AuthErrorKind

ACCOUNTS = "https://accounts.test/oauth/v2"


def _store(kv, clock, handler, *, client_id: str = "C", client_secret: str = "S") -> TokenStore:
    return TokenStore(
        kv,
        httpx.Client(transport=httpx.MockTransport(handler)),
        client_id=client_id,
        client_secret=SecretStr(client_secret),
        accounts_base_url=ACCOUNTS,
        redirect_uri="http://localhost:8000/oauth/callback",
        scope="Desk.tickets.ALL",
        clock=clock,
    )


# ---------------------------------------------------------------------------
# refresh()
# ---------------------------------------------------------------------------


class TestRefresh:
    """Exchanging the refresh token for a new access token."""

    def test_refresh_stores_token_and_expiry(self, kv, clock) -> None:
        seen: list[dict[str, list[str]]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(parse_qs(request.content.decode()))
            return httpx.Response(200, json={"access_token": "A"})

        kv.set(REFRESH_TOKEN_KEY, "R")
        store = _store(kv, clock, handler)

        token = store.refresh()

        assert token == "A"
        assert kv.get(ACCESS_TOKEN_KEY) == "A"
        assert store.expires_at == pytest.approx(clock() + 3600)
        assert seen[0]["grant_type"] == ["refresh_token"]
        assert seen[0]["refresh_token"] == ["R"]
        assert seen[0]["client_id"] == ["C"]
        assert seen[0]["client_secret"] == ["S"]

    def test_refresh_without_access_token_keeps_prior_token(self, kv, clock) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "invalid_code"})

        kv.set(REFRESH_TOKEN_KEY, "R")
        kv.set(ACCESS_TOKEN_KEY, "OLD")
        kv.set(TOKEN_EXPIRES_KEY, clock() + 100)
        store = _store(kv, clock, handler)

        with pytest.raises(AuthError) as exc_info:
            store.refresh()

        assert exc_info.value.kind is AuthErrorKind.PROVIDER_REJECTED
        assert "invalid_code" in str(exc_info.value)
        assert kv.get(ACCESS_TOKEN_KEY) == "OLD"
        assert store.expires_at == clock() + 100

    def test_refresh_missing_refresh_token(self, kv, clock) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        store = _store(kv, clock, handler)

        with pytest.raises(AuthError) as exc_info:
            store.refresh()

        assert exc_info.value.kind is AuthErrorKind.MISSING_CREDENTIALS

    def test_refresh_missing_client_secret(self, kv, clock) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        kv.set(REFRESH_TOKEN_KEY, "R")
        store = _store(kv, clock, handler, client_secret="")

        with pytest.raises(AuthError) as exc_info:
            store.refresh()

        assert exc_info.value.kind is AuthErrorKind.MISSING_CREDENTIALS

    def test_refresh_transport_failure(self, kv, clock) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        kv.set(REFRESH_TOKEN_KEY, "R")
        store = _store(kv, clock, handler)

        with pytest.raises(AuthError) as exc_info:
            store.refresh()

        assert exc_info.value.kind is AuthErrorKind.REFRESH_FAILED

    def test_refresh_non_json_response(self, kv, clock) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="<html>bad gateway</html>")

        kv.set(REFRESH_TOKEN_KEY, "R")
        store = _store(kv, clock, handler)

        with pytest.raises(AuthError) as exc_info:
            store.refresh()

        assert exc_info.value.kind is AuthErrorKind.REFRESH_FAILED

    def test_refresh_notifies_hooks(self, kv, clock) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"access_token": "A2"})

        kv.set(REFRESH_TOKEN_KEY, "R")
        store = _store(kv, clock, handler)
        received: list[str] = []
        store.on_refresh(received.append)

        store.refresh()

        assert received == ["A2"]

    def test_failing_hook_does_not_break_refresh(self, kv, clock) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"access_token": "A"})

        def bad_hook(token: str) -> None:
            raise RuntimeError("boom")

        kv.set(REFRESH_TOKEN_KEY, "R")
        store = _store(kv, clock, handler)
        store.on_refresh(bad_hook)

        assert store.refresh() == "A"


# ---------------------------------------------------------------------------
# get_valid_token()
# ---------------------------------------------------------------------------


class TestGetValidToken:
    """Refresh happens only inside the five minute margin."""

    def test_returns_cached_token_when_fresh(self, kv, clock) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no refresh expected")

        kv.set(ACCESS_TOKEN_KEY, "CACHED")
        kv.set(TOKEN_EXPIRES_KEY, clock() + 3600)
        store = _store(kv, clock, handler)

        assert store.get_valid_token() == "CACHED"

    def test_refreshes_inside_margin(self, kv, clock) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"access_token": "NEW"})

        kv.set(ACCESS_TOKEN_KEY, "CACHED")
        kv.set(REFRESH_TOKEN_KEY, "R")
        kv.set(TOKEN_EXPIRES_KEY, clock() + 299)
        store = _store(kv, clock, handler)

        assert store.get_valid_token() == "NEW"
        assert len(calls) == 1

    def test_refreshes_when_no_token(self, kv, clock) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"access_token": "NEW"})

        kv.set(REFRESH_TOKEN_KEY, "R")
        store = _store(kv, clock, handler)

        assert store.get_valid_token() == "NEW"

    def test_raises_when_refresh_fails(self, kv, clock) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={})

        kv.set(REFRESH_TOKEN_KEY, "R")
        store = _store(kv, clock, handler)

        with pytest.raises(AuthError):
            store.get_valid_token()


# ---------------------------------------------------------------------------
# Initial authorization
# ---------------------------------------------------------------------------


class TestAuthorization:
    """Authorization URL and code exchange."""

    def test_authorization_url_params(self, kv, clock) -> None:
        store = _store(kv, clock, lambda request: httpx.Response(200))

        url = urlparse(store.authorization_url())
        params = parse_qs(url.query)

        assert url.path == "/oauth/v2/auth"
        assert params["client_id"] == ["C"]
        assert params["response_type"] == ["code"]
        assert params["access_type"] == ["offline"]
        assert params["scope"] == ["Desk.tickets.ALL"]
        assert params["redirect_uri"] == ["http://localhost:8000/oauth/callback"]

    def test_exchange_code_stores_both_tokens(self, kv, clock) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            form = parse_qs(request.content.decode())
            assert form["grant_type"] == ["authorization_code"]
            assert form["code"] == ["CODE"]
            return httpx.Response(200, json={"access_token": "A", "refresh_token": "R"})

        store = _store(kv, clock, handler)
        store.exchange_code("CODE")

        assert kv.get(ACCESS_TOKEN_KEY) == "A"
        assert kv.get(REFRESH_TOKEN_KEY) == "R"
        assert store.expires_at == pytest.approx(clock() + 3600)

    def test_exchange_code_rejected_without_refresh_token(self, kv, clock) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"access_token": "A"})

        store = _store(kv, clock, handler)

        with pytest.raises(AuthError) as exc_info:
            store.exchange_code("CODE")

        assert exc_info.value.kind is AuthErrorKind.PROVIDER_REJECTED
        assert kv.get(ACCESS_TOKEN_KEY) is None

    def test_clear_forgets_tokens(self, kv, clock) -> None:
        kv.set(ACCESS_TOKEN_KEY, "A")
        kv.set(REFRESH_TOKEN_KEY, "R")
        kv.set(TOKEN_EXPIRES_KEY, 1.0)
        store = _store(kv, clock, lambda request: httpx.Response(200))

        store.clear()

        assert kv.get(ACCESS_TOKEN_KEY) is None
        assert kv.get(REFRESH_TOKEN_KEY) is None
        assert store.expires_at == 0

    def test_from_settings(self, kv, clock, settings: Settings) -> None:
        store = TokenStore.from_settings(kv, httpx.Client(), settings, clock=clock)

        assert "client_id=client-id" in store.authorization_url()
        assert store.authorization_url().startswith("https://accounts.test/oauth/v2/auth?")
