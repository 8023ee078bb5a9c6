"""Zoho OAuth2 token storage and on-demand refresh.

Provides the ``TokenStore`` class which owns the access/refresh token pair:
- Building the authorization-code redirect URL for initial setup
- Exchanging an authorization code for the initial token pair
- Returning an access token valid for at least five more minutes,
  refreshing it synchronously first when needed

Tokens live in the injected key-value store under ``access_token``,
``refresh_token`` and ``token_expires`` (epoch seconds).  A single refresh
attempt is made per call; retry policy belongs to the caller.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode

import httpx
import structlog
from pydantic import SecretStr

from deskmanager.config import Settings
from deskmanager.domain.errors import AuthError, AuthErrorKind
from deskmanager.observability.metrics import TOKEN_REFRESHES
from deskmanager.state.store import KeyValueStore

logger = structlog.get_logger()

ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"
TOKEN_EXPIRES_KEY = "token_expires"

# Zoho access tokens are valid for one hour
TOKEN_LIFETIME_SECONDS = 3600
# Refresh when less than this much lifetime remains
REFRESH_MARGIN_SECONDS = 300

RefreshHook = Callable[[str], None]


class TokenStore:
    """Hold the OAuth token pair and refresh it on demand.

    Args:
        kv: Key-value store holding the persisted tokens.
        http: An ``httpx.Client`` used for calls to the accounts server.
        client_id: OAuth client ID.
        client_secret: OAuth client secret.
        accounts_base_url: Base URL of the OAuth server, e.g.
            ``https://accounts.zoho.com/oauth/v2``.
        redirect_uri: Redirect URI registered for the client.
        scope: Comma-separated OAuth scopes.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        http: httpx.Client,
        *,
        client_id: str,
        client_secret: SecretStr,
        accounts_base_url: str,
        redirect_uri: str = "",
        scope: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._kv = kv
        self._http = http
        self._client_id = client_id
        self._client_secret = client_secret
        self._accounts_base_url = accounts_base_url.rstrip("/")
        self._redirect_uri = redirect_uri
        self._scope = scope
        self._clock = clock
        self._hooks: list[RefreshHook] = []

    @classmethod
    def from_settings(
        cls,
        kv: KeyValueStore,
        http: httpx.Client,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> TokenStore:
        """Build a ``TokenStore`` from application settings."""
        return cls(
            kv,
            http,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            accounts_base_url=settings.accounts_base_url,
            redirect_uri=settings.redirect_uri,
            scope=settings.oauth_scope,
            clock=clock,
        )

    def on_refresh(self, hook: RefreshHook) -> None:
        """Register *hook* to be called with each newly refreshed access token."""
        self._hooks.append(hook)

    @property
    def expires_at(self) -> float:
        """Epoch seconds at which the cached access token expires (0 if unknown)."""
        return float(self._kv.get(TOKEN_EXPIRES_KEY) or 0)

    # ------------------------------------------------------------------
    # Token access
    # ------------------------------------------------------------------

    def get_valid_token(self) -> str:
        """Return an access token valid for at least ``REFRESH_MARGIN_SECONDS``.

        Refreshes synchronously first when the cached token is missing or
        about to expire.

        Returns:
            The access token string.

        Raises:
            AuthError: If a refresh was needed and failed.
        """
        token = self._kv.get(ACCESS_TOKEN_KEY)
        if not token or self._clock() > self.expires_at - REFRESH_MARGIN_SECONDS:
            token = self.refresh()
        return str(token)

    def refresh(self) -> str:
        """Exchange the stored refresh token for a new access token.

        On success the new token is persisted with ``expires_at = now + 3600``
        and every registered refresh hook is notified.  On failure the
        previously stored token is left untouched.

        Returns:
            The new access token.

        Raises:
            AuthError: ``MISSING_CREDENTIALS`` if the refresh token, client ID
                or client secret is absent; ``PROVIDER_REJECTED`` if the
                response carries no ``access_token``; ``REFRESH_FAILED`` on
                transport or decode failure.
        """
        refresh_token = self._kv.get(REFRESH_TOKEN_KEY)
        client_secret = self._client_secret.get_secret_value()

        if not refresh_token or not self._client_id or not client_secret:
            logger.error(
                "token_refresh_missing_credentials",
                has_refresh_token=bool(refresh_token),
                has_client_id=bool(self._client_id),
                has_client_secret=bool(client_secret),
            )
            TOKEN_REFRESHES.labels(outcome="missing_credentials").inc()
            raise AuthError(
                AuthErrorKind.MISSING_CREDENTIALS,
                "Missing refresh token, client ID or client secret",
            )

        body = self._post_token(
            {
                "refresh_token": refresh_token,
                "client_id": self._client_id,
                "client_secret": client_secret,
                "grant_type": "refresh_token",
            }
        )

        access_token = body.get("access_token")
        if not access_token:
            logger.error("token_refresh_rejected", error=body.get("error"))
            TOKEN_REFRESHES.labels(outcome="rejected").inc()
            raise AuthError(
                AuthErrorKind.PROVIDER_REJECTED,
                f"Token refresh rejected: {body.get('error', 'no access_token in response')}",
            )

        self._store_access_token(str(access_token))
        TOKEN_REFRESHES.labels(outcome="success").inc()
        logger.info("token_refreshed", expires_at=self.expires_at)

        for hook in self._hooks:
            try:
                hook(str(access_token))
            except Exception:
                logger.exception("token_refresh_hook_failed")

        return str(access_token)

    # ------------------------------------------------------------------
    # Initial authorization
    # ------------------------------------------------------------------

    def authorization_url(self) -> str:
        """Build the authorization-code redirect URL for first-time setup."""
        params = {
            "scope": self._scope,
            "client_id": self._client_id,
            "response_type": "code",
            "access_type": "offline",
            "redirect_uri": self._redirect_uri,
        }
        return f"{self._accounts_base_url}/auth?{urlencode(params)}"

    def exchange_code(self, code: str) -> None:
        """Exchange a one-time authorization code for the initial token pair.

        Args:
            code: The authorization code from the OAuth callback.

        Raises:
            AuthError: ``MISSING_CREDENTIALS`` without client credentials;
                ``PROVIDER_REJECTED`` unless both tokens are returned;
                ``REFRESH_FAILED`` on transport or decode failure.
        """
        client_secret = self._client_secret.get_secret_value()
        if not self._client_id or not client_secret:
            raise AuthError(
                AuthErrorKind.MISSING_CREDENTIALS,
                "Client ID and client secret are required to exchange a code",
            )

        body = self._post_token(
            {
                "code": code,
                "client_id": self._client_id,
                "client_secret": client_secret,
                "redirect_uri": self._redirect_uri,
                "grant_type": "authorization_code",
            }
        )

        access_token = body.get("access_token")
        refresh_token = body.get("refresh_token")
        if not access_token or not refresh_token:
            logger.error("code_exchange_rejected", error=body.get("error"))
            raise AuthError(
                AuthErrorKind.PROVIDER_REJECTED,
                f"Code exchange rejected: {body.get('error', 'tokens missing from response')}",
            )

        self._kv.set(REFRESH_TOKEN_KEY, str(refresh_token))
        self._store_access_token(str(access_token))
        logger.info("code_exchanged", expires_at=self.expires_at)

    def clear(self) -> None:
        """Forget every stored token (used when disconnecting)."""
        for key in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, TOKEN_EXPIRES_KEY):
            self._kv.delete(key)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _store_access_token(self, access_token: str) -> None:
        expires_at = self._clock() + TOKEN_LIFETIME_SECONDS
        self._kv.set(ACCESS_TOKEN_KEY, access_token, ttl=TOKEN_LIFETIME_SECONDS)
        self._kv.set(TOKEN_EXPIRES_KEY, expires_at)

    def _post_token(self, data: dict[str, str]) -> dict[str, Any]:
        try:
            response = self._http.post(
                f"{self._accounts_base_url}/token",
                data=data,
                timeout=30.0,
            )
        except httpx.HTTPError as exc:
            logger.error("token_request_failed", error=str(exc))
            TOKEN_REFRESHES.labels(outcome="failed").inc()
            raise AuthError(AuthErrorKind.REFRESH_FAILED, f"Token request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            logger.error("token_response_undecodable", status_code=response.status_code)
            TOKEN_REFRESHES.labels(outcome="failed").inc()
            raise AuthError(
                AuthErrorKind.REFRESH_FAILED,
                f"Token endpoint returned non-JSON response (status {response.status_code})",
            ) from exc

        if not isinstance(body, dict):
            return {}
        return body
