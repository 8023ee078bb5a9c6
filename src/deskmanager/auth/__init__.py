"""OAuth token management for the Zoho Desk API."""

from deskmanager.auth.tokens import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    TOKEN_EXPIRES_KEY,
    TokenStore,
)

__all__ = [
    "ACCESS_TOKEN_KEY",
    "REFRESH_TOKEN_KEY",
    "TOKEN_EXPIRES_KEY",
    "TokenStore",
]
