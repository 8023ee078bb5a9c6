"""Typed application settings for the Desk ticket manager.

``Settings`` reads environment variables and an optional ``.env`` file.
``get_settings()`` caches one instance per process, and
``validate_credentials()`` gates startup on the Zoho client credentials.

Only ``domain.types`` is imported from the package, so every other module
can import settings without cycles.
"""

from __future__ import annotations

import sys
from functools import lru_cache
from pathlib import Path

import structlog
from pydantic import SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from deskmanager.domain.types import AIMode, TagScope, Tone

logger = structlog.get_logger()


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env`` file.

    OAuth tokens are runtime state kept in the key-value store, not here.
    Secrets are ``SecretStr`` so they never show up in reprs or logs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- General ---------------------------------------------------------------
    production: bool = False
    debug: bool = False
    web_port: int = 8000
    state_db_path: Path = Path("data/deskmanager.db")
    sentry_dsn: str = ""

    # -- Zoho Desk -------------------------------------------------------------
    api_base_url: str = "https://desk.zoho.com/api/v1"
    accounts_base_url: str = "https://accounts.zoho.com/oauth/v2"
    redirect_uri: str = "http://localhost:8000/oauth/callback"
    oauth_scope: str = "Desk.tickets.ALL,Desk.basic.READ,Desk.search.READ"
    client_id: str = ""
    client_secret: SecretStr = SecretStr("")
    org_id: str = ""

    # -- Limits and caching ----------------------------------------------------
    rate_limit_per_minute: int = 45
    ticket_cache_seconds: int = 300
    dashboard_cache_seconds: int = 60
    draft_ttl_days: int = 7

    # -- Tagging ---------------------------------------------------------------
    tag_scope: TagScope = TagScope.TEMPLATE_ONLY

    # -- Draft generation ------------------------------------------------------
    ai_mode: AIMode = AIMode.API
    ai_provider: str = ""
    ai_max_tokens: int = 1000
    ai_temperature: float = 0.7
    ai_system_prompt: str = ""
    ai_knowledge_base: str = ""
    ai_response_style: Tone = Tone.PROFESSIONAL
    include_full_conversation: bool = True
    conversation_limit: int = 20
    email_signature: str = ""

    claude_api_key: SecretStr = SecretStr("")
    claude_model: str = "claude-3-haiku-20240307"
    openai_api_key: SecretStr = SecretStr("")
    openai_model: str = "gpt-3.5-turbo"
    gemini_api_key: SecretStr = SecretStr("")
    gemini_model: str = "gemini-pro"

    browser_ai_provider: str = "chatgpt"

    subscription_key: SecretStr = SecretStr("")
    subscription_email: str = ""
    subscription_url: str = "https://api.zohodeskmanager.com/v1/"

    @field_validator("ai_provider")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("api_base_url", "accounts_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Load settings once per process.

    Tests reset the cache with ``get_settings.cache_clear()``.  Invalid
    values are logged as pydantic's structured error list, which never
    includes secret values, and the process exits with status 1.
    """
    try:
        return Settings()
    except ValidationError as exc:
        logger.error("settings_validation_failed", errors=exc.errors())
        sys.exit(1)


def missing_credentials(settings: Settings) -> list[str]:
    """Names of the Zoho credentials that are not configured."""
    present = {
        "CLIENT_ID": bool(settings.client_id),
        "CLIENT_SECRET": bool(settings.client_secret.get_secret_value()),
        "ORG_ID": bool(settings.org_id),
    }
    return [name for name, ok in present.items() if not ok]


def validate_credentials(settings: Settings) -> list[str]:
    """Check the Zoho credentials before serving requests.

    Production refuses to start without them: the missing names are
    written to stderr and the process exits with status 1.  Development
    logs one warning per missing credential and carries on, so the CLI's
    ``auth-url`` and ``exchange-code`` commands stay usable.

    A configured AI provider without its API key is only ever a warning;
    draft generation reports it when first used.

    Returns:
        The missing credential names (empty when all are set).
    """
    if settings.ai_mode is AIMode.API and settings.ai_provider:
        key = getattr(settings, f"{settings.ai_provider}_api_key", None)
        if key is None or not key.get_secret_value():
            logger.warning("ai_provider_key_missing", provider=settings.ai_provider)

    missing = missing_credentials(settings)
    if not missing:
        logger.info("credential_validation_passed")
        return missing

    if not settings.production:
        for name in missing:
            logger.warning("credential_missing_dev", credential=name)
        return missing

    for name in missing:
        logger.error("credential_missing", credential=name)
    print(
        "Startup failed: missing Zoho Desk credentials: " + ", ".join(missing),
        file=sys.stderr,
    )
    sys.exit(1)
