"""Optional Sentry error reporting fed by structlog.

``init_sentry`` is a no-op without a DSN.  When enabled, ERROR-level
structlog events (failed Desk calls, failed token refreshes, exhausted AI
retries) reach Sentry through ``get_sentry_processor``.  OAuth credentials
are masked in every event before it leaves the process.
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from typing import Any

import sentry_sdk
import structlog
from sentry_sdk.integrations.logging import LoggingIntegration
from structlog_sentry import SentryProcessor

SENSITIVE_KEYS = frozenset(
    {
        "access_token",
        "authorization",
        "client_secret",
        "code",
        "refresh_token",
        "subscription_key",
    }
)
MASK = "[redacted]"


def _mask(data: Any) -> None:
    if not isinstance(data, MutableMapping):
        return
    for key in list(data):
        if str(key).lower() in SENSITIVE_KEYS:
            data[key] = MASK


def scrub_event(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any]:
    """``before_send`` hook masking OAuth credentials in a Sentry event.

    Covers event extras, the structlog context attached by
    ``SentryProcessor`` and captured request headers.
    """
    _mask(event.get("extra"))
    _mask((event.get("contexts") or {}).get("structlog"))
    _mask((event.get("request") or {}).get("headers"))
    return event


def init_sentry(dsn: str, environment: str = "development") -> bool:
    """Initialize the Sentry SDK when a DSN is configured.

    Args:
        dsn: Sentry DSN string.  Empty string disables Sentry.
        environment: Environment tag attached to every event.

    Returns:
        ``True`` when Sentry was initialized.
    """
    if not dsn:
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.0,
        send_default_pii=False,
        before_send=scrub_event,
        # structlog-sentry forwards log events; stdlib capture would duplicate them
        integrations=[LoggingIntegration(event_level=None, level=None)],
    )
    return True


def get_sentry_processor() -> structlog.types.Processor:
    """structlog processor sending ERROR events to Sentry."""
    return SentryProcessor(event_level=logging.ERROR)
