"""Prometheus counters for outbound calls, throttling, tokens and drafts.

Counters are module-level so every component can increment them without
wiring.  ``setup_metrics(app)`` exposes them (plus HTTP request metrics)
on the dashboard API at ``/metrics``.
"""

from __future__ import annotations

from fastapi import FastAPI
from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator

DESK_API_CALLS: Counter = Counter(
    "deskmanager_desk_api_calls_total",
    "Outbound Desk API calls by operation and outcome",
    ["operation", "outcome"],
)

RATE_LIMIT_REJECTIONS: Counter = Counter(
    "deskmanager_rate_limit_rejections_total",
    "Desk API calls declined by the local per-minute limiter",
)

TOKEN_REFRESHES: Counter = Counter(
    "deskmanager_token_refreshes_total",
    "OAuth access token refresh attempts by outcome",
    ["outcome"],
)

DRAFTS_GENERATED: Counter = Counter(
    "deskmanager_drafts_generated_total",
    "Draft replies produced by generator",
    ["provider"],
)

AI_CALL_RETRIES: Counter = Counter(
    "deskmanager_ai_call_retries_total",
    "AI provider calls retried after a transport failure",
    ["api_name"],
)


def setup_metrics(app: FastAPI) -> None:
    """Instrument *app* with Prometheus HTTP metrics and expose ``/metrics``.

    Excludes health/ready/metrics endpoints from instrumentation to avoid
    noise in dashboards.

    Args:
        app: The FastAPI application to instrument.
    """
    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/health", "/ready", "/metrics"],
    ).instrument(app).expose(app, include_in_schema=False, should_gzip=True)
