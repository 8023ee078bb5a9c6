"""Tests for Prometheus metrics endpoint and custom Desk metrics."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from deskmanager.observability.metrics import (
    DESK_API_CALLS,
    DRAFTS_GENERATED,
    RATE_LIMIT_REJECTIONS,
    setup_metrics,
)


@pytest.fixture()
def metrics_app() -> FastAPI:
    """Create a minimal FastAPI app with Prometheus instrumentation."""
    app = FastAPI()

    @app.get("/hello")
    async def hello():
        return {"msg": "hello"}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    @app.get("/ready")
    async def ready():
        return {"status": "ready"}

    setup_metrics(app)
    return app


@pytest.fixture()
def metrics_client(metrics_app: FastAPI) -> TestClient:
    """TestClient for the metrics-enabled app."""
    return TestClient(metrics_app)


def test_metrics_endpoint_returns_prometheus_format(metrics_client: TestClient) -> None:
    """GET /metrics returns 200 with Prometheus-format text containing expected metrics."""
    # Make a request first so http_request metrics have data
    metrics_client.get("/hello")
    RATE_LIMIT_REJECTIONS.inc(0)
    resp = metrics_client.get("/metrics")
    assert resp.status_code == 200
    body = resp.text
    assert "http_request" in body
    assert "deskmanager_rate_limit_rejections_total" in body


def test_excluded_handlers_not_in_metrics(metrics_client: TestClient) -> None:
    """/health and /ready do NOT appear in metrics output (excluded_handlers works)."""
    metrics_client.get("/health")
    metrics_client.get("/ready")
    resp = metrics_client.get("/metrics")
    body = resp.text
    lines = [
        line
        for line in body.splitlines()
        if "http_request_duration" in line and 'handler="' in line
    ]
    for line in lines:
        assert '/health"' not in line, f"/health found in metrics: {line}"
        assert '/ready"' not in line, f"/ready found in metrics: {line}"


def test_desk_api_counter_increments(metrics_client: TestClient) -> None:
    """Labelled DESK_API_CALLS increments are reflected in /metrics output."""
    name = 'deskmanager_desk_api_calls_total{operation="metrics_check",outcome="success"}'
    DESK_API_CALLS.labels(operation="metrics_check", outcome="success").inc(0)
    initial_value = _extract_counter_value(metrics_client.get("/metrics").text, name)

    DESK_API_CALLS.labels(operation="metrics_check", outcome="success").inc()

    new_value = _extract_counter_value(metrics_client.get("/metrics").text, name)
    assert new_value == initial_value + 1.0


def test_drafts_generated_counter_labelled_by_provider(metrics_client: TestClient) -> None:
    DRAFTS_GENERATED.labels(provider="metrics_check").inc()
    body = metrics_client.get("/metrics").text
    assert 'deskmanager_drafts_generated_total{provider="metrics_check"}' in body


def _extract_counter_value(text: str, metric_name: str) -> float:
    """Extract the numeric value of a counter from Prometheus text output."""
    for line in text.splitlines():
        if line.startswith(metric_name):
            parts = line.rsplit(" ", 1)
            if len(parts) == 2:
                return float(parts[1])
    raise ValueError(f"Metric {metric_name} not found in output")
