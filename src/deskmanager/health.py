"""Liveness and readiness probes for the dashboard API.

- ``GET /health`` answers 200 while the process is up.
- ``GET /ready`` answers 200 only when the state DB responds, the Zoho
  client credentials are configured and a refresh token has been stored
  (``deskmanager exchange-code`` has been run).  Otherwise 503 with the
  result of each check.
"""

from __future__ import annotations

import asyncio
import sqlite3
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from deskmanager.auth.tokens import REFRESH_TOKEN_KEY
from deskmanager.config import missing_credentials

OK = "ok"
FAIL = "fail"


async def _state_db(services: Any) -> str:
    conn = getattr(services, "conn", None)
    if conn is None:
        return FAIL
    try:
        await asyncio.to_thread(conn.execute, "SELECT 1")
    except sqlite3.Error:
        return FAIL
    return OK


def _credentials(services: Any) -> str:
    settings = getattr(services, "settings", None)
    if settings is None or missing_credentials(settings):
        return FAIL
    return OK


def _authorized(services: Any) -> str:
    kv = getattr(services, "kv", None)
    if kv is None:
        return FAIL
    try:
        return OK if kv.get(REFRESH_TOKEN_KEY) else FAIL
    except sqlite3.Error:
        return FAIL


def register_health_routes(app: FastAPI) -> None:
    """Register ``/health`` and ``/ready`` on *app*.

    ``app.state.services`` is read on each request; a missing attribute
    fails every readiness check.
    """

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/ready")
    async def ready(request: Request) -> JSONResponse:
        services = getattr(request.app.state, "services", None)
        checks = {
            "state_db": await _state_db(services),
            "credentials": _credentials(services),
            "authorized": _authorized(services),
        }
        all_ok = all(result == OK for result in checks.values())
        return JSONResponse(
            content={"status": "ready" if all_ok else "not_ready", "checks": checks},
            status_code=200 if all_ok else 503,
        )
