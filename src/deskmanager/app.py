"""JSON dashboard API for support agents, served by FastAPI and uvicorn.

Exposes ticket listing, search, conversation view, replies, status and tag
updates, the draft lifecycle, and the open-ticket summary.  Handlers are
plain ``def`` functions: the Desk client is blocking, so FastAPI runs them
in its threadpool.

Configures:
- **structlog** via ``configure_logging`` and optional **Sentry**
- **Prometheus** HTTP metrics plus the domain counters at ``/metrics``
- **X-Request-ID** propagation into every log line
- Typed domain errors mapped to JSON ``{"error", "message"}`` responses
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from deskmanager.analysis.tagging import auto_tag_ticket
from deskmanager.config import get_settings, validate_credentials
from deskmanager.desk.client import TicketFilter
from deskmanager.desk.stats import dashboard_summary
from deskmanager.domain.errors import (
    AuthError,
    DeskApiError,
    DeskManagerError,
    DraftNotFoundError,
    GenerationError,
    GenErrorKind,
    RateLimitedError,
    TicketNotFoundError,
    UnauthorizedError,
)
from deskmanager.domain.types import ResponseType, SearchType, TagMode, TagScope, Tone
from deskmanager.drafts.generators import generate_draft
from deskmanager.drafts.models import DraftOptions
from deskmanager.drafts.store import send_draft
from deskmanager.health import register_health_routes
from deskmanager.observability.logs import configure_logging
from deskmanager.observability.metrics import setup_metrics
from deskmanager.observability.middleware import RequestIdMiddleware
from deskmanager.observability.sentry import init_sentry
from deskmanager.wiring import Services, initialize_services

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class ReplyRequest(BaseModel):
    """Body of ``POST /tickets/{id}/reply``."""

    content: str = Field(min_length=1)
    is_public: bool = True


class StatusRequest(BaseModel):
    """Body of ``PATCH /tickets/{id}/status``."""

    status: str = Field(min_length=1)


class TagsRequest(BaseModel):
    """Body of ``POST /tickets/{id}/tags``."""

    tags: list[str] = Field(default_factory=list)
    mode: TagMode = TagMode.ADD


class AutoTagRequest(BaseModel):
    """Body of ``POST /tickets/{id}/tags/auto``; the scope defaults to the configured one."""

    scope: TagScope | None = None
    custom_tags: list[str] = Field(default_factory=list)


class DraftRequest(BaseModel):
    """Body of ``PUT /tickets/{id}/draft``."""

    content: str = Field(min_length=1)


class GenerateRequest(BaseModel):
    """Body of ``POST /tickets/{id}/draft/generate``."""

    response_type: ResponseType = ResponseType.SOLUTION
    tone: Tone | None = None
    save: bool = True


class SendRequest(BaseModel):
    """Optional edited content for ``POST /tickets/{id}/draft/send``."""

    content: str | None = None


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def error_status(exc: DeskManagerError) -> int:
    """HTTP status for a domain error."""
    if isinstance(exc, AuthError | UnauthorizedError):
        return 401
    if isinstance(exc, RateLimitedError):
        return 429
    if isinstance(exc, DeskApiError):
        return 502
    if isinstance(exc, DraftNotFoundError | TicketNotFoundError):
        return 404
    if isinstance(exc, GenerationError):
        return 502 if exc.kind is GenErrorKind.PROVIDER_REJECTED else 503
    return 500


def error_kind(exc: DeskManagerError) -> str:
    """Short machine-readable error label."""
    kind = getattr(exc, "kind", None)
    if kind is not None:
        return str(kind)
    if isinstance(exc, DraftNotFoundError):
        return "draft_not_found"
    if isinstance(exc, TicketNotFoundError):
        return "ticket_not_found"
    return "error"


async def domain_error_handler(request: Request, exc: DeskManagerError) -> JSONResponse:
    """Render any ``DeskManagerError`` as a short JSON error."""
    status_code = error_status(exc)
    logger.warning(
        "request_failed",
        path=request.url.path,
        status_code=status_code,
        error=error_kind(exc),
    )
    headers = {"Retry-After": str(exc.reset_in)} if isinstance(exc, RateLimitedError) else None
    return JSONResponse(
        status_code=status_code,
        content={"error": error_kind(exc), "message": str(exc)},
        headers=headers,
    )


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Lifespan context manager for FastAPI startup and shutdown.

    On shutdown: closes the HTTP client and the state database.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control to the application.
    """
    logger.info("dashboard_api_starting")
    yield
    services: Services = app.state.services
    services.close()
    logger.info("dashboard_api_stopped")


def _services(request: Request) -> Services:
    return request.app.state.services


def create_app(services: Services) -> FastAPI:
    """Create the FastAPI app with health, metrics and dashboard routes.

    Args:
        services: The initialized ``Services`` from ``initialize_services``.

    Returns:
        The configured FastAPI application.
    """
    app = FastAPI(title="Zoho Desk Manager", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(DeskManagerError, domain_error_handler)  # type: ignore[arg-type]
    register_health_routes(app)
    setup_metrics(app)

    # -- Tickets ---------------------------------------------------------------

    @app.get("/tickets")
    def list_tickets(
        request: Request,
        status: str | None = "Open",
        limit: int = Query(default=50, ge=1, le=100),
        sort: str | None = None,
        force: bool = False,
    ) -> dict[str, Any]:
        """List tickets (cached for five minutes unless *force*)."""
        page = _services(request).client.list_tickets(
            TicketFilter(status=status or None, limit=limit, sort_by=sort), force=force
        )
        return page.model_dump(mode="json", by_alias=True, exclude_none=True)

    @app.get("/tickets/search")
    def search_tickets(
        request: Request,
        q: str = Query(min_length=1),
        type: SearchType = SearchType.AUTO,  # noqa: A002
        limit: int = Query(default=20, ge=1, le=100),
        force: bool = False,
    ) -> dict[str, Any]:
        """Search recent tickets client-side."""
        page = _services(request).client.search(q, type, limit=limit, force=force)
        return page.model_dump(mode="json", by_alias=True, exclude_none=True)

    @app.get("/tickets/{ticket_id}")
    def get_ticket(request: Request, ticket_id: str) -> dict[str, Any]:
        """Fetch one ticket, flagging whether a draft is waiting."""
        services = _services(request)
        ticket = services.client.get_ticket(ticket_id)
        body = ticket.model_dump(mode="json", by_alias=True, exclude_none=True)
        body["hasDraft"] = services.drafts.exists(ticket_id)
        return body

    @app.get("/tickets/{ticket_id}/conversation")
    def get_conversation(request: Request, ticket_id: str) -> dict[str, Any]:
        """Return the unified, chronologically ordered conversation."""
        messages = _services(request).client.get_conversation(ticket_id)
        return {
            "ticket_id": ticket_id,
            "count": len(messages),
            "messages": [m.model_dump(mode="json") for m in messages],
        }

    @app.post("/tickets/{ticket_id}/reply")
    def reply(request: Request, ticket_id: str, body: ReplyRequest) -> dict[str, str]:
        """Send a reply on the ticket."""
        _services(request).client.reply(ticket_id, body.content, is_public=body.is_public)
        return {"status": "sent"}

    @app.patch("/tickets/{ticket_id}/status")
    def update_status(request: Request, ticket_id: str, body: StatusRequest) -> dict[str, str]:
        """Change the ticket's status."""
        _services(request).client.update_status(ticket_id, body.status)
        return {"status": "updated", "ticket_status": body.status}

    @app.post("/tickets/{ticket_id}/tags")
    def tag_ticket(request: Request, ticket_id: str, body: TagsRequest) -> dict[str, Any]:
        """Add, replace or remove tags on the ticket."""
        try:
            _services(request).client.tag_ticket(ticket_id, body.tags, body.mode)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return {"status": "tagged", "mode": body.mode.value, "tags": body.tags}

    @app.post("/tickets/{ticket_id}/tags/auto")
    def auto_tag(
        request: Request, ticket_id: str, body: AutoTagRequest | None = None
    ) -> dict[str, Any]:
        """Suggest tags from the ticket's content and add them."""
        services = _services(request)
        body = body or AutoTagRequest()
        scope = body.scope or services.settings.tag_scope
        tags = auto_tag_ticket(
            services.client, ticket_id, scope=scope, custom_tags=body.custom_tags
        )
        return {"status": "tagged" if tags else "unchanged", "scope": scope.value, "tags": tags}

    # -- Drafts ----------------------------------------------------------------

    @app.get("/tickets/{ticket_id}/draft")
    def get_draft(request: Request, ticket_id: str) -> dict[str, Any]:
        """Return the saved draft for the ticket."""
        return _services(request).drafts.load(ticket_id).model_dump(mode="json")

    @app.put("/tickets/{ticket_id}/draft")
    def save_draft(request: Request, ticket_id: str, body: DraftRequest) -> dict[str, Any]:
        """Save (or overwrite) the draft for the ticket."""
        draft = _services(request).drafts.save(ticket_id, body.content, generated_by="manual")
        return draft.model_dump(mode="json")

    @app.delete("/tickets/{ticket_id}/draft")
    def delete_draft(request: Request, ticket_id: str) -> dict[str, Any]:
        """Delete the draft for the ticket."""
        return {"deleted": _services(request).drafts.clear(ticket_id)}

    @app.post("/tickets/{ticket_id}/draft/generate")
    def generate(request: Request, ticket_id: str, body: GenerateRequest) -> dict[str, Any]:
        """Generate a draft with the configured generator."""
        services = _services(request)
        generator = services.generator()
        ticket = services.client.get_ticket(ticket_id)
        messages = services.client.get_conversation(ticket_id)
        result, context = generate_draft(
            generator,
            ticket,
            messages,
            services.settings,
            DraftOptions(response_type=body.response_type, tone=body.tone),
        )
        saved = False
        if body.save and not result.prompt_only:
            services.drafts.save(ticket_id, result.text, generated_by=result.provider)
            saved = True
        return {
            **result.model_dump(mode="json"),
            "saved": saved,
            "suggestions": context.suggestions,
            "sentiment": context.sentiment.value,
            "key_issues": context.key_issues,
        }

    @app.post("/tickets/{ticket_id}/draft/send")
    def send(request: Request, ticket_id: str, body: SendRequest | None = None) -> dict[str, Any]:
        """Send the saved (or edited) draft as a reply and delete it."""
        services = _services(request)
        draft = send_draft(
            services.client, services.drafts, ticket_id, body.content if body else None
        )
        return draft.model_dump(mode="json")

    # -- Dashboard -------------------------------------------------------------

    @app.get("/dashboard")
    def dashboard(request: Request, force: bool = False) -> dict[str, Any]:
        """Open-ticket summary (cached for one minute)."""
        services = _services(request)
        summary = dashboard_summary(
            services.client,
            services.kv,
            ttl=services.settings.dashboard_cache_seconds,
            force=force,
        )
        body = summary.model_dump(mode="json")
        body["rate_limit"] = {
            "remaining": services.limiter.remaining(),
            "limit": services.limiter.max_calls,
            "reset_in": services.limiter.reset_in_seconds(),
        }
        return body

    @app.post("/connection/test")
    def connection_test(request: Request) -> dict[str, Any]:
        """Verify the Desk credentials by listing one ticket."""
        count = _services(request).client.test_connection()
        return {"status": "ok", "tickets_visible": count}

    return app


def run() -> None:
    """Console-script entry point: configure, build and serve the API."""
    settings = get_settings()
    configure_logging(
        production=settings.production,
        debug=settings.debug,
        sentry_enabled=init_sentry(
            settings.sentry_dsn,
            environment="production" if settings.production else "development",
        ),
    )
    logger.info("application_starting")

    validate_credentials(settings)
    services = initialize_services(settings)
    app = create_app(services)

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port, log_level="info")


if __name__ == "__main__":
    run()
