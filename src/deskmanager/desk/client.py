"""Zoho Desk REST API client with token refresh, rate limiting and caching.

Provides the ``DeskClient`` class.  Every operation follows the same
template: obtain a valid token, check the per-minute limiter, issue the
HTTP call, then translate any failure into a typed ``DeskApiError``.  The
client never retries; retry policy belongs to the caller.

List and search results are cached in the key-value store for five minutes
(advisory only: a miss is always safe to recompute from the API).
"""

from __future__ import annotations

import hashlib
import html
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from deskmanager.auth.tokens import TokenStore
from deskmanager.config import Settings
from deskmanager.desk.conversation import unify
from deskmanager.desk.ratelimit import RateLimiter
from deskmanager.desk.search import TicketRefKind, fetch_window, filter_tickets, parse_ticket_input
from deskmanager.domain.errors import (
    AuthError,
    BadResponseError,
    DecodeError,
    DeskApiError,
    RateLimitedError,
    TicketNotFoundError,
    TransportError,
    UnauthorizedError,
)
from deskmanager.domain.models import Comment, Conversation, Message, Thread, Ticket, TicketPage
from deskmanager.domain.types import SearchType, TagMode
from deskmanager.observability.metrics import DESK_API_CALLS, RATE_LIMIT_REJECTIONS
from deskmanager.state.store import KeyValueStore

logger = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=BaseModel)

LIST_TIMEOUT = 15.0
FETCH_TIMEOUT = 30.0
WRITE_TIMEOUT = 20.0

TICKETS_CACHE_PREFIX = "tickets_"
SEARCH_CACHE_PREFIX = "search_"


class TicketFilter(BaseModel):
    """Query parameters for listing tickets."""

    status: str | None = None
    limit: int = 50
    sort_by: str | None = None
    contact_id: str | None = None
    include: str | None = None
    offset: int | None = None

    def to_params(self) -> dict[str, Any]:
        """Render as Desk query parameters, omitting unset fields."""
        params: dict[str, Any] = {"limit": self.limit}
        if self.status:
            params["status"] = self.status
        if self.sort_by:
            params["sortBy"] = self.sort_by
        if self.contact_id:
            params["contactId"] = self.contact_id
        if self.include:
            params["include"] = self.include
        if self.offset is not None:
            params["from"] = self.offset
        return params


def _cache_key(prefix: str, payload: str) -> str:
    return prefix + hashlib.md5(payload.encode("utf-8")).hexdigest()


def _normalize_tags(tags: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class DeskClient:
    """Authenticated, rate-limited wrapper around the Zoho Desk API.

    Args:
        http: An ``httpx.Client``.  Tests pass one built on
            ``httpx.MockTransport``.
        tokens: Supplies valid access tokens.
        limiter: Per-minute call limiter.
        cache: Key-value store used for list and search caching.
        base_url: Desk API base URL, e.g. ``https://desk.zoho.com/api/v1``.
        org_id: Desk organization ID sent on every call.
        cache_ttl: Lifetime of list/search cache entries in seconds.
        debug: Log full response bodies on failures.
    """

    def __init__(
        self,
        http: httpx.Client,
        tokens: TokenStore,
        limiter: RateLimiter,
        cache: KeyValueStore,
        *,
        base_url: str,
        org_id: str,
        cache_ttl: int = 300,
        debug: bool = False,
    ) -> None:
        self._http = http
        self._tokens = tokens
        self._limiter = limiter
        self._cache = cache
        self._base_url = base_url.rstrip("/")
        self._org_id = org_id
        self._cache_ttl = cache_ttl
        self._debug = debug

    @classmethod
    def from_settings(
        cls,
        http: httpx.Client,
        tokens: TokenStore,
        limiter: RateLimiter,
        cache: KeyValueStore,
        settings: Settings,
    ) -> DeskClient:
        """Build a ``DeskClient`` from application settings."""
        return cls(
            http,
            tokens,
            limiter,
            cache,
            base_url=settings.api_base_url,
            org_id=settings.org_id,
            cache_ttl=settings.ticket_cache_seconds,
            debug=settings.debug,
        )

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        ok_statuses: Sequence[int] = (200,),
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        timeout: float = FETCH_TIMEOUT,
    ) -> httpx.Response:
        """Issue one authenticated call and translate failures to typed errors."""
        if not self._org_id:
            DESK_API_CALLS.labels(operation=operation, outcome="unauthorized").inc()
            raise UnauthorizedError(operation, "organization ID is not configured")

        try:
            token = self._tokens.get_valid_token()
        except AuthError as exc:
            logger.error("desk_api_no_token", operation=operation, reason=exc.kind.value)
            DESK_API_CALLS.labels(operation=operation, outcome="unauthorized").inc()
            raise UnauthorizedError(operation, str(exc)) from exc

        if not self._limiter.can_proceed():
            reset_in = self._limiter.reset_in_seconds()
            logger.warning("desk_api_rate_limited", operation=operation, reset_in=reset_in)
            RATE_LIMIT_REJECTIONS.inc()
            DESK_API_CALLS.labels(operation=operation, outcome="rate_limited").inc()
            raise RateLimitedError(operation, reset_in)
        self._limiter.record()

        headers = {
            "Authorization": f"Zoho-oauthtoken {token}",
            "orgId": self._org_id,
        }
        try:
            response = self._http.request(
                method,
                f"{self._base_url}{path}",
                params=params,
                json=json_body,
                headers=headers,
                timeout=timeout,
            )
        except httpx.HTTPError as exc:
            logger.error("desk_api_transport_error", operation=operation, error=str(exc))
            DESK_API_CALLS.labels(operation=operation, outcome="transport").inc()
            raise TransportError(operation, str(exc)) from exc

        self._limiter.record_response_headers(response.headers)

        if response.status_code == 401:
            logger.error("desk_api_unauthorized", operation=operation)
            DESK_API_CALLS.labels(operation=operation, outcome="unauthorized").inc()
            raise UnauthorizedError(operation, "access token rejected by Desk")

        if response.status_code not in ok_statuses:
            logger.error(
                "desk_api_bad_response",
                operation=operation,
                status_code=response.status_code,
            )
            if self._debug:
                logger.debug("desk_api_bad_response_body", operation=operation, body=response.text)
            DESK_API_CALLS.labels(operation=operation, outcome="bad_response").inc()
            raise BadResponseError(operation, response.status_code, response.text)

        DESK_API_CALLS.labels(operation=operation, outcome="success").inc()
        return response

    def _decode(self, operation: str, response: httpx.Response) -> dict[str, Any]:
        """Decode a JSON object body.  ``204 No Content`` decodes to ``{}``."""
        if response.status_code == 204 or not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            logger.error("desk_api_decode_error", operation=operation)
            raise DecodeError(operation, "response body is not valid JSON") from exc
        if not isinstance(body, dict):
            raise DecodeError(operation, "expected a JSON object")
        return body

    def _decode_list(
        self, operation: str, response: httpx.Response, model: type[ModelT]
    ) -> list[ModelT]:
        """Decode ``{"data": [...]}`` into a list of *model* instances."""
        body = self._decode(operation, response)
        try:
            return [model.model_validate(item) for item in body.get("data") or []]
        except (ValidationError, TypeError) as exc:
            logger.error("desk_api_decode_error", operation=operation, error=str(exc))
            raise DecodeError(operation, "unexpected payload shape") from exc

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    def list_tickets(self, ticket_filter: TicketFilter | None = None, force: bool = False) -> TicketPage:
        """List tickets, served from a five minute cache unless *force* is set.

        Args:
            ticket_filter: Status, limit and sort options.
            force: Bypass (and refresh) the cache.

        Returns:
            The page of tickets.
        """
        ticket_filter = ticket_filter or TicketFilter()
        key = _cache_key(TICKETS_CACHE_PREFIX, ticket_filter.model_dump_json())

        if not force:
            cached = self._cache.get(key)
            if cached is not None:
                return TicketPage.model_validate(cached)

        response = self._request(
            "list_tickets",
            "GET",
            "/tickets",
            ok_statuses=(200, 204),
            params=ticket_filter.to_params(),
            timeout=LIST_TIMEOUT,
        )
        page = TicketPage(data=self._decode_list("list_tickets", response, Ticket))
        self._cache.set(key, page.model_dump(mode="json", by_alias=True), ttl=self._cache_ttl)
        return page

    def get_ticket(self, ticket_id: str) -> Ticket:
        """Fetch a single ticket (never cached)."""
        response = self._request("get_ticket", "GET", f"/tickets/{ticket_id}", timeout=LIST_TIMEOUT)
        body = self._decode("get_ticket", response)
        try:
            return Ticket.model_validate(body)
        except ValidationError as exc:
            raise DecodeError("get_ticket", "unexpected ticket payload") from exc

    def search(
        self,
        query: str,
        search_type: SearchType = SearchType.AUTO,
        limit: int = 50,
        force: bool = False,
    ) -> TicketPage:
        """Search recent tickets by filtering them client-side.

        Fetches ``fetch_window(limit)`` recent tickets sorted by creation
        time and keeps up to *limit* matches.  Results are cached for five
        minutes per ``(query, type, limit)``.
        """
        key = _cache_key(SEARCH_CACHE_PREFIX, f"{query}|{search_type.value}|{limit}")
        if not force:
            cached = self._cache.get(key)
            if cached is not None:
                return TicketPage.model_validate(cached)

        window = self.list_tickets(
            TicketFilter(limit=fetch_window(limit), sort_by="createdTime"),
            force=force,
        )
        page = TicketPage(data=filter_tickets(window.data, query, search_type, limit))
        self._cache.set(key, page.model_dump(mode="json", by_alias=True), ttl=self._cache_ttl)
        return page

    def get_customer_tickets(self, identifier: str) -> TicketPage:
        """Fetch a customer's tickets by email address or contact ID.

        Email lookups scan the 100 most recent tickets of any status and
        keep exact (case-insensitive) email matches.
        """
        if "@" in identifier:
            page = self.list_tickets(TicketFilter(limit=100, sort_by="-createdTime", include="contacts"))
            wanted = identifier.lower()
            return TicketPage(data=[t for t in page.data if (t.email or "").lower() == wanted])
        return self.list_tickets(
            TicketFilter(limit=100, sort_by="-createdTime", include="contacts", contact_id=identifier)
        )

    def resolve_ticket_id(self, reference: str) -> str:
        """Turn whatever an agent typed into a ticket ID.

        18-digit IDs and Desk URLs resolve without an API call.  Ticket
        numbers and free text go through ``search``; an email address picks
        that customer's most recent ticket.

        Raises:
            TicketNotFoundError: If nothing matches *reference*.
        """
        ref = parse_ticket_input(reference)
        if ref.kind is TicketRefKind.ID:
            return ref.value

        if ref.kind is TicketRefKind.EMAIL:
            page = self.get_customer_tickets(ref.value)
        elif ref.kind is TicketRefKind.NUMBER:
            page = self.search(ref.value, SearchType.TICKET_NUMBER, limit=1)
        else:
            page = self.search(ref.value, SearchType.CONTENT, limit=1)

        if not page.data:
            raise TicketNotFoundError(reference)
        return page.data[0].id

    def reply(self, ticket_id: str, content: str, is_public: bool = True) -> None:
        """Send an email reply on a ticket.  Succeeds on HTTP 200 or 201."""
        self._request(
            "reply",
            "POST",
            f"/tickets/{ticket_id}/sendReply",
            ok_statuses=(200, 201),
            json_body={
                "channel": "EMAIL",
                "content": content,
                "isPublic": is_public,
                "contentType": "html",
            },
            timeout=WRITE_TIMEOUT,
        )
        logger.info("ticket_replied", ticket_id=ticket_id, is_public=is_public)

    def update_status(self, ticket_id: str, status: str) -> None:
        """Patch a ticket's status."""
        self._request(
            "update_status",
            "PATCH",
            f"/tickets/{ticket_id}",
            json_body={"status": status},
            timeout=WRITE_TIMEOUT,
        )
        logger.info("ticket_status_updated", ticket_id=ticket_id, status=status)

    def test_connection(self) -> int:
        """List a single ticket, bypassing the cache.

        Returns:
            Number of tickets returned (0 or 1).
        """
        return self.list_tickets(TicketFilter(limit=1), force=True).count

    # ------------------------------------------------------------------
    # Conversation sources
    # ------------------------------------------------------------------

    def get_threads(self, ticket_id: str) -> list[Thread]:
        """Fetch the ticket's threads (the actual message content)."""
        response = self._request(
            "get_threads", "GET", f"/tickets/{ticket_id}/threads", ok_statuses=(200, 204)
        )
        return self._decode_list("get_threads", response, Thread)

    def get_conversations(self, ticket_id: str) -> list[Conversation]:
        """Fetch the ticket's conversations (first 100)."""
        response = self._request(
            "get_conversations",
            "GET",
            f"/tickets/{ticket_id}/conversations",
            ok_statuses=(200, 204),
            params={"from": 0, "limit": 100},
        )
        return self._decode_list("get_conversations", response, Conversation)

    def get_comments(self, ticket_id: str) -> list[Comment]:
        """Fetch the ticket's internal comments."""
        response = self._request(
            "get_comments", "GET", f"/tickets/{ticket_id}/comments", ok_statuses=(200, 204)
        )
        return self._decode_list("get_comments", response, Comment)

    def get_conversation(self, ticket_id: str) -> list[Message]:
        """Fetch every message source and return the unified timeline.

        Conversations are only fetched when the ticket has no threads.  A
        source that fails with a bad response, decode or transport error is
        logged and treated as empty; authorization and rate-limit failures
        propagate.
        """
        threads = self._fetch_or_empty(self.get_threads, ticket_id)
        conversations = [] if threads else self._fetch_or_empty(self.get_conversations, ticket_id)
        comments = self._fetch_or_empty(self.get_comments, ticket_id)
        return unify(threads, conversations, comments)

    def _fetch_or_empty(self, fetch: Any, ticket_id: str) -> list[Any]:
        try:
            return list(fetch(ticket_id))
        except (UnauthorizedError, RateLimitedError):
            raise
        except DeskApiError as exc:
            logger.warning(
                "conversation_source_unavailable",
                ticket_id=ticket_id,
                operation=exc.operation,
                kind=exc.kind.value,
            )
            return []

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def add_comment(self, ticket_id: str, content: str, is_public: bool = False) -> dict[str, Any]:
        """Add a comment (internal by default) and return the created comment."""
        response = self._request(
            "add_comment",
            "POST",
            f"/tickets/{ticket_id}/comments",
            ok_statuses=(200, 201),
            json_body={"content": content, "isPublic": is_public, "contentType": "html"},
            timeout=WRITE_TIMEOUT,
        )
        return self._decode("add_comment", response)

    def add_draft_comment(
        self,
        ticket_id: str,
        draft: str,
        template_used: str | None = None,
        suggested_tags: Sequence[str] = (),
        tone: str | None = None,
    ) -> dict[str, Any]:
        """Post a draft reply as a formatted internal comment for review."""
        content = format_draft_comment(draft, template_used, suggested_tags, tone)
        return self.add_comment(ticket_id, content, is_public=False)

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def tag_ticket(self, ticket_id: str, tags: Iterable[str], mode: TagMode = TagMode.ADD) -> None:
        """Add, replace or remove tags on a ticket.

        Tags are stripped and de-duplicated before sending.

        Raises:
            ValueError: If *mode* is ``ADD`` or ``REMOVE`` and no tags remain.
        """
        names = _normalize_tags(tags)
        if not names and mode is not TagMode.REPLACE:
            raise ValueError("at least one tag is required")

        method, ok_statuses = {
            TagMode.ADD: ("POST", (200, 201)),
            TagMode.REPLACE: ("PUT", (200,)),
            TagMode.REMOVE: ("DELETE", (200, 204)),
        }[mode]

        self._request(
            f"tag_ticket_{mode.value}",
            method,
            f"/tickets/{ticket_id}/tags",
            ok_statuses=ok_statuses,
            json_body={"tagNames": names},
            timeout=WRITE_TIMEOUT,
        )
        logger.info("ticket_tagged", ticket_id=ticket_id, mode=mode.value, tags=names)

    def get_ticket_tags(self, ticket_id: str) -> list[str]:
        """Return the names of the tags on a ticket."""
        response = self._request(
            "get_ticket_tags", "GET", f"/tickets/{ticket_id}/tags", ok_statuses=(200, 204)
        )
        return _tag_names(self._decode("get_ticket_tags", response))

    def list_tags(self) -> list[str]:
        """Return every tag name known to the organization."""
        response = self._request("list_tags", "GET", "/ticketTags", ok_statuses=(200, 204))
        return _tag_names(self._decode("list_tags", response))

    def search_tags(self, term: str, limit: int = 50) -> list[str]:
        """Return organization tag names matching *term*."""
        response = self._request(
            "search_tags",
            "GET",
            "/ticketTags/search",
            ok_statuses=(200, 204),
            params={"searchStr": term, "limit": limit},
        )
        return _tag_names(self._decode("search_tags", response))


def _tag_names(body: dict[str, Any]) -> list[str]:
    names: list[str] = []
    for item in body.get("data") or []:
        if isinstance(item, str):
            names.append(item)
        elif isinstance(item, dict) and item.get("name"):
            names.append(str(item["name"]))
    return names


def format_draft_comment(
    draft: str,
    template_used: str | None = None,
    suggested_tags: Sequence[str] = (),
    tone: str | None = None,
) -> str:
    """Render a draft reply as an HTML internal comment with a review checklist.

    The draft body is HTML-escaped and newlines become ``<br />``.
    """
    parts = ['<div class="deskmanager-draft">', "<h3>Draft Response</h3>"]

    meta: list[str] = []
    if template_used and template_used != "none":
        meta.append(f"<p><strong>Template:</strong> {html.escape(template_used)}</p>")
    if suggested_tags:
        tag_list = html.escape(", ".join(suggested_tags))
        meta.append(f"<p><strong>Suggested Tags:</strong> {tag_list}</p>")
    if tone and tone != "professional":
        meta.append(f"<p><strong>Tone:</strong> {html.escape(tone.capitalize())}</p>")
    if meta:
        parts.append('<div class="meta">' + "".join(meta) + "</div>")

    parts.append(
        '<div class="review"><p><strong>Review Before Sending:</strong></p><ul>'
        "<li>Personalize the response based on customer context</li>"
        "<li>Verify all technical information and links</li>"
        "<li>Add any additional information specific to this customer</li>"
        "</ul></div>"
    )
    body = html.escape(draft).replace("\n", "<br />\n")
    parts.append(f'<div class="body">{body}</div>')
    parts.append("</div>")

    created = datetime.now(tz=UTC).strftime("%Y-%m-%d %H:%M:%S")
    parts.append(f"<p><small>Draft created: {created}</small></p>")
    return "".join(parts)
