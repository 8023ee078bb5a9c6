"""Customer history statistics and the open-ticket dashboard summary."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, Field

from deskmanager.desk.client import DeskClient, TicketFilter
from deskmanager.desk.conversation import parse_timestamp
from deskmanager.domain.models import Ticket
from deskmanager.state.store import KeyValueStore

logger = structlog.get_logger()

DASHBOARD_CACHE_KEY = "dashboard_summary"
OPEN_STATUSES = frozenset({"open", "on hold", "escalated"})
PRIORITY_ORDER = {"High": 1, "Medium": 2, "Low": 3, "Normal": 3}
ATTENTION_LIMIT = 5


class CustomerStats(BaseModel):
    """Aggregate figures over one customer's ticket history."""

    total_tickets: int = 0
    open_tickets: int = 0
    closed_tickets: int = 0
    average_resolution_hours: float = 0.0
    categories: dict[str, int] = Field(default_factory=dict)
    products: dict[str, int] = Field(default_factory=dict)
    priorities: dict[str, int] = Field(default_factory=dict)
    first_ticket_date: str | None = None
    last_ticket_date: str | None = None
    most_recent_interaction: str | None = None


class AttentionTicket(BaseModel):
    """An open ticket flagged on the dashboard."""

    id: str
    ticket_number: str | None = None
    subject: str = ""
    priority: str = "Normal"
    status: str | None = None
    contact_name: str = "Unknown"
    modified_time: str | None = None
    is_overdue: bool = False


class DashboardSummary(BaseModel):
    """Counts and the short attention list shown on the dashboard."""

    open_count: int = 0
    urgent_count: int = 0
    pending_reply_count: int = 0
    overdue_count: int = 0
    attention: list[AttentionTicket] = Field(default_factory=list)


def _named(value: object, name_field: str, fallback: str) -> str:
    if isinstance(value, dict) and value.get(name_field):
        return str(value[name_field])
    return fallback


def calculate_customer_stats(tickets: Iterable[Ticket]) -> CustomerStats:
    """Summarize a customer's tickets.

    Args:
        tickets: The customer's tickets, in any order.

    Returns:
        Totals, open vs closed counts, per-department/product/priority
        counts, first and last ticket dates, the average resolution time
        of closed tickets in hours (one decimal), and the most recent
        modification time.
    """
    stats = CustomerStats()
    resolution_hours: list[float] = []
    first: datetime | None = None
    last: datetime | None = None
    recent: datetime | None = None

    for ticket in tickets:
        stats.total_tickets += 1
        status = (ticket.status or "").lower()
        if status in OPEN_STATUSES:
            stats.open_tickets += 1
        elif status == "closed":
            stats.closed_tickets += 1

        if ticket.department_id:
            dept = _named(ticket.department, "name", ticket.department_id)
            stats.categories[dept] = stats.categories.get(dept, 0) + 1

        if ticket.product_id:
            product = _named(ticket.product, "productName", ticket.product_id)
            stats.products[product] = stats.products.get(product, 0) + 1

        priority = ticket.priority or "Medium"
        stats.priorities[priority] = stats.priorities.get(priority, 0) + 1

        created = parse_timestamp(ticket.created_time)
        if created is not None:
            if first is None or created < first:
                first = created
                stats.first_ticket_date = ticket.created_time
            if last is None or created > last:
                last = created
                stats.last_ticket_date = ticket.created_time

        closed = parse_timestamp(ticket.closed_time)
        if status == "closed" and created is not None and closed is not None:
            resolution_hours.append((closed - created).total_seconds() / 3600)

        modified = parse_timestamp(ticket.modified_time)
        if modified is not None and (recent is None or modified > recent):
            recent = modified
            stats.most_recent_interaction = ticket.modified_time

    if resolution_hours:
        stats.average_resolution_hours = round(sum(resolution_hours) / len(resolution_hours), 1)
    return stats


def summarize_open_tickets(tickets: Iterable[Ticket], now: float) -> DashboardSummary:
    """Build the dashboard summary from a list of open tickets.

    A ticket needs attention when it is High priority, overdue, or was
    modified in the last four hours.  The attention list is ordered overdue
    first, then by priority, then most recently modified, and capped at
    five entries.
    """
    summary = DashboardSummary()
    attention: list[tuple[AttentionTicket, float]] = []

    for ticket in tickets:
        summary.open_count += 1
        if ticket.priority == "High":
            summary.urgent_count += 1

        due = parse_timestamp(ticket.due_date)
        overdue = due is not None and due.timestamp() < now
        if overdue:
            summary.overdue_count += 1

        modified = parse_timestamp(ticket.modified_time)
        modified_ts = modified.timestamp() if modified is not None else 0.0
        hours_since_modified = (now - modified_ts) / 3600
        if hours_since_modified < 24:
            summary.pending_reply_count += 1

        entry = AttentionTicket(
            id=ticket.id,
            ticket_number=ticket.ticket_number,
            subject=ticket.subject,
            priority=ticket.priority or "Normal",
            status=ticket.status,
            contact_name=ticket.contact.first_name if ticket.contact and ticket.contact.first_name else "Unknown",
            modified_time=ticket.modified_time,
            is_overdue=overdue,
        )
        if entry.priority == "High" or overdue or hours_since_modified < 4:
            attention.append((entry, modified_ts))

    attention.sort(
        key=lambda pair: (
            not pair[0].is_overdue,
            PRIORITY_ORDER.get(pair[0].priority, 3),
            -pair[1],
        )
    )
    summary.attention = [entry for entry, _ in attention[:ATTENTION_LIMIT]]
    return summary


def dashboard_summary(
    client: DeskClient,
    cache: KeyValueStore,
    *,
    ttl: int = 60,
    force: bool = False,
    clock: Callable[[], float] = time.time,
) -> DashboardSummary:
    """Return the open-ticket dashboard summary, cached for *ttl* seconds.

    Raises:
        DeskApiError: If the open tickets cannot be listed.
    """
    if not force:
        cached = cache.get(DASHBOARD_CACHE_KEY)
        if cached is not None:
            return DashboardSummary.model_validate(cached)

    page = client.list_tickets(
        TicketFilter(status="Open", limit=100, sort_by="modifiedTime"), force=force
    )
    summary = summarize_open_tickets(page.data, clock())
    cache.set(DASHBOARD_CACHE_KEY, summary.model_dump(mode="json"), ttl=ttl)
    logger.info(
        "dashboard_summary_built",
        open_count=summary.open_count,
        urgent_count=summary.urgent_count,
        overdue_count=summary.overdue_count,
    )
    return summary


def time_ago(value: str | None, now: float | None = None) -> str:
    """Human readable age of a Desk timestamp ("5 minutes ago")."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return "unknown"
    current = now if now is not None else datetime.now(tz=UTC).timestamp()
    diff = int(current - parsed.timestamp())
    if diff < 60:
        return "just now"
    for seconds, unit in ((86400, "day"), (3600, "hour"), (60, "minute")):
        if diff >= seconds:
            count = diff // seconds
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return "just now"
