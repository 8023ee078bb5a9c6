"""Zoho Desk API access: client, rate limiting, search and conversation merging."""

from deskmanager.desk.client import DeskClient, TicketFilter, format_draft_comment
from deskmanager.desk.conversation import parse_timestamp, unify
from deskmanager.desk.ratelimit import RateLimiter
from deskmanager.desk.search import (
    TicketRef,
    TicketRefKind,
    filter_tickets,
    infer_search_type,
    parse_ticket_input,
)
from deskmanager.desk.stats import (
    CustomerStats,
    DashboardSummary,
    calculate_customer_stats,
    dashboard_summary,
)

__all__ = [
    "CustomerStats",
    "DashboardSummary",
    "DeskClient",
    "RateLimiter",
    "TicketFilter",
    "TicketRef",
    "TicketRefKind",
    "calculate_customer_stats",
    "dashboard_summary",
    "filter_tickets",
    "format_draft_comment",
    "infer_search_type",
    "parse_ticket_input",
    "parse_timestamp",
    "unify",
]
