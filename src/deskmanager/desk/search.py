"""Client-side ticket search and free-form ticket reference parsing.

Desk has no general search endpoint, so searching means fetching a window
of recent tickets and filtering them in-process.  ``Auto`` search infers
the match strategy from the shape of the query.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from deskmanager.domain.models import Ticket
from deskmanager.domain.types import SearchType

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
TICKET_NUMBER_PATTERN = re.compile(r"^#?(\d+)$")
TICKET_ID_PATTERN = re.compile(r"^\d{18}$")
DESK_URL_PATTERN = re.compile(r"desk\.zoho\.com.*?(\d{18})")
SUBJECT_NUMBER_PATTERN = re.compile(r"\[#(\d+)\]")


class TicketRefKind(StrEnum):
    """What a free-form ticket reference resolved to."""

    ID = "id"
    NUMBER = "number"
    EMAIL = "email"
    SEARCH = "search"


class TicketRef(BaseModel):
    """A parsed ticket reference."""

    model_config = ConfigDict(frozen=True)

    kind: TicketRefKind
    value: str


def looks_like_email(text: str) -> bool:
    """Return ``True`` if *text* is shaped like an email address."""
    return bool(EMAIL_PATTERN.match(text.strip()))


def infer_search_type(query: str) -> SearchType:
    """Pick the concrete search strategy for an ``Auto`` query.

    Email-shaped queries search by email, ``1234`` or ``#1234`` by ticket
    number, and anything else by content.
    """
    if looks_like_email(query):
        return SearchType.EMAIL
    if TICKET_NUMBER_PATTERN.match(query.strip()):
        return SearchType.TICKET_NUMBER
    return SearchType.CONTENT


def fetch_window(limit: int) -> int:
    """Number of recent tickets to fetch to find *limit* matches (50 to 100)."""
    return min(max(limit * 4, 50), 100)


def _contains(haystack: str | None, needle: str) -> bool:
    return needle.lower() in (haystack or "").lower()


def _same_ticket_number(ticket: Ticket, query: str) -> bool:
    wanted = query.strip().lstrip("#")
    actual = (ticket.ticket_number or "").strip()
    if wanted.isdigit() and actual.isdigit():
        return int(wanted) == int(actual)
    return actual == wanted


def matches(ticket: Ticket, query: str, search_type: SearchType) -> bool:
    """Return ``True`` if *ticket* matches *query* under *search_type*."""
    if search_type is SearchType.AUTO:
        search_type = infer_search_type(query)
        if search_type is SearchType.CONTENT:
            return (
                _contains(ticket.subject, query)
                or _contains(ticket.description, query)
                or _contains(ticket.email, query)
            )

    if search_type is SearchType.EMAIL:
        return _contains(ticket.email, query)
    if search_type is SearchType.SUBJECT:
        return _contains(ticket.subject, query)
    if search_type is SearchType.TICKET_NUMBER:
        return _same_ticket_number(ticket, query)
    # CONTENT
    return _contains(ticket.description, query) or _contains(ticket.subject, query)


def filter_tickets(
    tickets: Iterable[Ticket],
    query: str,
    search_type: SearchType,
    limit: int,
) -> list[Ticket]:
    """Return up to *limit* tickets matching *query*, in input order."""
    matched: list[Ticket] = []
    for ticket in tickets:
        if matches(ticket, query, search_type):
            matched.append(ticket)
            if len(matched) >= limit:
                break
    return matched


def parse_ticket_input(text: str) -> TicketRef:
    """Resolve a free-form ticket reference typed by a support agent.

    Recognizes, in order: an 18-digit ticket ID, a ticket number (``1234``
    or ``#1234``), a Desk URL containing a ticket ID, an email subject tag
    (``[#1234]``), an email address, and finally free search text.
    """
    text = text.strip()

    if TICKET_ID_PATTERN.match(text):
        return TicketRef(kind=TicketRefKind.ID, value=text)

    number = TICKET_NUMBER_PATTERN.match(text)
    if number:
        return TicketRef(kind=TicketRefKind.NUMBER, value=number.group(1))

    url = DESK_URL_PATTERN.search(text)
    if url:
        return TicketRef(kind=TicketRefKind.ID, value=url.group(1))

    subject = SUBJECT_NUMBER_PATTERN.search(text)
    if subject:
        return TicketRef(kind=TicketRefKind.NUMBER, value=subject.group(1))

    if looks_like_email(text):
        return TicketRef(kind=TicketRefKind.EMAIL, value=text)

    return TicketRef(kind=TicketRefKind.SEARCH, value=text)
