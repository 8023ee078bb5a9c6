"""Tests for client-side ticket search and ticket reference parsing."""

from __future__ import annotations

import pytest

from deskmanager.desk.search import (
    TicketRefKind,
    fetch_window,
    filter_tickets,
    infer_search_type,
    looks_like_email,
    matches,
    parse_ticket_input,
)
from deskmanager.domain.models import Ticket
from deskmanager.domain.types import SearchType


@pytest.fixture
def tickets(make_ticket) -> list[Ticket]:
    """Three tickets with distinct emails, numbers and subjects."""
    return [
        Ticket.model_validate(
            make_ticket("1", ticketNumber="1234", subject="Refund please", email="user@example.com")
        ),
        Ticket.model_validate(
            make_ticket(
                "2",
                ticketNumber="77",
                subject="Crash on start",
                description="The app shows error 1234 then closes",
                email="other@example.org",
            )
        ),
        Ticket.model_validate(
            make_ticket("3", ticketNumber="12345", subject="Question", email="USER@EXAMPLE.COM")
        ),
    ]


class TestInference:
    """Auto search picks a strategy from the query's shape."""

    @pytest.mark.parametrize(
        ("query", "expected"),
        [
            ("user@example.com", SearchType.EMAIL),
            ("1234", SearchType.TICKET_NUMBER),
            ("#1234", SearchType.TICKET_NUMBER),
            ("refund", SearchType.CONTENT),
            ("user@", SearchType.CONTENT),
        ],
    )
    def test_infer_search_type(self, query: str, expected: SearchType) -> None:
        assert infer_search_type(query) is expected

    def test_looks_like_email(self) -> None:
        assert looks_like_email(" a@b.co ")
        assert not looks_like_email("a@b")
        assert not looks_like_email("a b@c.de")

    @pytest.mark.parametrize(
        ("query", "explicit"),
        [("user@example.com", SearchType.EMAIL), ("1234", SearchType.TICKET_NUMBER)],
    )
    def test_auto_matches_explicit_type(self, tickets, query: str, explicit: SearchType) -> None:
        auto = filter_tickets(tickets, query, SearchType.AUTO, 50)
        direct = filter_tickets(tickets, query, explicit, 50)

        assert [t.id for t in auto] == [t.id for t in direct]


class TestMatching:
    """Per-type match rules."""

    def test_email_is_case_insensitive_substring(self, tickets) -> None:
        found = filter_tickets(tickets, "user@example.com", SearchType.EMAIL, 50)

        assert [t.id for t in found] == ["1", "3"]

    def test_ticket_number_is_exact(self, tickets) -> None:
        found = filter_tickets(tickets, "#1234", SearchType.TICKET_NUMBER, 50)

        assert [t.id for t in found] == ["1"]

    def test_subject_only(self, tickets) -> None:
        assert [t.id for t in filter_tickets(tickets, "crash", SearchType.SUBJECT, 50)] == ["2"]
        assert filter_tickets(tickets, "closes", SearchType.SUBJECT, 50) == []

    def test_content_searches_description_and_subject(self, tickets) -> None:
        found = filter_tickets(tickets, "closes", SearchType.CONTENT, 50)

        assert [t.id for t in found] == ["2"]

    def test_auto_content_also_searches_email(self, tickets) -> None:
        assert matches(tickets[1], "example.org", SearchType.AUTO)
        assert not matches(tickets[1], "example.org", SearchType.CONTENT)

    def test_limit_caps_results_in_input_order(self, tickets) -> None:
        found = filter_tickets(tickets, "e", SearchType.CONTENT, 2)

        assert [t.id for t in found] == ["1", "2"]

    def test_missing_fields_never_match(self) -> None:
        ticket = Ticket(id="9")

        assert not matches(ticket, "x@y.com", SearchType.EMAIL)
        assert not matches(ticket, "42", SearchType.TICKET_NUMBER)


class TestFetchWindow:
    """Fetch four times the limit, clamped to 50..100."""

    @pytest.mark.parametrize(("limit", "window"), [(1, 50), (20, 80), (25, 100), (60, 100)])
    def test_fetch_window(self, limit: int, window: int) -> None:
        assert fetch_window(limit) == window


class TestParseTicketInput:
    """Free-form references typed by an agent."""

    @pytest.mark.parametrize(
        ("text", "kind", "value"),
        [
            ("123456789012345678", TicketRefKind.ID, "123456789012345678"),
            ("#4321", TicketRefKind.NUMBER, "4321"),
            ("4321", TicketRefKind.NUMBER, "4321"),
            (
                "https://desk.zoho.com/agent/acme/all/tickets/details/123456789012345678",
                TicketRefKind.ID,
                "123456789012345678",
            ),
            ("Re: Your request [#555] was updated", TicketRefKind.NUMBER, "555"),
            ("jane@example.com", TicketRefKind.EMAIL, "jane@example.com"),
            ("  cannot export csv ", TicketRefKind.SEARCH, "cannot export csv"),
        ],
    )
    def test_parse(self, text: str, kind: TicketRefKind, value: str) -> None:
        ref = parse_ticket_input(text)

        assert ref.kind is kind
        assert ref.value == value
