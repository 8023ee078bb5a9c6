"""Automatic ticket tagging from templates, content and ticket metadata."""

from __future__ import annotations

import re
import time
from collections.abc import Callable, Iterable

import structlog

from deskmanager.analysis.classifier import extract_tags
from deskmanager.desk.client import DeskClient
from deskmanager.desk.conversation import parse_timestamp
from deskmanager.domain.models import Ticket
from deskmanager.domain.types import TagMode, TagScope

logger = structlog.get_logger()

PERSONAL_EMAIL_DOMAINS = frozenset({"gmail.com", "yahoo.com", "hotmail.com", "outlook.com"})
RECENT_SECONDS = 3600
OLD_TICKET_SECONDS = 7 * 86400


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def content_tags(ticket: Ticket) -> list[str]:
    """Priority, status and keyword tags derived from the ticket's text."""
    tags: list[str] = []
    priority = (ticket.priority or "").lower()
    if priority in ("high", "urgent"):
        tags.append("urgent")

    status = (ticket.status or "").lower()
    if status == "open":
        tags.append("new")
    elif status == "in progress":
        tags.append("in-progress")

    tags.extend(extract_tags(f"{ticket.subject} {ticket.description or ''}"))
    return tags


def metadata_tags(ticket: Ticket, now: float) -> list[str]:
    """Tags derived from priority, status, department, contact and age."""
    tags: list[str] = []
    priority = (ticket.priority or "").lower()
    if priority in ("high", "urgent"):
        tags.append("high-priority")
    elif priority == "low":
        tags.append("low-priority")

    status = (ticket.status or "").lower()
    if status == "open":
        tags.append("new-ticket")
    elif status in ("in progress", "pending"):
        tags.append("in-progress")
    elif status == "closed":
        tags.append("resolved")

    department = ticket.department
    if isinstance(department, dict):
        department = department.get("name")
    if isinstance(department, str) and _slug(department):
        tags.append(f"dept-{_slug(department)}")

    email = ticket.contact.email if ticket.contact else None
    if email and "@" in email:
        domain = email.rsplit("@", 1)[1].lower()
        tags.append("personal-email" if domain in PERSONAL_EMAIL_DOMAINS else "business-email")

    created = parse_timestamp(ticket.created_time)
    if created is not None:
        age = now - created.timestamp()
        if age < RECENT_SECONDS:
            tags.append("recent")
        elif age > OLD_TICKET_SECONDS:
            tags.append("old-ticket")
    return tags


def _dedupe(tags: Iterable[str]) -> list[str]:
    result: list[str] = []
    for tag in tags:
        tag = (tag or "").strip()
        if tag and tag not in result:
            result.append(tag)
    return result


def suggest_ticket_tags(
    ticket: Ticket,
    scope: TagScope = TagScope.TEMPLATE_ONLY,
    template_tags: Iterable[str] = (),
    custom_tags: Iterable[str] = (),
    now: float | None = None,
) -> list[str]:
    """Suggest tags for a ticket.

    Args:
        ticket: The ticket to analyse.
        scope: How much analysis to apply beyond the template tags.
        template_tags: Category and auto-tags of the response template used.
        custom_tags: Extra tags supplied by the agent.
        now: Current epoch seconds, for the age tags.

    Returns:
        De-duplicated tags in first-seen order: template tags, then content
        tags, then metadata tags, then custom tags.
    """
    tags = list(template_tags)
    if scope in (TagScope.CONTENT_ANALYSIS, TagScope.FULL_ANALYSIS):
        tags.extend(content_tags(ticket))
    if scope is TagScope.FULL_ANALYSIS:
        tags.extend(metadata_tags(ticket, now if now is not None else time.time()))
    tags.extend(custom_tags)
    return _dedupe(tags)


def auto_tag_ticket(
    client: DeskClient,
    ticket_id: str,
    scope: TagScope = TagScope.TEMPLATE_ONLY,
    template_tags: Iterable[str] = (),
    custom_tags: Iterable[str] = (),
    clock: Callable[[], float] = time.time,
) -> list[str]:
    """Fetch a ticket, suggest tags for it and add them.

    Returns:
        The tags applied; empty when nothing was suggested.

    Raises:
        DeskApiError: If fetching or tagging the ticket fails.
    """
    ticket = client.get_ticket(ticket_id)
    tags = suggest_ticket_tags(ticket, scope, template_tags, custom_tags, now=clock())
    if tags:
        client.tag_ticket(ticket_id, tags, TagMode.ADD)
    logger.info("ticket_auto_tagged", ticket_id=ticket_id, scope=scope.value, tags=tags)
    return tags
