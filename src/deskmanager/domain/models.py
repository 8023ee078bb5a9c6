"""Pydantic v2 models for Desk API payloads and the unified message timeline.

Backend payloads are camelCase and loosely shaped, so every external entity
is an explicit optional-field model with aliases.  Unknown fields are kept
(``extra="allow"``) so the raw payload can still be passed through to
callers that need it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from deskmanager.domain.types import AuthorType, MessageSource, Visibility


class _Payload(BaseModel):
    """Common configuration for backend payload models."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class Author(_Payload):
    """Author block embedded in threads, conversations and comments."""

    type: str | None = None
    name: str | None = None
    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")
    email: str | None = None

    @property
    def display_name(self) -> str:
        """Best available human-readable name."""
        if self.name:
            return self.name
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or "Unknown"


class Contact(_Payload):
    """Customer contact attached to a ticket."""

    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")
    email: str | None = None
    phone: str | None = None


class Ticket(_Payload):
    """A Desk ticket.  Only ``status``, replies, comments and tags are ever written."""

    id: str
    ticket_number: str | None = Field(default=None, alias="ticketNumber")
    subject: str = ""
    description: str | None = None
    email: str | None = None
    status: str | None = None
    priority: str | None = None
    category: str | None = None
    channel: str | None = None
    department_id: str | None = Field(default=None, alias="departmentId")
    department: Any = None
    product_id: str | None = Field(default=None, alias="productId")
    product: Any = None
    created_time: str | None = Field(default=None, alias="createdTime")
    modified_time: str | None = Field(default=None, alias="modifiedTime")
    closed_time: str | None = Field(default=None, alias="closedTime")
    due_date: str | None = Field(default=None, alias="dueDate")
    contact: Contact | None = None

    @field_validator("id", "ticket_number", mode="before")
    @classmethod
    def coerce_numeric_ids(cls, v: object) -> object:
        """Desk sometimes returns identifiers as JSON numbers."""
        if isinstance(v, int):
            return str(v)
        return v

    @field_validator("subject", mode="before")
    @classmethod
    def null_subject(cls, v: object) -> object:
        """Tickets created through some channels carry ``"subject": null``."""
        return "" if v is None else v

    @property
    def customer_name(self) -> str:
        """First name of the contact, or a generic fallback."""
        if self.contact and self.contact.first_name:
            return self.contact.first_name
        return "Customer"

    @property
    def customer_email(self) -> str:
        """Ticket email, falling back to the contact's email."""
        if self.email:
            return self.email
        if self.contact and self.contact.email:
            return self.contact.email
        return ""


class TicketPage(BaseModel):
    """A list of tickets as returned by list and search operations."""

    data: list[Ticket] = Field(default_factory=list)

    @property
    def count(self) -> int:
        """Number of tickets on this page."""
        return len(self.data)


class Thread(_Payload):
    """A single message from the ``/threads`` API."""

    id: str | None = None
    content: str | None = None
    plain_text: str | None = Field(default=None, alias="plainText")
    rich_text: str | None = Field(default=None, alias="richText")
    summary: str | None = None
    created_time: str | None = Field(default=None, alias="createdTime")
    posted_time: str | None = Field(default=None, alias="postedTime")
    author: Author | None = None
    visibility: str | None = None
    direction: str | None = None


class Conversation(Thread):
    """A ``/conversations`` entry, possibly wrapping nested reply threads."""

    type: str | None = None
    threads: list[Thread] = Field(default_factory=list)


class Comment(_Payload):
    """An internal note from the ``/comments`` API."""

    id: str | None = None
    content: str | None = None
    comment: str | None = None
    commented_time: str | None = Field(default=None, alias="commentedTime")
    created_time: str | None = Field(default=None, alias="createdTime")
    commenter: Author | None = None
    author: Author | None = None
    is_public: bool | None = Field(default=None, alias="isPublic")


class Message(BaseModel):
    """One entry of the unified, chronologically ordered conversation.

    Derived on every fetch and never persisted.  ``created_at`` is ``None``
    when the source entry carried no parseable timestamp.
    """

    model_config = ConfigDict(frozen=True)

    source: MessageSource
    author_type: AuthorType
    author_name: str
    content: str
    created_at: datetime | None = None
    visibility: Visibility = Visibility.PUBLIC
    message_id: str | None = None
