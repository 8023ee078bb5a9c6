"""Domain types, models, and errors for the Desk ticket manager."""

from deskmanager.domain.errors import (
    ApiErrorKind,
    AuthError,
    AuthErrorKind,
    BadResponseError,
    DecodeError,
    DeskApiError,
    DeskManagerError,
    DraftNotFoundError,
    GenerationError,
    GenErrorKind,
    RateLimitedError,
    TicketNotFoundError,
    TransportError,
    UnauthorizedError,
)
from deskmanager.domain.models import (
    Author,
    Comment,
    Contact,
    Conversation,
    Message,
    Thread,
    Ticket,
    TicketPage,
)
from deskmanager.domain.types import (
    SOURCE_PRIORITY,
    AIMode,
    AIProvider,
    AuthorType,
    DraftStatus,
    MessageSource,
    ResponseType,
    SearchType,
    Sentiment,
    TagMode,
    TagScope,
    Tone,
    Visibility,
)

__all__ = [
    "SOURCE_PRIORITY",
    "AIMode",
    "AIProvider",
    "ApiErrorKind",
    "AuthError",
    "AuthErrorKind",
    "Author",
    "AuthorType",
    "BadResponseError",
    "Comment",
    "Contact",
    "Conversation",
    "DecodeError",
    "DeskApiError",
    "DeskManagerError",
    "DraftNotFoundError",
    "DraftStatus",
    "GenErrorKind",
    "GenerationError",
    "Message",
    "MessageSource",
    "RateLimitedError",
    "ResponseType",
    "SearchType",
    "Sentiment",
    "TagMode",
    "TagScope",
    "Thread",
    "Ticket",
    "TicketNotFoundError",
    "TicketPage",
    "Tone",
    "TransportError",
    "UnauthorizedError",
    "Visibility",
]
