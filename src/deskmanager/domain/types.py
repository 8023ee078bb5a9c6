"""Domain enumerations for the Desk ticket manager."""

from enum import StrEnum


class MessageSource(StrEnum):
    """Which backend API a unified message was built from."""

    THREAD = "thread"
    CONVERSATION = "conversation"
    COMMENT = "comment"


class AuthorType(StrEnum):
    """Who wrote a message, as seen by support staff."""

    CUSTOMER = "customer"
    AGENT = "agent"


class Visibility(StrEnum):
    """Whether a message is visible to the customer."""

    PUBLIC = "public"
    INTERNAL = "internal"


class DraftStatus(StrEnum):
    """Lifecycle status of a locally stored draft reply."""

    DRAFT = "draft"
    SENT = "sent"


class TagMode(StrEnum):
    """How a tag list is applied to a ticket."""

    ADD = "add"
    REPLACE = "replace"
    REMOVE = "remove"


class SearchType(StrEnum):
    """Client-side ticket search strategies."""

    EMAIL = "email"
    SUBJECT = "subject"
    CONTENT = "content"
    TICKET_NUMBER = "ticket_number"
    AUTO = "auto"


class Sentiment(StrEnum):
    """Keyword-derived customer sentiment."""

    NEGATIVE = "negative"
    POSITIVE = "positive"
    NEUTRAL = "neutral"


class TagScope(StrEnum):
    """How much analysis feeds automatic ticket tagging."""

    TEMPLATE_ONLY = "template_only"
    CONTENT_ANALYSIS = "content_analysis"
    FULL_ANALYSIS = "full_analysis"


class ResponseType(StrEnum):
    """Kind of reply a draft should be."""

    SOLUTION = "solution"
    FOLLOW_UP = "follow_up"
    CLARIFICATION = "clarification"
    ESCALATION = "escalation"
    CLOSING = "closing"


class Tone(StrEnum):
    """Writing tone requested for a draft."""

    PROFESSIONAL = "professional"
    FRIENDLY = "friendly"
    FORMAL = "formal"
    TECHNICAL = "technical"
    EMPATHETIC = "empathetic"


class AIProvider(StrEnum):
    """Direct LLM providers that can generate drafts."""

    CLAUDE = "claude"
    OPENAI = "openai"
    GEMINI = "gemini"


class AIMode(StrEnum):
    """Which draft generation backend family is active."""

    API = "api"
    BROWSER = "browser"
    SUBSCRIPTION = "subscription"


# Order used to break timestamp ties in the unified conversation
SOURCE_PRIORITY: dict[MessageSource, int] = {
    MessageSource.THREAD: 0,
    MessageSource.CONVERSATION: 1,
    MessageSource.COMMENT: 2,
}
