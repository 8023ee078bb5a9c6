"""Pydantic models for draft replies and their generation.

These models are used for:
- Locally stored drafts and their metadata
- Options passed to a draft generator
- The normalized result every generator returns
- The ticket context a prompt is built from
"""

from datetime import datetime

from pydantic import BaseModel, Field

from deskmanager.domain.types import DraftStatus, ResponseType, Sentiment, Tone


class DraftOptions(BaseModel):
    """What kind of reply to draft and in which tone.

    ``tone=None`` falls back to the configured response style.
    """

    response_type: ResponseType = ResponseType.SOLUTION
    tone: Tone | None = None


class GenerationResult(BaseModel):
    """Normalized output of a draft generator."""

    text: str = Field(description="Generated reply body, or the prompt in prompt-only mode")
    provider: str = Field(description="Name of the generator that produced the text")
    model: str | None = Field(default=None, description="Model ID used, if any")
    input_tokens: int = 0
    output_tokens: int = 0
    prompt_only: bool = Field(
        default=False,
        description="True when text is a prompt to paste into a browser AI, not a reply",
    )
    credits_remaining: int | None = None


class ConversationEntry(BaseModel):
    """One message as it is presented to the model."""

    author_label: str
    author_name: str
    content: str
    created_at: datetime | None = None


class DraftContext(BaseModel):
    """Everything a prompt needs to know about a ticket."""

    ticket_id: str
    ticket_subject: str = ""
    customer_name: str = "Customer"
    priority: str = "Normal"
    category: str = "General"
    description: str = ""
    conversation_count: int = 0
    conversation: list[ConversationEntry] = Field(default_factory=list)
    customer_messages: list[str] = Field(default_factory=list)
    agent_messages: list[str] = Field(default_factory=list)
    last_customer_message: str = ""
    sentiment: Sentiment = Sentiment.NEUTRAL
    key_issues: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    knowledge_base: str = ""
    response_style: Tone = Tone.PROFESSIONAL
    include_full_conversation: bool = True


class DraftMeta(BaseModel):
    """Metadata stored beside a draft."""

    generated_at: datetime
    generated_by: str
    status: DraftStatus = DraftStatus.DRAFT


class Draft(BaseModel):
    """A locally stored, not yet sent reply for one ticket."""

    ticket_id: str
    content: str
    generated_at: datetime | None = None
    generated_by: str = "unknown"
    status: DraftStatus = DraftStatus.DRAFT
