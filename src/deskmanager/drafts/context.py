"""Turn a ticket and its unified conversation into draft context."""

from __future__ import annotations

from collections.abc import Sequence

from deskmanager.analysis.classifier import detect_sentiment, extract_issues
from deskmanager.domain.models import Message, Ticket
from deskmanager.domain.types import AuthorType, Sentiment, Tone
from deskmanager.drafts.models import ConversationEntry, DraftContext


def follow_up_suggestions(
    sentiment: Sentiment,
    priority: str,
    conversation_count: int,
    key_issues: Sequence[str],
) -> list[str]:
    """Next-step hints shown to the agent alongside a draft."""
    suggestions: list[str] = []
    if sentiment is Sentiment.NEGATIVE:
        suggestions.append("Consider offering a goodwill gesture or escalation to management")
        suggestions.append("Follow up within 24 hours to ensure satisfaction")
    if priority == "High":
        suggestions.append("Prioritize immediate response and resolution")
        suggestions.append("Consider scheduling a call if issue persists")
    if conversation_count > 5:
        suggestions.append("Consider escalating to senior support or scheduling a call")
        suggestions.append("Review entire conversation history for missed details")
    if "refund request" in key_issues:
        suggestions.append("Review refund policy and process request promptly")
    if "bug report" in key_issues:
        suggestions.append("File a bug report with development team")
        suggestions.append("Provide workaround if available")
    return suggestions


def build_draft_context(
    ticket: Ticket,
    messages: Sequence[Message],
    *,
    include_full_conversation: bool = True,
    conversation_limit: int = 20,
    knowledge_base: str = "",
    response_style: Tone = Tone.PROFESSIONAL,
) -> DraftContext:
    """Build the prompt context for drafting a reply to *ticket*.

    Sentiment and key issues are derived from the customer messages kept.  When
    the full conversation is included, only the last *conversation_limit*
    messages are kept.

    Args:
        ticket: The ticket being answered.
        messages: Its unified conversation, oldest first.
        include_full_conversation: Present the whole conversation, rather
            than just the latest customer message, to the model.
        conversation_limit: Maximum number of messages presented.
        knowledge_base: Company knowledge base text for the system prompt.
        response_style: Default tone when the caller does not pick one.

    Returns:
        The populated ``DraftContext``.
    """
    conversation_count = len(messages)
    if include_full_conversation and conversation_limit > 0 and len(messages) > conversation_limit:
        messages = messages[-conversation_limit:]

    entries: list[ConversationEntry] = []
    customer_messages: list[str] = []
    agent_messages: list[str] = []
    for message in messages:
        is_customer = message.author_type is AuthorType.CUSTOMER
        entries.append(
            ConversationEntry(
                author_label="CUSTOMER" if is_customer else "AGENT",
                author_name=message.author_name,
                content=message.content,
                created_at=message.created_at,
            )
        )
        if is_customer:
            customer_messages.append(message.content)
        else:
            agent_messages.append(message.content)

    customer_text = " ".join(customer_messages)
    sentiment = detect_sentiment(customer_text)
    key_issues = extract_issues(customer_text)
    priority = ticket.priority or "Normal"

    return DraftContext(
        ticket_id=ticket.id,
        ticket_subject=ticket.subject,
        customer_name=ticket.customer_name,
        priority=priority,
        category=ticket.category or "General",
        description=ticket.description or "",
        conversation_count=conversation_count,
        conversation=entries,
        customer_messages=customer_messages,
        agent_messages=agent_messages,
        last_customer_message=customer_messages[-1] if customer_messages else "",
        sentiment=sentiment,
        key_issues=key_issues,
        suggestions=follow_up_suggestions(sentiment, priority, conversation_count, key_issues),
        knowledge_base=knowledge_base,
        response_style=response_style,
        include_full_conversation=include_full_conversation,
    )
