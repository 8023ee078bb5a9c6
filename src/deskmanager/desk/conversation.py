"""Merge threads, conversations and comments into one ordered timeline.

Desk exposes message content through three differently shaped APIs.  The
unified timeline takes threads as the base list when there are any, falls
back to conversations (flattening their nested reply threads) otherwise,
and always appends comments as supplemental internal notes.  The combined
list is sorted by timestamp; ties keep source priority (thread,
conversation, comment) and then fetch order.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime

from deskmanager.domain.models import Author, Comment, Conversation, Message, Thread
from deskmanager.domain.types import (
    SOURCE_PRIORITY,
    AuthorType,
    MessageSource,
    Visibility,
)

# Messages without a resolvable timestamp sort as if sent at the epoch
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

CUSTOMER_AUTHOR_TYPE = "END_USER"
_INTERNAL_VISIBILITIES = {"private", "internal"}


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a Desk ISO 8601 timestamp into an aware UTC datetime.

    Accepts the trailing ``Z`` form Desk emits and naive values (treated as
    UTC).  Returns ``None`` for empty or unparseable input rather than
    raising.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _first_non_empty(*values: str | None) -> str | None:
    for value in values:
        if value:
            return value
    return None


def _author_type(author: Author | None) -> AuthorType:
    if author is not None and author.type == CUSTOMER_AUTHOR_TYPE:
        return AuthorType.CUSTOMER
    return AuthorType.AGENT


def _author_name(author: Author | None) -> str:
    return author.display_name if author is not None else "Unknown"


def _thread_message(thread: Thread, source: MessageSource) -> Message:
    visibility = (
        Visibility.INTERNAL
        if (thread.visibility or "").lower() in _INTERNAL_VISIBILITIES
        else Visibility.PUBLIC
    )
    return Message(
        source=source,
        author_type=_author_type(thread.author),
        author_name=_author_name(thread.author),
        content=_first_non_empty(
            thread.content, thread.plain_text, thread.rich_text, thread.summary
        ) or "",
        created_at=parse_timestamp(_first_non_empty(thread.created_time, thread.posted_time)),
        visibility=visibility,
        message_id=thread.id,
    )


def _comment_message(comment: Comment) -> Message:
    author = comment.commenter or comment.author
    return Message(
        source=MessageSource.COMMENT,
        author_type=_author_type(author),
        author_name=_author_name(author),
        content=_first_non_empty(comment.content, comment.comment) or "",
        created_at=parse_timestamp(_first_non_empty(comment.commented_time, comment.created_time)),
        visibility=Visibility.PUBLIC if comment.is_public else Visibility.INTERNAL,
        message_id=comment.id,
    )


def unify(
    threads: Sequence[Thread],
    conversations: Sequence[Conversation],
    comments: Sequence[Comment],
) -> list[Message]:
    """Build the unified, chronologically ordered conversation.

    Args:
        threads: Entries from the threads API (preferred base source).
        conversations: Entries from the conversations API, used as the base
            only when *threads* is empty.  Nested reply threads are
            flattened alongside their parent.
        comments: Internal notes, always merged in.

    Returns:
        Messages sorted ascending by timestamp.  Entries without a
        timestamp sort first; none are dropped.
    """
    messages: list[Message] = []

    if threads:
        messages.extend(_thread_message(t, MessageSource.THREAD) for t in threads)
    elif conversations:
        for conversation in conversations:
            messages.append(_thread_message(conversation, MessageSource.CONVERSATION))
            messages.extend(
                _thread_message(reply, MessageSource.CONVERSATION)
                for reply in conversation.threads
            )

    messages.extend(_comment_message(c) for c in comments)

    indexed = list(enumerate(messages))
    indexed.sort(
        key=lambda pair: (
            pair[1].created_at or EPOCH,
            SOURCE_PRIORITY[pair[1].source],
            pair[0],
        )
    )
    return [message for _, message in indexed]
