"""Local draft persistence and the send-draft flow.

At most one live draft exists per ticket.  Saving again overwrites the
previous draft (last write wins); sending or clearing deletes it.  Drafts
expire after seven days by default.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from deskmanager.desk.client import DeskClient
from deskmanager.domain.errors import DraftNotFoundError
from deskmanager.domain.types import DraftStatus
from deskmanager.drafts.models import Draft, DraftMeta
from deskmanager.state.store import KeyValueStore

logger = structlog.get_logger()

DRAFT_PREFIX = "draft_"
DRAFT_META_PREFIX = "draft_meta_"
DEFAULT_TTL_DAYS = 7


class DraftStore:
    """Store drafts under ``draft_<ticket_id>`` with metadata beside them.

    Args:
        kv: Key-value store holding the drafts.
        ttl_days: Draft lifetime in days.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        ttl_days: int = DEFAULT_TTL_DAYS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._kv = kv
        self._ttl = ttl_days * 86400
        self._clock = clock

    def save(self, ticket_id: str, content: str, generated_by: str = "manual") -> Draft:
        """Save (or overwrite) the draft for *ticket_id*.

        Returns:
            The stored draft.
        """
        meta = DraftMeta(
            generated_at=datetime.fromtimestamp(self._clock(), tz=UTC),
            generated_by=generated_by,
        )
        self._kv.set(f"{DRAFT_PREFIX}{ticket_id}", content, ttl=self._ttl)
        self._kv.set(f"{DRAFT_META_PREFIX}{ticket_id}", meta.model_dump(mode="json"), ttl=self._ttl)
        logger.info("draft_saved", ticket_id=ticket_id, generated_by=generated_by)
        return Draft(ticket_id=ticket_id, content=content, **meta.model_dump())

    def load(self, ticket_id: str) -> Draft:
        """Return the live draft for *ticket_id*.

        Raises:
            DraftNotFoundError: If no draft exists or it has expired.
        """
        content = self._kv.get(f"{DRAFT_PREFIX}{ticket_id}")
        if content is None:
            raise DraftNotFoundError(ticket_id)

        raw_meta = self._kv.get(f"{DRAFT_META_PREFIX}{ticket_id}")
        if raw_meta is None:
            return Draft(ticket_id=ticket_id, content=content)
        meta = DraftMeta.model_validate(raw_meta)
        return Draft(ticket_id=ticket_id, content=content, **meta.model_dump())

    def exists(self, ticket_id: str) -> bool:
        """Return ``True`` if a live draft exists for *ticket_id*."""
        return self._kv.get(f"{DRAFT_PREFIX}{ticket_id}") is not None

    def clear(self, ticket_id: str) -> bool:
        """Delete the draft for *ticket_id*.

        Returns:
            ``True`` if a draft was deleted.
        """
        existed = self.exists(ticket_id)
        self._kv.delete(f"{DRAFT_PREFIX}{ticket_id}")
        self._kv.delete(f"{DRAFT_META_PREFIX}{ticket_id}")
        if existed:
            logger.info("draft_cleared", ticket_id=ticket_id)
        return existed

    def list_drafts(self) -> list[Draft]:
        """Return every live draft, most recently saved first."""
        drafts: list[Draft] = []
        for key in self._kv.keys(DRAFT_PREFIX):
            if key.startswith(DRAFT_META_PREFIX):
                continue
            ticket_id = key[len(DRAFT_PREFIX):]
            try:
                drafts.append(self.load(ticket_id))
            except DraftNotFoundError:
                # Expired between listing and loading
                continue
        return drafts

    def clear_all(self) -> int:
        """Delete every draft.

        Returns:
            Number of drafts deleted.
        """
        count = len(self.list_drafts())
        self._kv.delete_prefix(DRAFT_PREFIX)
        logger.info("drafts_cleared", count=count)
        return count


def send_draft(
    client: DeskClient,
    store: DraftStore,
    ticket_id: str,
    content: str | None = None,
) -> Draft:
    """Send the saved draft (or an edited version) as a public reply.

    The draft is deleted only after the reply succeeds.

    Args:
        client: Desk API client used to send the reply.
        store: Where the draft lives.
        ticket_id: Ticket to reply to.
        content: Edited reply text; ``None`` sends the saved draft as is.

    Returns:
        The draft as sent, with ``status=sent``.

    Raises:
        DraftNotFoundError: If no draft exists for the ticket.
        DeskApiError: If the reply fails; the draft is kept.
    """
    draft = store.load(ticket_id)
    text = content if content is not None else draft.content
    client.reply(ticket_id, text)
    store.clear(ticket_id)
    logger.info("draft_sent", ticket_id=ticket_id, edited=content is not None)
    return draft.model_copy(update={"content": text, "status": DraftStatus.SENT})
