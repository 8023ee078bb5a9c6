"""Tests for DraftStore persistence and the send-draft flow."""

from __future__ import annotations

import json

import httpx
import pytest

from deskmanager.domain.errors import BadResponseError, DraftNotFoundError
from deskmanager.domain.types import DraftStatus
from deskmanager.drafts.store import DraftStore, send_draft


@pytest.fixture
def store(kv, clock) -> DraftStore:
    """DraftStore on the shared in-memory kv."""
    return DraftStore(kv, clock=clock)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestDraftLifecycle:
    """save / load / clear semantics."""

    def test_save_then_load_returns_same_content(self, store: DraftStore) -> None:
        store.save("42", "Hello Jane", generated_by="claude")

        draft = store.load("42")

        assert draft.content == "Hello Jane"
        assert draft.generated_by == "claude"
        assert draft.status is DraftStatus.DRAFT
        assert draft.generated_at is not None

    def test_clear_then_load_is_not_found(self, store: DraftStore) -> None:
        store.save("42", "Hello")

        assert store.clear("42") is True
        with pytest.raises(DraftNotFoundError):
            store.load("42")

    def test_save_twice_overwrites(self, store: DraftStore) -> None:
        store.save("42", "first")
        store.save("42", "second")

        assert store.load("42").content == "second"
        assert len(store.list_drafts()) == 1

    def test_clear_missing_returns_false(self, store: DraftStore) -> None:
        assert store.clear("nope") is False

    def test_drafts_expire_after_ttl(self, store: DraftStore, clock) -> None:
        store.save("42", "Hello")
        clock.advance(7 * 86400)

        assert store.exists("42") is False

    def test_load_without_meta_uses_defaults(self, store: DraftStore, kv) -> None:
        kv.set("draft_77", "legacy")

        draft = store.load("77")

        assert draft.content == "legacy"
        assert draft.generated_by == "unknown"


class TestListing:
    """Listing and bulk clearing skip metadata entries."""

    def test_list_drafts_newest_first(self, store: DraftStore) -> None:
        store.save("1", "a")
        store.save("2", "b")

        assert [d.ticket_id for d in store.list_drafts()] == ["2", "1"]

    def test_clear_all(self, store: DraftStore, kv) -> None:
        store.save("1", "a")
        store.save("2", "b")
        kv.set("rate_limit_x", 1)

        assert store.clear_all() == 2
        assert store.list_drafts() == []
        assert kv.keys("draft_meta_") == []
        assert kv.get("rate_limit_x") == 1


# ---------------------------------------------------------------------------
# send_draft
# ---------------------------------------------------------------------------


class TestSendDraft:
    """Sending replies with the draft and deletes it only on success."""

    def test_sends_saved_draft_and_clears(self, make_client, authorized_kv, clock) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={})

        store = DraftStore(authorized_kv, clock=clock)
        store.save("42", "Saved text")

        sent = send_draft(make_client(handler), store, "42")

        assert bodies[0]["content"] == "Saved text"
        assert sent.status is DraftStatus.SENT
        assert store.exists("42") is False

    def test_sends_edited_content(self, make_client, authorized_kv, clock) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={})

        store = DraftStore(authorized_kv, clock=clock)
        store.save("42", "Saved text")

        sent = send_draft(make_client(handler), store, "42", "Edited text")

        assert bodies[0]["content"] == "Edited text"
        assert sent.content == "Edited text"

    def test_failed_reply_keeps_draft(self, make_client, authorized_kv, clock) -> None:
        store = DraftStore(authorized_kv, clock=clock)
        store.save("42", "Saved text")

        with pytest.raises(BadResponseError):
            send_draft(make_client(lambda request: httpx.Response(500)), store, "42")

        assert store.load("42").content == "Saved text"

    def test_missing_draft(self, make_client, authorized_kv, clock) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        store = DraftStore(authorized_kv, clock=clock)

        with pytest.raises(DraftNotFoundError):
            send_draft(make_client(handler), store, "42")
