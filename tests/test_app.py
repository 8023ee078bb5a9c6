"""Tests for the FastAPI dashboard API routes and error mapping.

Builds real ``Services`` around an in-memory state DB and an
``httpx.MockTransport`` standing in for the Desk and AI backends.
"""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

from deskmanager.app import create_app
from deskmanager.domain.types import AIMode, TagScope
from deskmanager.wiring import Services

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def build(make_services) -> Callable[..., tuple[TestClient, Services]]:
    """Factory returning a TestClient and its Services for a backend handler."""

    def _build(handler: Handler, **overrides) -> tuple[TestClient, Services]:
        services = make_services(handler, **overrides)
        return TestClient(create_app(services)), services

    return _build


# ---------------------------------------------------------------------------
# Tickets
# ---------------------------------------------------------------------------


class TestTicketRoutes:
    """Listing, search, detail and conversation."""

    def test_list_tickets(self, build, make_ticket) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": [make_ticket("1")]})

        client, _ = build(handler)

        response = client.get("/tickets", params={"limit": 5})

        assert response.status_code == 200
        assert response.json()["data"][0]["ticketNumber"] == "101"
        assert seen[0].url.params["status"] == "Open"
        assert seen[0].url.params["limit"] == "5"

    def test_search(self, build, make_ticket) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"data": [make_ticket("1", ticketNumber="1234"), make_ticket("2", ticketNumber="9")]},
            )

        client, _ = build(handler)

        response = client.get("/tickets/search", params={"q": "#1234"})

        assert [t["id"] for t in response.json()["data"]] == ["1"]

    def test_get_ticket_flags_draft(self, build, make_ticket) -> None:
        client, services = build(lambda request: httpx.Response(200, json=make_ticket("7")))
        services.drafts.save("7", "pending reply")

        body = client.get("/tickets/7").json()

        assert body["id"] == "7"
        assert body["hasDraft"] is True

    def test_conversation(self, build) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/threads"):
                return httpx.Response(
                    200,
                    json={
                        "data": [
                            {
                                "id": "t1",
                                "content": "Help",
                                "createdTime": "2024-01-01T00:00:00Z",
                                "author": {"type": "END_USER", "name": "Jane"},
                            }
                        ]
                    },
                )
            return httpx.Response(204)

        client, _ = build(handler)

        body = client.get("/tickets/7/conversation").json()

        assert body["count"] == 1
        assert body["messages"][0]["author_type"] == "customer"
        assert body["messages"][0]["source"] == "thread"


class TestWriteRoutes:
    """Reply, status and tags."""

    def test_reply(self, build) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        client, _ = build(handler)

        response = client.post("/tickets/7/reply", json={"content": "Hello"})

        assert response.json() == {"status": "sent"}
        assert json.loads(seen[0].content)["content"] == "Hello"

    def test_reply_requires_content(self, build) -> None:
        client, _ = build(lambda request: httpx.Response(200))

        assert client.post("/tickets/7/reply", json={"content": ""}).status_code == 422

    def test_update_status(self, build) -> None:
        client, _ = build(lambda request: httpx.Response(200, json={}))

        response = client.patch("/tickets/7/status", json={"status": "Closed"})

        assert response.json() == {"status": "updated", "ticket_status": "Closed"}

    def test_tags(self, build) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        client, _ = build(handler)

        response = client.post("/tickets/7/tags", json={"tags": ["vip"], "mode": "replace"})

        assert response.json()["mode"] == "replace"
        assert seen[0].method == "PUT"

    def test_empty_tags_is_422(self, build) -> None:
        client, _ = build(lambda request: httpx.Response(200))

        assert client.post("/tickets/7/tags", json={"tags": []}).status_code == 422


class TestAutoTagRoute:
    """Content-derived tagging over HTTP."""

    @staticmethod
    def _handler(make_ticket, posted: list[list[str]]) -> Handler:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                posted.append(json.loads(request.content)["tagNames"])
                return httpx.Response(200, json={})
            return httpx.Response(200, json=make_ticket("7"))

        return handler

    def test_uses_configured_scope(self, build, make_ticket) -> None:
        posted: list[list[str]] = []
        client, _ = build(self._handler(make_ticket, posted), tag_scope=TagScope.FULL_ANALYSIS)

        body = client.post("/tickets/7/tags/auto").json()

        assert body["status"] == "tagged"
        assert body["scope"] == "full_analysis"
        assert "new-ticket" in body["tags"]
        assert posted == [body["tags"]]

    def test_scope_and_custom_tags_from_body(self, build, make_ticket) -> None:
        posted: list[list[str]] = []
        client, _ = build(self._handler(make_ticket, posted), tag_scope=TagScope.FULL_ANALYSIS)

        body = client.post(
            "/tickets/7/tags/auto", json={"scope": "template_only", "custom_tags": ["vip"]}
        ).json()

        assert body["tags"] == ["vip"]
        assert posted == [["vip"]]

    def test_nothing_suggested(self, build, make_ticket) -> None:
        posted: list[list[str]] = []
        client, _ = build(self._handler(make_ticket, posted))

        body = client.post("/tickets/7/tags/auto").json()

        assert body == {"status": "unchanged", "scope": "template_only", "tags": []}
        assert posted == []


# ---------------------------------------------------------------------------
# Drafts
# ---------------------------------------------------------------------------


class TestDraftRoutes:
    """Draft lifecycle over HTTP."""

    def test_save_get_delete(self, build) -> None:
        client, _ = build(lambda request: httpx.Response(200))

        assert client.put("/tickets/7/draft", json={"content": "Draft text"}).status_code == 200
        assert client.get("/tickets/7/draft").json()["content"] == "Draft text"
        assert client.delete("/tickets/7/draft").json() == {"deleted": True}

        response = client.get("/tickets/7/draft")
        assert response.status_code == 404
        assert response.json()["error"] == "draft_not_found"

    def test_send_draft(self, build) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        client, services = build(handler)
        services.drafts.save("7", "Draft text")

        response = client.post("/tickets/7/draft/send")

        assert response.json()["status"] == "sent"
        assert json.loads(seen[0].content)["content"] == "Draft text"
        assert services.drafts.exists("7") is False

    def test_generate_browser_prompt_is_not_saved(self, build, make_ticket) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/tickets/7"):
                return httpx.Response(200, json=make_ticket("7"))
            return httpx.Response(204)

        client, services = build(handler, ai_mode=AIMode.BROWSER)

        body = client.post("/tickets/7/draft/generate", json={}).json()

        assert body["prompt_only"] is True
        assert body["saved"] is False
        assert services.drafts.exists("7") is False

    def test_generate_with_openai_saves_draft(self, build, make_ticket) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "api.openai.com":
                return httpx.Response(200, json={"choices": [{"message": {"content": "Hi Jane"}}]})
            if request.url.path.endswith("/tickets/7"):
                return httpx.Response(200, json=make_ticket("7"))
            return httpx.Response(204)

        client, services = build(handler, ai_provider="openai", openai_api_key=SecretStr("sk-test"))

        body = client.post("/tickets/7/draft/generate", json={"tone": "friendly"}).json()

        assert body["saved"] is True
        assert services.drafts.load("7").content == "Hi Jane"
        assert services.drafts.load("7").generated_by == "openai"

    def test_generate_without_provider_is_503(self, build) -> None:
        client, _ = build(lambda request: httpx.Response(200))

        response = client.post("/tickets/7/draft/generate", json={})

        assert response.status_code == 503
        assert response.json()["error"] == "no_provider_configured"


# ---------------------------------------------------------------------------
# Dashboard and errors
# ---------------------------------------------------------------------------


class TestDashboardAndErrors:
    """Summary endpoint and typed-error mapping."""

    def test_dashboard(self, build, make_ticket) -> None:
        client, _ = build(
            lambda request: httpx.Response(200, json={"data": [make_ticket("1", priority="High")]})
        )

        body = client.get("/dashboard").json()

        assert body["open_count"] == 1
        assert body["urgent_count"] == 1
        assert body["rate_limit"]["limit"] == 45

    def test_connection_test(self, build, make_ticket) -> None:
        client, _ = build(lambda request: httpx.Response(200, json={"data": [make_ticket("1")]}))

        assert client.post("/connection/test").json() == {"status": "ok", "tickets_visible": 1}

    def test_unauthorized_is_401(self, build) -> None:
        client, _ = build(lambda request: httpx.Response(401))

        response = client.get("/tickets/7")

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    def test_rate_limited_is_429_with_retry_after(self, build) -> None:
        client, _ = build(lambda request: httpx.Response(200, json={"id": "7"}), rate_limit_per_minute=1)
        client.get("/tickets/7")

        response = client.get("/tickets/7")

        assert response.status_code == 429
        assert response.json()["error"] == "rate_limited"
        assert 1 <= int(response.headers["Retry-After"]) <= 60

    def test_bad_response_is_502(self, build) -> None:
        client, _ = build(lambda request: httpx.Response(500, text="boom"))

        response = client.get("/tickets/7")

        assert response.status_code == 502
        assert response.json()["error"] == "bad_response"
        assert "boom" not in response.text

    def test_health_and_metrics_routes_registered(self, build) -> None:
        client, _ = build(lambda request: httpx.Response(200))

        assert client.get("/health").json() == {"status": "healthy"}
        assert client.get("/ready").json()["status"] == "ready"
        assert client.get("/metrics").status_code == 200
