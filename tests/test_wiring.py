"""Tests for service construction in deskmanager.wiring."""

from __future__ import annotations

import httpx
import pytest
from pydantic import SecretStr

from deskmanager.domain.errors import GenerationError, GenErrorKind
from deskmanager.drafts.generators import OpenAIGenerator
from deskmanager.wiring import initialize_services


def _no_network(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request to {request.url}")


class TestInitializeServices:
    """Building the shared component graph from settings."""

    def test_creates_state_db_file(self, settings, tmp_path, http_factory) -> None:
        db_path = tmp_path / "nested" / "state.db"
        services = initialize_services(
            settings.model_copy(update={"state_db_path": db_path}),
            http=http_factory(_no_network),
        )

        assert db_path.exists()
        assert services.limiter.max_calls == settings.rate_limit_per_minute

        services.close()

    def test_components_share_one_store(self, settings, conn, http_factory) -> None:
        services = initialize_services(settings, http=http_factory(_no_network), conn=conn)

        services.drafts.save("1", "hello")
        services.limiter.record()

        assert services.kv.get("draft_1") == "hello"
        assert services.limiter.remaining() == settings.rate_limit_per_minute - 1

    def test_close_releases_resources(self, settings, conn, http_factory) -> None:
        services = initialize_services(settings, http=http_factory(_no_network), conn=conn)

        services.close()

        assert services.http.is_closed


class TestGeneratorSelection:
    """``Services.generator`` follows the configured provider."""

    def test_no_provider(self, settings, conn, http_factory) -> None:
        services = initialize_services(settings, http=http_factory(_no_network), conn=conn)

        with pytest.raises(GenerationError) as excinfo:
            services.generator()

        assert excinfo.value.kind is GenErrorKind.NO_PROVIDER_CONFIGURED

    def test_openai(self, settings, conn, http_factory) -> None:
        configured = settings.model_copy(
            update={"ai_provider": "openai", "openai_api_key": SecretStr("sk-test")}
        )
        services = initialize_services(configured, http=http_factory(_no_network), conn=conn)

        assert isinstance(services.generator(), OpenAIGenerator)
