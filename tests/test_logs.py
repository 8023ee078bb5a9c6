"""Tests for structlog configuration in dev and production modes."""

from __future__ import annotations

import json

import pytest
import structlog

from deskmanager.observability.logs import configure_logging


def _renderers() -> list[object]:
    return list(structlog.get_config()["processors"])


class TestConfigureLogging:
    """Renderer selection and output stream."""

    def test_development_mode_uses_console_renderer(self) -> None:
        configure_logging(production=False)

        assert any(isinstance(p, structlog.dev.ConsoleRenderer) for p in _renderers())

    def test_production_mode_uses_json_renderer(self) -> None:
        configure_logging(production=True)

        assert any(isinstance(p, structlog.processors.JSONRenderer) for p in _renderers())

    def test_log_lines_stay_off_stdout(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(production=True)

        structlog.get_logger().info("services_initialized", ai_mode="api")

        captured = capsys.readouterr()
        assert captured.out == ""
        line = json.loads(captured.err.strip())
        assert line["event"] == "services_initialized"
        assert line["service"] == "deskmanager"

    def test_debug_level_in_production(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(production=True, debug=True)

        structlog.get_logger().debug("desk_api_failure_context", body="{}")

        assert "desk_api_failure_context" in capsys.readouterr().err

    def test_info_level_hides_debug(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(production=True)

        structlog.get_logger().debug("desk_api_failure_context")

        assert capsys.readouterr().err == ""
