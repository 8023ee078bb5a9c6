"""structlog configuration shared by the CLI and the web dashboard API."""

from __future__ import annotations

import logging
import sys

import structlog

from deskmanager.observability.sentry import get_sentry_processor


def configure_logging(
    production: bool = False,
    debug: bool = False,
    sentry_enabled: bool = False,
) -> None:
    """Configure structlog for production (JSON) or development (console).

    Production mode (*production=True*): JSON rendering at INFO level.
    Development mode: colored console rendering at DEBUG level.  *debug*
    forces DEBUG level even in production.
    Log lines go to stderr; stdout carries only command output.

    Args:
        production: Enable production mode if ``True``.
        debug: Emit DEBUG events (including full failure context dumps).
        sentry_enabled: Forward ERROR events to Sentry.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
    ]

    if sentry_enabled:
        shared_processors.append(get_sentry_processor())

    shared_processors += [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if production:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        log_level = logging.DEBUG if debug else logging.INFO
    else:
        renderer = structlog.dev.ConsoleRenderer()
        log_level = logging.DEBUG

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service="deskmanager")
