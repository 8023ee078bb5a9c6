"""Retry infrastructure for AI provider calls."""

from deskmanager.resilience.retry import TRANSIENT_ERRORS, resilient_api_call

__all__ = [
    "TRANSIENT_ERRORS",
    "resilient_api_call",
]
