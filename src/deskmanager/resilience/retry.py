"""Retry policy for calls to AI providers.

Only network-level failures are worth another attempt: a provider that
answered with an error status will answer the same way again, so those
surface immediately as ``GenerationError`` from the generator.  Desk API
calls and token refreshes are never retried; the Desk rate limit makes a
blind retry more harmful than a clear failure.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

import anthropic
import httpx
import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from deskmanager.observability.metrics import AI_CALL_RETRIES

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable[..., Any])

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    httpx.TransportError,
    anthropic.APIConnectionError,
)

DEFAULT_ATTEMPTS = 3


def _provider(retry_state: RetryCallState) -> str:
    return getattr(retry_state.fn, "_api_name", "unknown")


def _on_retry(retry_state: RetryCallState) -> None:
    """Log and count each retry attempt."""
    api_name = _provider(retry_state)
    AI_CALL_RETRIES.labels(api_name=api_name).inc()
    logger.warning(
        "ai_call_retrying",
        api_name=api_name,
        attempt=retry_state.attempt_number,
        wait=retry_state.next_action.sleep if retry_state.next_action else 0,
    )


def _on_exhausted(retry_state: RetryCallState) -> Any:
    """Log the give-up, then hand the caller the last error."""
    outcome = retry_state.outcome
    logger.error(
        "ai_call_failed_after_retries",
        api_name=_provider(retry_state),
        attempts=retry_state.attempt_number,
        exception=str(outcome.exception()) if outcome else None,
    )
    if outcome is None:
        return None
    return outcome.result()


def resilient_api_call(api_name: str, attempts: int = DEFAULT_ATTEMPTS) -> Callable[[F], F]:
    """Decorate an AI provider call with transport-failure retries.

    Waits grow exponentially from 1s up to 30s with up to 5s of jitter.
    After the last attempt the original exception propagates unchanged.

    Args:
        api_name: Provider label used in logs and the retry counter.
        attempts: Total number of tries, the first one included.

    Returns:
        The retry decorator.
    """

    def decorator(func: F) -> F:
        func._api_name = api_name  # type: ignore[attr-defined]
        return retry(  # type: ignore[return-value]
            stop=stop_after_attempt(attempts),
            wait=wait_exponential_jitter(initial=1, max=30, jitter=5),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            before_sleep=_on_retry,
            retry_error_callback=_on_exhausted,
        )(func)

    return decorator
