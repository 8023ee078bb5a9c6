"""Domain-specific exception classes for the Desk ticket manager.

Every component boundary raises one of these typed errors instead of
returning sentinel values.  Each family carries a ``kind`` so callers can
branch on the failure without matching exception classes.
"""

from __future__ import annotations

from enum import StrEnum


class AuthErrorKind(StrEnum):
    """Reasons an OAuth token could not be produced."""

    MISSING_CREDENTIALS = "missing_credentials"
    PROVIDER_REJECTED = "provider_rejected"
    REFRESH_FAILED = "refresh_failed"


class ApiErrorKind(StrEnum):
    """Failure taxonomy for Desk API calls."""

    TRANSPORT = "transport"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    BAD_RESPONSE = "bad_response"
    DECODE = "decode"


class GenErrorKind(StrEnum):
    """Failure taxonomy for draft generation."""

    PROVIDER_UNAVAILABLE = "provider_unavailable"
    PROVIDER_REJECTED = "provider_rejected"
    NO_PROVIDER_CONFIGURED = "no_provider_configured"


class DeskManagerError(Exception):
    """Base class for all domain errors in the Desk ticket manager."""


class AuthError(DeskManagerError):
    """Raised when an access token cannot be obtained or refreshed.

    Attributes:
        kind: The specific authentication failure.
    """

    def __init__(self, kind: AuthErrorKind, message: str) -> None:
        self.kind = kind
        super().__init__(message)


class DeskApiError(DeskManagerError):
    """Base class for failed Desk API operations.

    Attributes:
        kind: The failure category.
        operation: Name of the client operation that failed.
    """

    kind: ApiErrorKind = ApiErrorKind.TRANSPORT

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"{operation}: {message}")


class TransportError(DeskApiError):
    """Network-level failure (connection refused, timeout, DNS)."""

    kind = ApiErrorKind.TRANSPORT


class UnauthorizedError(DeskApiError):
    """The token was rejected, or no valid token could be obtained."""

    kind = ApiErrorKind.UNAUTHORIZED


class RateLimitedError(DeskApiError):
    """The local per-minute call ceiling was reached.

    Attributes:
        reset_in: Seconds until the current minute bucket rolls over.
    """

    kind = ApiErrorKind.RATE_LIMITED

    def __init__(self, operation: str, reset_in: int) -> None:
        self.reset_in = reset_in
        super().__init__(operation, f"rate limit reached, resets in {reset_in}s")


class BadResponseError(DeskApiError):
    """The backend answered with an unexpected status code.

    Attributes:
        status_code: HTTP status returned by the backend.
        body: Raw response body text.
    """

    kind = ApiErrorKind.BAD_RESPONSE

    def __init__(self, operation: str, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(operation, f"unexpected status {status_code}")


class DecodeError(DeskApiError):
    """The backend response body was not the JSON we expected."""

    kind = ApiErrorKind.DECODE


class GenerationError(DeskManagerError):
    """Raised when a draft generator cannot produce a reply.

    Attributes:
        kind: The specific generation failure.
        provider: Name of the generator that failed, if any.
    """

    def __init__(self, kind: GenErrorKind, message: str, provider: str | None = None) -> None:
        self.kind = kind
        self.provider = provider
        super().__init__(message)


class DraftNotFoundError(DeskManagerError):
    """Raised when no live draft exists for a ticket."""

    def __init__(self, ticket_id: str) -> None:
        self.ticket_id = ticket_id
        super().__init__(f"No draft found for ticket {ticket_id}")


class TicketNotFoundError(DeskManagerError):
    """Raised when a free-form ticket reference matches no recent ticket."""

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"No ticket found for {reference!r}")
