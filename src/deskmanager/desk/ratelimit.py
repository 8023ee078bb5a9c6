"""Per-minute outbound call limiter for the Desk API.

Zoho Desk allows 50 requests per minute; the default ceiling of 45 keeps a
buffer.  Calls are counted in a bucket keyed by the wall-clock minute
(``rate_limit_2024-01-17 10:32``) with a 60 second TTL.  This is a fixed
window, not a sliding one: a burst straddling a minute boundary can briefly
exceed the intended throughput.

The limiter never queues or sleeps.  When ``can_proceed()`` is false the
caller must skip, delay or report the call.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from datetime import UTC, datetime

import structlog

from deskmanager.state.store import KeyValueStore

logger = structlog.get_logger()

DEFAULT_MAX_CALLS_PER_MINUTE = 45
BUCKET_PREFIX = "rate_limit_"
BUCKET_TTL_SECONDS = 60

# Keys for limits reported by the backend itself
API_LIMIT_KEY = "api_rate_limit"
API_REMAINING_KEY = "api_rate_remaining"
API_RESET_KEY = "api_rate_reset"


class RateLimiter:
    """Count Desk API calls per wall-clock minute.

    Args:
        kv: Key-value store holding the minute buckets.
        max_calls: Ceiling per minute bucket.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        max_calls: int = DEFAULT_MAX_CALLS_PER_MINUTE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._kv = kv
        self.max_calls = max_calls
        self._clock = clock

    def current_bucket(self) -> str:
        """Return the key of the current minute bucket."""
        minute = datetime.fromtimestamp(self._clock(), tz=UTC).strftime("%Y-%m-%d %H:%M")
        return f"{BUCKET_PREFIX}{minute}"

    def _count(self) -> int:
        return int(self._kv.get(self.current_bucket()) or 0)

    def can_proceed(self) -> bool:
        """Return ``True`` while the current bucket is below the ceiling."""
        count = self._count()
        if count >= self.max_calls:
            logger.debug("rate_limit_reached", calls=count, ceiling=self.max_calls)
            return False
        return True

    def record(self) -> None:
        """Count one call in the current bucket and refresh its expiry."""
        bucket = self.current_bucket()
        count = int(self._kv.get(bucket) or 0) + 1
        self._kv.set(bucket, count, ttl=BUCKET_TTL_SECONDS)

    def remaining(self) -> int:
        """Calls left in the current bucket."""
        return max(0, self.max_calls - self._count())

    def reset_in_seconds(self) -> int:
        """Seconds until the current minute bucket rolls over."""
        return 60 - int(self._clock()) % 60

    def clear(self) -> None:
        """Drop the current bucket."""
        self._kv.delete(self.current_bucket())

    def record_response_headers(self, headers: Mapping[str, str]) -> None:
        """Persist the rate-limit figures the backend reports in its headers.

        Args:
            headers: Response headers (case-insensitive mapping preferred).
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        for header, key in (
            ("x-rate-limit-limit", API_LIMIT_KEY),
            ("x-rate-limit-remaining", API_REMAINING_KEY),
            ("x-rate-limit-reset", API_RESET_KEY),
        ):
            if header in lowered:
                self._kv.set(key, lowered[header])
