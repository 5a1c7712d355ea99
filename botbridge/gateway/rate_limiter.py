"""Token bucket rate limiting for API calls."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from botbridge.gateway.caller import CallNext

logger = logging.getLogger(__name__)


class TokenBucket:
    """Token bucket refilled at ``frequency`` tokens per second.

    ``reserve`` always takes a token and lets the balance go negative;
    the caller waits out the returned delay. Reservations are therefore
    served in arrival order without a queue.
    """

    def __init__(self, frequency: float = 1.0, bucket: int = 1) -> None:
        self._frequency = frequency
        self._capacity = bucket
        self._tokens = float(bucket)
        self._updated = time.monotonic()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self._capacity), self._tokens + elapsed * self._frequency)
        self._updated = now

    def reserve(self) -> float:
        """Take a token and return how many seconds to wait before using it."""
        self._refill()
        self._tokens -= 1
        if self._tokens >= 0:
            return 0.0
        return -self._tokens / self._frequency


class RateLimitMiddleware:
    """Delays calls so they never exceed the configured rate."""

    def __init__(self, frequency: float, bucket: int) -> None:
        self._bucket = TokenBucket(frequency, bucket)

    async def __call__(
        self, action: str, params: Any, call_next: CallNext,
    ) -> dict[str, Any]:
        delay = self._bucket.reserve()
        if delay > 0:
            logger.debug("Rate limit reached, delaying %s by %.3fs", action, delay)
            await asyncio.sleep(delay)
        return await call_next(action, params)
