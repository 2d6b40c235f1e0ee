"""
Token bucket rate limiter guarding the enrichment API.
"""

import asyncio
import math
import time
from typing import Awaitable, Callable

import structlog


class TokenBucketRateLimiter:
    """
    Token bucket that refills continuously up to its capacity.

    Every guarded call spends one token; callers are suspended until a token
    is available. Callers are served one at a time in arrival order.
    """

    def __init__(
        self,
        capacity: int = 10,
        refill_window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the limiter with a full bucket.

        Args:
            capacity: Maximum number of tokens
            refill_window_seconds: Time to refill an empty bucket completely
            clock: Monotonic clock returning seconds
            sleep: Coroutine used to suspend callers
        """
        if capacity < 1:
            raise ValueError("Capacity must be at least 1")
        if refill_window_seconds <= 0:
            raise ValueError("Refill window must be positive")

        self.capacity = capacity
        self.refill_rate = capacity / refill_window_seconds  # tokens per second
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._last_refill = clock()
        self._lock = asyncio.Lock()
        self.logger = structlog.get_logger(__name__)

    @property
    def tokens(self) -> float:
        """Tokens currently in the bucket (after refilling)."""
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
        self._last_refill = now

    def wait_time(self) -> float:
        """Seconds until one token is available, rounded up to the millisecond."""
        if self._tokens >= 1:
            return 0.0
        return math.ceil((1 - self._tokens) / self.refill_rate * 1000) / 1000

    async def acquire(self) -> None:
        """Wait for a token and consume it."""
        async with self._lock:
            self._refill()
            if self._tokens < 1:
                wait = self.wait_time()
                self.logger.debug("Rate limiter empty, waiting", wait_seconds=wait)
                await self._sleep(wait)
                self._refill()
                # the bucket never goes negative
                while self._tokens < 1:
                    await self._sleep(self.wait_time())
                    self._refill()
            self._tokens -= 1
