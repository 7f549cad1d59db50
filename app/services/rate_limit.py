"""Token bucket limiting the request rate towards external APIs."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class AsyncRateLimiter:
    """Process-wide token bucket shared by every caller of one API.

    ``rate`` tokens are added per second up to ``capacity``. Each request
    takes one token; callers wait in arrival order when the bucket is empty,
    so concurrent import batches cannot burst past the budget together.
    """

    def __init__(
        self,
        rate: float,
        *,
        capacity: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self._rate = float(rate)
        self._capacity = float(capacity if capacity is not None else max(1, int(rate)))
        if self._capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._tokens = self._capacity
        self._clock = clock
        self._sleep = sleep
        self._updated_at = clock()
        self._lock = asyncio.Lock()

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def capacity(self) -> float:
        return self._capacity

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._updated_at = now

    async def acquire(self) -> None:
        """Wait until a request may be sent."""

        async with self._lock:
            self._refill()
            while self._tokens < 1:
                delay = (1 - self._tokens) / self._rate
                logger.debug("Rate limit reached, waiting %.3fs", delay)
                await self._sleep(delay)
                self._refill()
            self._tokens -= 1

    async def __aenter__(self) -> "AsyncRateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None
