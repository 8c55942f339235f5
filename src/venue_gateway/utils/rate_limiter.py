"""Sliding-window rate limiter for outbound venue requests."""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Grants at most ``max_requests`` permits in any trailing ``window_seconds``.

    Grant times are kept in a deque. When the window is full the caller sleeps
    until the oldest grant ages out. The lock is held across that sleep, and
    asyncio.Lock wakes waiters in FIFO order, so permits are handed out in the
    order they were requested. Permits are never released; they expire.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float = 1.0,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if max_requests <= 0:
            raise ValueError("max_requests must be greater than zero")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be greater than zero")

        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._grants: Deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def remaining(self) -> int:
        """Permits that could be granted right now without waiting."""
        self._expire(self._clock())
        return max(0, self.max_requests - len(self._grants))

    def _expire(self, now: float):
        while self._grants and self._grants[0] + self.window_seconds <= now:
            self._grants.popleft()

    async def acquire(self):
        """Wait until a permit is available and consume it."""
        async with self._lock:
            now = self._clock()
            self._expire(now)

            while len(self._grants) >= self.max_requests:
                wait_time = self._grants[0] + self.window_seconds - now
                if wait_time > 0:
                    logger.debug(f"Rate limit reached, waiting {wait_time:.3f}s")
                    await self._sleep(wait_time)
                now = self._clock()
                self._expire(now)

            self._grants.append(now)
