"""
Sliding-window rate limiter

At most `max_requests` outbound requests in any trailing `window_seconds`.
No burst beyond the cap is ever admitted; callers wait until the window slides.
"""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque

from loguru import logger


class SlidingWindowRateLimiter:
    """
    Admission control over a sliding window of request timestamps

    The lock is held while a caller waits for the window to slide, so
    callers are admitted in the order they called `admit()`.
    """

    def __init__(
        self,
        max_requests: int = 5,
        window_seconds: float = 60.0,
        buffer_seconds: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.buffer_seconds = buffer_seconds
        self._clock = clock
        self._sleep = sleep
        self._requests: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float):
        while self._requests and now - self._requests[0] >= self.window_seconds:
            self._requests.popleft()

    async def admit(self):
        """Block until a request may be sent, then record it"""
        async with self._lock:
            self._prune(self._clock())

            while len(self._requests) >= self.max_requests:
                oldest = self._requests[0]
                wait = self.window_seconds - (self._clock() - oldest) + self.buffer_seconds
                logger.info(
                    f"Rate limit reached ({len(self._requests)}/{self.max_requests} requests). "
                    f"Waiting {wait:.1f}s..."
                )
                await self._sleep(max(0.0, wait))
                self._prune(self._clock())

            self._requests.append(self._clock())
