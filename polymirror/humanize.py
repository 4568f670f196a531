"""
Human-like request pacing

Randomised delays that make outbound request timing resemble a person
browsing the site:
- reading: 5-15s before a data fetch
- auth-adjacent: 10-20s around authentication calls
- page-like: 0-2s jitter before page loads
- generic: 1-3s jitter
"""

import asyncio
import random
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Tuple

from loguru import logger


class RequestClass(Enum):
    """Pacing profile of an outbound request"""
    READ = "read"
    AUTH = "auth"
    PAGE = "page"
    GENERIC = "generic"


# (min_seconds, max_seconds), drawn uniformly
DELAY_PROFILES: Dict[RequestClass, Tuple[float, float]] = {
    RequestClass.READ: (5.0, 15.0),
    RequestClass.AUTH: (10.0, 20.0),
    RequestClass.PAGE: (0.0, 2.0),
    RequestClass.GENERIC: (1.0, 3.0),
}

# Share of READ delays that get logged
READ_LOG_SAMPLE = 0.1


class Pacer:
    """
    Draws and applies randomised delays

    Randomness and sleeping are injected so tests can run without waiting.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self._rng = rng or random.Random()
        self._sleep = sleep

    def delay_for(self, request_class: RequestClass) -> float:
        """Seconds to wait before a request of the given class"""
        low, high = DELAY_PROFILES[request_class]
        return self._rng.uniform(low, high)

    async def pause(self, request_class: RequestClass = RequestClass.GENERIC) -> float:
        """Sleep for a delay matching the request class"""
        delay = self.delay_for(request_class)

        if request_class == RequestClass.AUTH:
            logger.info(f"Auth delay: {delay:.0f}s after authentication...")
        elif request_class == RequestClass.READ and self._rng.random() < READ_LOG_SAMPLE:
            logger.info(f"Human delay: {delay:.0f}s before fetch...")
        else:
            logger.debug(f"Pacing {request_class.value} request for {delay:.2f}s")

        await self._sleep(delay)
        return delay

    async def jitter(self, base: float, jitter: float = 0.0) -> float:
        """Sleep for base plus up to jitter extra seconds"""
        delay = base + (self._rng.uniform(0, jitter) if jitter > 0 else 0.0)
        await self._sleep(delay)
        return delay

    def jittered(self, base: float, percent: float = 0.2) -> float:
        """base scaled by a uniform factor in [1 - percent, 1 + percent]"""
        return max(0.0, base * (1 + self._rng.uniform(-percent, percent)))

    async def sleep(self, seconds: float):
        """Plain sleep through the injected sleeper"""
        await self._sleep(max(0.0, seconds))
