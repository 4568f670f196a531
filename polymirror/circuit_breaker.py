"""
Venue block detection and the global pause controller

A rejected order is classified by a pluggable RejectionClassifier. Block
signals (403s and protection-vendor block pages) feed the CircuitBreaker,
which backs off on isolated blocks and pauses all trading once they repeat.
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from loguru import logger

from .humanize import Pacer


class ErrorKind(Enum):
    """Why an order was rejected"""
    NETWORK_ERROR = "network_error"
    VENUE_BLOCK = "venue_block"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    BUSINESS_REJECTION = "business_rejection"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Classification:
    """Typed result of classifying a rejection"""
    kind: ErrorKind
    message: Optional[str] = None

    @property
    def is_block(self) -> bool:
        return self.kind == ErrorKind.VENUE_BLOCK


BLOCK_FINGERPRINTS = (
    "<!doctype html",
    "cloudflare",
    "you have been blocked",
    "attention required",
)

FUNDS_FINGERPRINTS = (
    "not enough balance",
    "allowance",
)


def extract_order_error(response: Any) -> Optional[str]:
    """Pull a human readable error out of an order response"""
    if not response:
        return None
    if isinstance(response, str):
        return response
    if not isinstance(response, dict):
        return None

    error = response.get("error")
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        for key in ("error", "message"):
            if isinstance(error.get(key), str):
                return error[key]

    for key in ("errorMsg", "message"):
        if isinstance(response.get(key), str):
            return response[key]

    return None


class RejectionClassifier:
    """
    Sorts rejected responses into ErrorKind buckets

    Fingerprints are plain lower-case substrings; pass extra ones to
    recognise new block pages without touching the execution loop.
    """

    def __init__(
        self,
        block_fingerprints: Sequence[str] = BLOCK_FINGERPRINTS,
        funds_fingerprints: Sequence[str] = FUNDS_FINGERPRINTS
    ):
        self.block_fingerprints = tuple(f.lower() for f in block_fingerprints)
        self.funds_fingerprints = tuple(f.lower() for f in funds_fingerprints)

    def is_blocked(self, response: Any) -> bool:
        """True when the response looks like anti-automation blocking"""
        if isinstance(response, dict):
            if response.get("status") == 403 or response.get("statusCode") == 403:
                return True
            if response.get("statusText") == "Forbidden":
                return True
            body = response.get("data")
            if isinstance(body, str) and self._matches(body, self.block_fingerprints):
                return True

        message = extract_order_error(response)
        return bool(message) and self._matches(message, self.block_fingerprints)

    def __call__(self, response: Any) -> Classification:
        message = extract_order_error(response)

        if self.is_blocked(response):
            return Classification(ErrorKind.VENUE_BLOCK, message)
        if isinstance(response, dict) and response.get("network_error"):
            return Classification(ErrorKind.NETWORK_ERROR, message)
        if message and self._matches(message, self.funds_fingerprints):
            return Classification(ErrorKind.INSUFFICIENT_FUNDS, message)
        if message:
            return Classification(ErrorKind.BUSINESS_REJECTION, message)
        return Classification(ErrorKind.UNKNOWN, None)

    @staticmethod
    def _matches(text: str, fingerprints: Sequence[str]) -> bool:
        lower = text.lower()
        return any(f in lower for f in fingerprints)


classify_rejection = RejectionClassifier()


@dataclass(frozen=True)
class BlockDecision:
    """What the caller should do after a block signal"""
    paused: bool
    backoff_seconds: float
    consecutive: int


class CircuitBreaker:
    """
    Process-wide pause controller

    Armed: block signals are counted and answered with capped exponential
    backoff. Reaching `threshold` consecutive blocks enters Paused for
    `pause_seconds`; the breaker re-arms by itself once the pause expires.
    Any non-block outcome resets the count.
    """

    def __init__(
        self,
        threshold: int = 3,
        pause_seconds: float = 15 * 60,
        backoff_base: float = 10.0,
        backoff_max: float = 60.0,
        jitter: float = 0.2,
        clock: Callable[[], float] = time.time,
        pacer: Optional[Pacer] = None
    ):
        self.threshold = threshold
        self.pause_seconds = pause_seconds
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.jitter = jitter
        self._clock = clock
        self.pacer = pacer or Pacer()
        self._lock = threading.Lock()
        self._consecutive = 0
        self._paused_until = 0.0

    @property
    def consecutive_blocks(self) -> int:
        return self._consecutive

    @property
    def paused_until(self) -> float:
        return self._paused_until

    def is_paused(self) -> bool:
        return self._clock() < self._paused_until

    def remaining_seconds(self) -> float:
        """Seconds left in the current pause, 0 when armed"""
        return max(0.0, self._paused_until - self._clock())

    def record_success(self):
        with self._lock:
            self._consecutive = 0

    def record_rejection(self):
        """A rejection that was not a block"""
        with self._lock:
            self._consecutive = 0

    def record_block(self, attempt: int = 0) -> BlockDecision:
        """
        Count a block signal

        Args:
            attempt: Retry index of the caller, drives the backoff exponent

        Returns:
            BlockDecision telling the caller to back off or to stop
        """
        with self._lock:
            self._consecutive += 1
            consecutive = self._consecutive

            if consecutive >= self.threshold:
                self._paused_until = self._clock() + self.pause_seconds
                self._consecutive = 0
                resume_at = datetime.fromtimestamp(self._paused_until).strftime("%H:%M:%S")
                logger.error(
                    f"PAUSE MODE ACTIVATED: trading paused for {self.pause_seconds / 60:.0f} "
                    f"minutes after {consecutive} consecutive venue blocks"
                )
                logger.error(f"Will resume at {resume_at}")
                return BlockDecision(paused=True, backoff_seconds=0.0, consecutive=consecutive)

        delay = min(self.backoff_base * 2 ** attempt, self.backoff_max)
        delay = self.pacer.jittered(delay, self.jitter)
        logger.warning(
            f"Venue blocking detected ({consecutive}/{self.threshold}), "
            f"backing off {delay:.1f}s"
        )
        return BlockDecision(paused=False, backoff_seconds=delay, consecutive=consecutive)
