"""
Purchase ledger

Tracks how many tokens our own BUYs acquired per instrument so mirrored
SELLs can be sized against what we bought, not against whatever we hold.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict, List, Tuple

from loguru import logger

from .config import TradingConstants
from .trade_store import TradeStore


@dataclass(frozen=True)
class LedgerEntry:
    """Tokens attributed to one handled BUY"""
    trade_event_id: str
    asset: str
    condition_id: str
    bought_tokens: float


@dataclass(frozen=True)
class TrackedQuantity:
    total: float
    entries: List[LedgerEntry]


class PurchaseLedger:
    """
    Per-instrument tracked quantity over the trade store

    Reads and writes for one (asset, condition_id) must happen inside
    `lock(asset, condition_id)`; the store itself offers no atomic
    read-modify-write.
    """

    def __init__(self, store: TradeStore, clear_fraction: float = TradingConstants.LEDGER_CLEAR_FRACTION):
        self.store = store
        self.clear_fraction = clear_fraction
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._users: Dict[Tuple[str, str], int] = {}

    @asynccontextmanager
    async def lock(self, asset: str, condition_id: str):
        """Mutual exclusion for one instrument"""
        key = (asset, condition_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            # Drop the lock once no holder or waiter is left
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    async def tracked_quantity(self, asset: str, condition_id: str) -> TrackedQuantity:
        rows = await self.store.find_tracked_buys(asset, condition_id)
        entries = [
            LedgerEntry(row.id, row.asset, row.condition_id, row.own_bought_tokens or 0.0)
            for row in rows
        ]
        return TrackedQuantity(sum(e.bought_tokens for e in entries), entries)

    async def apply_sell(self, tracked: TrackedQuantity, sold_tokens: float) -> float:
        """
        Shrink tracked purchases after a sell

        Selling at least `clear_fraction` of the tracked total zeroes every
        entry; otherwise each entry is scaled by (1 - sold fraction).

        Returns:
            The sold fraction of the tracked total
        """
        if sold_tokens <= 0 or tracked.total <= 0:
            return 0.0

        fraction = sold_tokens / tracked.total

        if fraction >= self.clear_fraction:
            await self.store.set_bought_tokens({e.trade_event_id: 0.0 for e in tracked.entries})
            logger.info(f"Cleared purchase tracking (sold {fraction:.1%} of position)")
        else:
            keep = max(0.0, 1 - fraction)
            await self.store.set_bought_tokens({
                e.trade_event_id: e.bought_tokens * keep for e in tracked.entries
            })
            logger.info(f"Updated purchase tracking (sold {fraction:.1%} of tracked position)")

        return fraction
