"""
Trader Tracker Module

Watches the mirrored traders' activity through the data API, stores new
TRADE and MERGE events and feeds them, oldest first, to the executor.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional

from loguru import logger

from .api_client import OwnPosition, PolymarketDataClient, TradeEvent
from .circuit_breaker import CircuitBreaker, Classification, classify_rejection
from .config import Settings, TradingConstants, get_settings
from .exceptions import FetchError, HTTPStatusError
from .onchain_client import OnChainClient
from .trade_executor import ExecutionResult, TradeExecutor
from .trade_store import TradeStore


def report_fetch_error(
    error: FetchError,
    breaker: Optional[CircuitBreaker],
    classifier: Callable[..., Classification] = classify_rejection
):
    """Log a failed read; block signatures count towards the pause"""
    logger.warning(f"Read failed: {error}")
    if breaker is None or not isinstance(error, HTTPStatusError):
        return
    if classifier(error.as_response()).is_block:
        breaker.record_block()


def find_position(positions: List[OwnPosition], event: TradeEvent) -> Optional[OwnPosition]:
    """Position in the event's instrument, if any"""
    for position in positions:
        if position.asset == event.asset and position.condition_id == event.condition_id:
            return position
    return None


def trade_condition(event: TradeEvent) -> str:
    """merge, buy or sell"""
    if event.activity_type == TradingConstants.ACTIVITY_MERGE:
        return "merge"
    if event.side == TradingConstants.BUY:
        return "buy"
    return "sell"


class TradeMonitor:
    """
    Polls tracked traders and stores their new activity
    """

    def __init__(
        self,
        data_client: PolymarketDataClient,
        store: TradeStore,
        settings: Optional[Settings] = None,
        breaker: Optional[CircuitBreaker] = None,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.settings = settings or get_settings()
        self.data_client = data_client
        self.store = store
        self.breaker = breaker
        self._clock = clock

    async def poll_once(self) -> int:
        """
        Fetch activity for every tracked address

        Returns:
            Number of newly stored events
        """
        cutoff = self._clock() - timedelta(hours=self.settings.too_old_timestamp_hours)
        added = 0

        for address in self.settings.tracked_addresses:
            try:
                events = await self.data_client.get_activity(address)
            except FetchError as e:
                report_fetch_error(e, self.breaker)
                continue

            fresh = [e for e in events if e.timestamp >= cutoff]
            new = await self.store.save_events(fresh)
            if new:
                logger.info(f"New activity: {new} event(s) from {address[:10]}...")
            added += new

        return added


class CopyTradingBot:
    """
    Main mirror loop: poll, then execute pending events serially
    """

    def __init__(
        self,
        monitor: TradeMonitor,
        executor: TradeExecutor,
        balance_client: OnChainClient,
        settings: Optional[Settings] = None,
        classifier: Callable[..., Classification] = classify_rejection,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.settings = settings or get_settings()
        self.monitor = monitor
        self.executor = executor
        self.balance_client = balance_client
        self.classifier = classifier
        self._sleep = sleep
        self._running = False

    @property
    def data_client(self) -> PolymarketDataClient:
        return self.monitor.data_client

    @property
    def store(self) -> TradeStore:
        return self.monitor.store

    async def process_pending(self) -> List[ExecutionResult]:
        """Execute unhandled events in timestamp order"""
        events = await self.store.get_unhandled()
        results = []
        wallet = self.settings.proxy_wallet

        for event in events:
            logger.info(
                f"{event.trader_address[:10]}... {event.activity_type} {event.side} "
                f"${event.usdc_size:.2f} @ {event.price} - {event.title or event.asset[:12]}"
            )
            try:
                my_positions = await self.data_client.get_positions(wallet)
                user_positions = await self.data_client.get_positions(event.trader_address)
            except FetchError as e:
                report_fetch_error(e, self.executor.breaker, self.classifier)
                logger.warning("Skipping execution cycle; pending events stay queued")
                break

            my_balance = await self.balance_client.get_usdc_balance(wallet)
            result = await self.executor.execute(
                event,
                trade_condition(event),
                my_position=find_position(my_positions, event),
                user_position=find_position(user_positions, event),
                my_balance=my_balance
            )
            results.append(result)

        return results

    async def run(self):
        """Run until stopped"""
        self._running = True
        logger.info(
            f"Mirroring {len(self.settings.tracked_addresses)} trader(s), "
            f"polling every {self.settings.poll_interval}s"
        )

        while self._running:
            try:
                await self.monitor.poll_once()
                await self.process_pending()
            except Exception as e:
                logger.exception(f"Error in mirror loop: {e}")

            if self._running:
                await self._sleep(self.settings.poll_interval)

        logger.info("Mirror loop stopped")

    def stop(self):
        """Stop after the current event"""
        self._running = False
