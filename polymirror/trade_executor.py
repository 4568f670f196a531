"""
Trade Execution Module

Per-event order execution: merge, buy and sell strategies that walk the
order book with fill-or-kill orders, track partial fills across attempts,
back away from venue blocking and keep the purchase ledger current.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Union

from loguru import logger

from .api_client import OwnPosition, TradeEvent
from .circuit_breaker import (
    CircuitBreaker, Classification, ErrorKind, classify_rejection
)
from .config import Settings, TradingConstants, get_settings
from .copy_strategy import CopyStrategyConfig, calculate_order_size, get_trade_multiplier
from .exceptions import ExchangeError
from .exchange import ClobExchange, OrderBook
from .humanize import Pacer
from .ledger import PurchaseLedger
from .models import ExecutionStatus
from .trade_store import TradeStore

# Float noise allowance when comparing prices
PRICE_EPSILON = 1e-9


@dataclass
class ExecutionResult:
    """Outcome of handling one trade event"""
    status: ExecutionStatus
    reason: str = ""
    orders_placed: int = 0
    filled: float = 0.0
    bought_tokens: float = 0.0
    sold_tokens: float = 0.0
    retry_count: int = 0
    retries_exhausted: bool = False

    @property
    def label(self) -> str:
        """executed, paused or skipped:<reason>"""
        if self.status == ExecutionStatus.SKIPPED:
            return f"skipped:{self.reason}"
        return self.status.value


@dataclass
class _Order:
    amount: float
    price: float


@dataclass
class _Stop:
    reason: str
    complete: bool = False


class _Attempt:
    """Mutable bookkeeping while one event is being executed"""

    def __init__(self):
        self.orders_placed = 0
        self.fills = 0
        self.filled = 0.0
        self.bought_tokens = 0.0
        self.sold_tokens = 0.0
        self.retry = 0
        self.exhausted = False
        self.paused = False
        self.reason = ""

    def stop(self, reason: str):
        self.reason = reason

    def pause(self, reason: str):
        self.paused = True
        self.reason = reason

    def result(self) -> ExecutionResult:
        if self.paused:
            status = ExecutionStatus.PAUSED
        elif self.fills > 0:
            status = ExecutionStatus.EXECUTED
        else:
            status = ExecutionStatus.SKIPPED
        return ExecutionResult(
            status=status,
            reason=self.reason,
            orders_placed=self.orders_placed,
            filled=self.filled,
            bought_tokens=self.bought_tokens,
            sold_tokens=self.sold_tokens,
            retry_count=self.retry,
            retries_exhausted=self.exhausted
        )


Plan = Callable[[OrderBook, float], Union[_Order, _Stop]]


class TradeExecutor:
    """
    Executes mirrored trades on Polymarket

    Every event handed to `execute` is marked handled exactly once,
    whatever the outcome, so nothing is retried indefinitely.
    """

    def __init__(
        self,
        exchange: ClobExchange,
        store: TradeStore,
        ledger: PurchaseLedger,
        breaker: CircuitBreaker,
        strategy_config: Optional[CopyStrategyConfig] = None,
        settings: Optional[Settings] = None,
        pacer: Optional[Pacer] = None,
        classifier: Callable[..., Classification] = classify_rejection
    ):
        self.settings = settings or get_settings()
        self.exchange = exchange
        self.store = store
        self.ledger = ledger
        self.breaker = breaker
        self.strategy_config = strategy_config or CopyStrategyConfig.from_settings(self.settings)
        self.pacer = pacer or Pacer()
        self.classifier = classifier

    async def execute(
        self,
        event: TradeEvent,
        condition: str,
        my_position: Optional[OwnPosition] = None,
        user_position: Optional[OwnPosition] = None,
        my_balance: float = 0.0
    ) -> ExecutionResult:
        """
        Mirror one trade event

        Args:
            event: The trader's action
            condition: "merge", "buy" or "sell"
            my_position: Our holding in the event's instrument
            user_position: The trader's remaining holding after the event
            my_balance: Our spendable USDC

        Returns:
            ExecutionResult with the terminal status
        """
        attempt = _Attempt()

        if self.breaker.is_paused():
            minutes = self.breaker.remaining_seconds() / 60
            logger.warning(f"Trading paused due to venue blocking. Resuming in {minutes:.0f} minute(s)...")
            attempt.pause("paused due to venue blocking")
        else:
            handlers = {"merge": self._merge, "buy": self._buy, "sell": self._sell}
            handler = handlers.get(condition)
            if handler is None:
                logger.error(f"Unknown condition: {condition}")
                attempt.stop(f"unknown condition {condition}")
            else:
                logger.info(f"Executing {condition.upper()} strategy...")
                try:
                    await handler(event, attempt, my_position, user_position, my_balance)
                except Exception as e:
                    logger.exception(f"Unexpected error executing {event.id}: {e}")
                    attempt.stop(f"error: {e}")

        result = attempt.result()
        await self._finish(event, condition, result)
        return result

    async def liquidate(self, position: OwnPosition) -> ExecutionResult:
        """Sell an entire position without a trade record"""
        attempt = _Attempt()
        if self.breaker.is_paused():
            attempt.pause("paused due to venue blocking")
        elif position.size < self.settings.min_order_size_tokens:
            attempt.stop("position below minimum")
        else:
            await self._walk_bids(position.asset, position.size, attempt)
        return attempt.result()

    # ==================== Strategies ====================

    async def _merge(self, event, attempt, my_position, user_position, my_balance):
        if not my_position or my_position.size <= 0:
            logger.warning("No position to merge")
            attempt.stop("no position to merge")
            return

        if my_position.size < self.settings.min_order_size_tokens:
            logger.warning(
                f"Position size ({my_position.size:.2f} tokens) too small to merge - skipping"
            )
            attempt.stop("position below minimum")
            return

        await self._walk_bids(my_position.asset, my_position.size, attempt)

    async def _buy(self, event, attempt, my_position, user_position, my_balance):
        logger.info(f"Your balance: ${my_balance:.2f}")
        logger.info(f"Trader bought: ${event.usdc_size:.2f}")

        current_value = my_position.cost_basis if my_position else 0.0
        calc = calculate_order_size(self.strategy_config, event.usdc_size, my_balance, current_value)
        logger.info(calc.reasoning)

        if calc.final_amount == 0:
            logger.warning(f"Cannot execute: {calc.reasoning}")
            attempt.stop(calc.reasoning)
            return

        min_usd = self.settings.min_order_size_usd
        tolerance = self.settings.slippage_tolerance

        def plan(book: OrderBook, remaining: float) -> Union[_Order, _Stop]:
            best = book.best_ask()
            if best is None:
                logger.warning("No asks available in order book")
                return _Stop("no asks available")

            logger.info(f"Best ask: {best.size} @ ${best.price}")
            if best.price - event.price > tolerance + PRICE_EPSILON:
                logger.warning("Price slippage too high - skipping trade")
                return _Stop("price slippage too high")

            if remaining < min_usd:
                logger.info(f"Remaining amount (${remaining:.2f}) below minimum - completing trade")
                return _Stop("remaining below minimum", complete=True)

            amount = min(remaining, best.size * best.price)
            logger.info(f"Creating order: ${amount:.2f} @ ${best.price} (Balance: ${my_balance:.2f})")
            return _Order(amount, best.price)

        def on_fill(order: _Order) -> float:
            tokens = order.amount / order.price
            attempt.bought_tokens += tokens
            attempt.filled += tokens
            logger.success(f"Bought ${order.amount:.2f} at ${order.price} ({tokens:.2f} tokens)")
            return order.amount

        await self._order_loop(event.asset, TradingConstants.BUY, calc.final_amount, plan, on_fill, attempt)

        if attempt.bought_tokens > 0:
            logger.info(
                f"Tracked purchase: {attempt.bought_tokens:.2f} tokens for future sell calculations"
            )

    async def _sell(self, event, attempt, my_position, user_position, my_balance):
        if not my_position or my_position.size <= 0:
            logger.warning("No position to sell")
            attempt.stop("no position to sell")
            return

        async with self.ledger.lock(event.asset, event.condition_id):
            tracked = await self.ledger.tracked_quantity(event.asset, event.condition_id)
            if tracked.total > 0:
                logger.info(
                    f"Found {len(tracked.entries)} previous purchases: "
                    f"{tracked.total:.2f} tokens bought"
                )

            amount = self.sell_amount(event, my_position, user_position, tracked.total)

            if amount < self.settings.min_order_size_tokens:
                logger.warning(
                    f"Cannot execute: Sell amount {amount:.2f} tokens below minimum "
                    f"({self.settings.min_order_size_tokens} token)"
                )
                attempt.stop("sell amount below minimum")
                return

            if amount > my_position.size:
                logger.warning(
                    f"Calculated sell {amount:.2f} tokens > your position "
                    f"{my_position.size:.2f} tokens, capping"
                )
                amount = my_position.size

            try:
                await self._walk_bids(event.asset, amount, attempt)
            finally:
                if attempt.sold_tokens > 0 and tracked.total > 0:
                    await self.ledger.apply_sell(tracked, attempt.sold_tokens)

    def sell_amount(
        self,
        event: TradeEvent,
        my_position: OwnPosition,
        user_position: Optional[OwnPosition],
        tracked_total: float
    ) -> float:
        """
        Tokens to sell when mirroring a SELL

        The trader's sold fraction is applied to our tracked purchases, or
        to our current holding when nothing is tracked. A full exit by the
        trader copies 100% and ignores the size multiplier.
        """
        if user_position is None or user_position.size <= 0:
            fraction = 1.0
            multiplier = 1.0
            logger.info("Trader closed entire position → selling all tracked tokens")
        else:
            before = user_position.size + event.size
            fraction = event.size / before if before > 0 else 1.0
            multiplier = get_trade_multiplier(self.strategy_config, event.usdc_size)
            logger.info(
                f"Trader selling: {event.size:.2f} of {before:.2f} tokens "
                f"({fraction:.2%} of their position)"
            )

        if tracked_total > 0:
            base = tracked_total * fraction
            logger.info(
                f"Calculating from tracked purchases: {tracked_total:.2f} × {fraction:.2%} = {base:.2f} tokens"
            )
        else:
            base = my_position.size * fraction
            logger.warning(
                f"No tracked purchases found, using current position: "
                f"{my_position.size:.2f} × {fraction:.2%} = {base:.2f} tokens"
            )

        amount = base * multiplier
        if multiplier != 1.0:
            logger.info(
                f"Applying {multiplier}x multiplier (trader's ${event.usdc_size:.2f} order): "
                f"{base:.2f} → {amount:.2f} tokens"
            )
        return amount

    # ==================== Book walking ====================

    async def _walk_bids(self, asset: str, amount: float, attempt: _Attempt):
        """Sell `amount` tokens into the best bids"""
        min_tokens = self.settings.min_order_size_tokens

        def plan(book: OrderBook, remaining: float) -> Union[_Order, _Stop]:
            best = book.best_bid()
            if best is None:
                logger.warning("No bids available in order book")
                return _Stop("no bids available")

            logger.info(f"Best bid: {best.size} @ ${best.price}")
            if remaining < min_tokens:
                logger.info(f"Remaining amount ({remaining:.2f} tokens) below minimum - completing trade")
                return _Stop("remaining below minimum", complete=True)

            size = min(remaining, best.size)
            if size < min_tokens:
                logger.info(f"Order amount ({size:.2f} tokens) below minimum - completing trade")
                return _Stop("order amount below minimum", complete=True)
            return _Order(size, best.price)

        def on_fill(order: _Order) -> float:
            attempt.sold_tokens += order.amount
            attempt.filled += order.amount
            logger.success(f"Sold {order.amount:.2f} tokens at ${order.price}")
            return order.amount

        await self._order_loop(asset, TradingConstants.SELL, amount, plan, on_fill, attempt)

    async def _desync(self):
        """Short jittered delay between venue calls"""
        await self.pacer.jitter(self.settings.order_delay_seconds, self.settings.order_jitter_seconds)

    async def _order_loop(
        self,
        asset: str,
        side: str,
        remaining: float,
        plan: Plan,
        on_fill: Callable[[_Order], float],
        attempt: _Attempt
    ) -> float:
        """
        Fetch book, plan, submit; repeat until filled or out of retries

        Returns:
            The unfilled remainder
        """
        limit = self.settings.retry_limit

        while remaining > 0 and attempt.retry < limit:
            if self.breaker.is_paused():
                logger.warning("Trading paused mid-execution, abandoning remaining orders")
                attempt.pause("paused due to venue blocking")
                return remaining

            if attempt.retry > 0:
                await self._desync()

            try:
                book = await self.exchange.get_order_book(asset)
            except ExchangeError as e:
                attempt.retry += 1
                logger.warning(f"Order book unavailable (attempt {attempt.retry}/{limit}) - {e}")
                continue

            step = plan(book, remaining)
            if isinstance(step, _Stop):
                if not (step.complete and attempt.fills):
                    attempt.stop(step.reason)
                return remaining

            try:
                signed = await self.exchange.create_order(side, asset, step.amount, step.price)
            except ExchangeError as e:
                attempt.retry += 1
                logger.warning(f"Order build failed (attempt {attempt.retry}/{limit}) - {e}")
                continue

            await self._desync()

            response = await self.exchange.submit_order(signed, fill_or_kill=True)
            attempt.orders_placed += 1

            if response.get("success") is True:
                attempt.retry = 0
                attempt.fills += 1
                self.breaker.record_success()
                remaining -= on_fill(step)
                if remaining > 0:
                    await self._desync()
                continue

            classification = self.classifier(response)

            if classification.kind == ErrorKind.VENUE_BLOCK:
                decision = self.breaker.record_block(attempt.retry)
                if decision.paused:
                    logger.error("Venue is blocking this IP; abandoning the trade")
                    attempt.pause("venue block threshold reached")
                    return remaining

                await self.pacer.sleep(decision.backoff_seconds)
                attempt.retry += 1
                if attempt.retry >= limit:
                    logger.error("Max retries reached for venue blocking. Marking trade as failed.")
                continue

            self.breaker.record_rejection()

            if classification.kind == ErrorKind.INSUFFICIENT_FUNDS:
                logger.warning(
                    f"Order rejected: {classification.message or 'Insufficient balance or allowance'}"
                )
                logger.warning("Skipping remaining attempts. Top up funds or approve allowance before retrying.")
                attempt.stop("insufficient balance or allowance")
                return remaining

            attempt.retry += 1
            detail = f" - {classification.message}" if classification.message else ""
            logger.warning(f"Order failed (attempt {attempt.retry}/{limit}){detail}")

        if remaining > 0 and attempt.retry >= limit:
            attempt.exhausted = True
            attempt.stop("retry budget exhausted")
        return remaining

    # ==================== Bookkeeping ====================

    async def _finish(self, event: TradeEvent, condition: str, result: ExecutionResult):
        retry_count = result.retry_count if result.retries_exhausted else None

        if condition == "buy":
            async with self.ledger.lock(event.asset, event.condition_id):
                await self.store.mark_handled(
                    event.id, result.status, result.reason,
                    retry_count=retry_count,
                    own_bought_tokens=result.bought_tokens
                )
        else:
            await self.store.mark_handled(
                event.id, result.status, result.reason, retry_count=retry_count
            )

        logger.info(f"Trade {event.id[:18]}... handled: {result.label}")
