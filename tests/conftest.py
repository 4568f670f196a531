"""Pytest fixtures and fakes for the polymirror test suite."""
import random
from datetime import datetime
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from polymirror.api_client import OwnPosition, TradeEvent
from polymirror.circuit_breaker import CircuitBreaker
from polymirror.config import Settings
from polymirror.copy_strategy import CopyStrategyConfig
from polymirror.exceptions import ExchangeError
from polymirror.exchange import BookLevel, OrderBook
from polymirror.humanize import Pacer
from polymirror.ledger import PurchaseLedger
from polymirror.models import init_db
from polymirror.trade_executor import TradeExecutor
from polymirror.trade_store import TradeStore


# =============================================================================
# Time Fakes
# =============================================================================

class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeSleep:
    """Records requested sleeps and moves a FakeClock forward instead of waiting."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock
        self.calls: List[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep(clock):
    return FakeSleep(clock)


@pytest.fixture
def pacer(fake_sleep):
    """Pacer that never really waits."""
    return Pacer(rng=random.Random(7), sleep=fake_sleep)


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        private_key="",
        proxy_wallet="0xme",
        user_addresses="0xTrader",
        evasion_enabled=False,
        retry_limit=3,
        network_retry_limit=3,
        log_file="",
        database_url="sqlite+aiosqlite://"
    )


@pytest.fixture
def strategy_config():
    """10% copy, $100 cap, no multipliers."""
    return CopyStrategyConfig(copy_size=10.0, max_order_size_usd=100.0)


# =============================================================================
# Storage Fixtures
# =============================================================================

@pytest_asyncio.fixture
async def store():
    """In-memory trade store."""
    engine = await init_db("sqlite+aiosqlite://")
    yield TradeStore(engine)
    await engine.dispose()


@pytest.fixture
def ledger(store):
    return PurchaseLedger(store)


# =============================================================================
# Exchange Fake
# =============================================================================

def book(bids=(), asks=(), asset: str = "token-1") -> OrderBook:
    """Build an OrderBook from (price, size) tuples."""
    return OrderBook(
        asset=asset,
        bids=[BookLevel(price, size) for price, size in bids],
        asks=[BookLevel(price, size) for price, size in asks]
    )


class FakeExchange:
    """
    Scripted exchange.

    `books` are served in order, the last one repeating. `responses` are
    returned for successive submissions; once exhausted every order fills.
    """

    def __init__(self, books: Optional[List] = None, responses: Optional[List[Dict]] = None):
        self.books = list(books or [book()])
        self.responses = list(responses or [])
        self.created: List[Dict] = []
        self.submitted: List[Dict] = []
        self.book_requests = 0

    async def get_order_book(self, asset: str) -> OrderBook:
        self.book_requests += 1
        current = self.books.pop(0) if len(self.books) > 1 else self.books[0]
        if isinstance(current, Exception):
            raise current
        return current

    async def create_order(self, side: str, asset: str, amount: float, price: float) -> Dict:
        order = {"side": side, "asset": asset, "amount": amount, "price": price}
        self.created.append(order)
        return order

    async def submit_order(self, signed_order, fill_or_kill: bool = True) -> Dict:
        self.submitted.append(signed_order)
        if self.responses:
            return self.responses.pop(0)
        return {"success": True, "orderID": f"order-{len(self.submitted)}"}


def book_error(message: str = "book unavailable") -> ExchangeError:
    return ExchangeError(message, 500)


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(clock=clock, pacer=Pacer(rng=random.Random(3)))


@pytest.fixture
def make_executor(store, ledger, breaker, strategy_config, settings, pacer):
    """Factory building a TradeExecutor over a FakeExchange."""
    def _make(exchange: FakeExchange, **overrides) -> TradeExecutor:
        return TradeExecutor(
            exchange,
            overrides.get("store", store),
            overrides.get("ledger", ledger),
            overrides.get("breaker", breaker),
            strategy_config=overrides.get("strategy_config", strategy_config),
            settings=overrides.get("settings", settings),
            pacer=overrides.get("pacer", pacer)
        )
    return _make


# =============================================================================
# Domain Builders
# =============================================================================

def make_event(
    side: str = "BUY",
    price: float = 0.5,
    size: float = 200.0,
    usdc_size: float = 100.0,
    event_id: str = "0xtx:token-1:BUY",
    activity_type: str = "TRADE",
    asset: str = "token-1",
    condition_id: str = "cond-1",
    timestamp: Optional[datetime] = None,
    trader: str = "0xtrader"
) -> TradeEvent:
    return TradeEvent(
        id=event_id,
        trader_address=trader,
        asset=asset,
        condition_id=condition_id,
        side=side,
        price=price,
        size=size,
        usdc_size=usdc_size,
        timestamp=timestamp or datetime.utcnow(),
        activity_type=activity_type,
        title="Will it rain?"
    )


def make_position(size: float, asset: str = "token-1", condition_id: str = "cond-1",
                  avg_price: float = 0.5) -> OwnPosition:
    return OwnPosition(asset=asset, condition_id=condition_id, size=size, avg_price=avg_price)
