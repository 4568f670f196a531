"""
Polymarket Mirror Trading

Mirrors the trades of selected Polymarket accounts onto our own wallet,
pacing and rate limiting reads, rotating proxies and pausing when the
venue starts blocking.

Modules:
- config: Configuration management
- api_client: Resilient data API client
- humanize / rate_limiter / proxy_manager: Outbound request shaping
- circuit_breaker: Block classification and global pause
- copy_strategy: Copy sizing
- trade_store / ledger: Trade records and purchase tracking
- exchange: CLOB order capability
- trade_executor: Order execution
- trader_tracker: Activity monitor and mirror loop
- main: CLI entry point
"""

__version__ = "0.1.0"

from .config import get_settings, Settings
from .api_client import PolymarketDataClient, ResilientFetcher, TradeEvent, OwnPosition
from .circuit_breaker import CircuitBreaker, RejectionClassifier, ErrorKind, classify_rejection
from .copy_strategy import CopyStrategy, CopyStrategyConfig, calculate_order_size
from .ledger import PurchaseLedger
from .models import UserActivity, ExecutionStatus, init_db
from .trade_store import TradeStore
from .trade_executor import TradeExecutor, ExecutionResult
from .trader_tracker import TradeMonitor, CopyTradingBot

__all__ = [
    # Config
    "get_settings",
    "Settings",
    # API
    "PolymarketDataClient",
    "ResilientFetcher",
    "TradeEvent",
    "OwnPosition",
    # Resilience
    "CircuitBreaker",
    "RejectionClassifier",
    "ErrorKind",
    "classify_rejection",
    # Sizing
    "CopyStrategy",
    "CopyStrategyConfig",
    "calculate_order_size",
    # Storage
    "PurchaseLedger",
    "UserActivity",
    "ExecutionStatus",
    "init_db",
    "TradeStore",
    # Execution
    "TradeExecutor",
    "ExecutionResult",
    "TradeMonitor",
    "CopyTradingBot",
]
