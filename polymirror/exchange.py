"""
Exchange order capability

Thin async wrapper over py-clob-client. Signing happens inside the SDK;
this module only reads books, builds fill-or-kill market orders and posts
them, normalising SDK failures into response dicts the rejection
classifier understands.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from loguru import logger
from py_clob_client.client import ClobClient
from py_clob_client.clob_types import MarketOrderArgs, OrderType
from py_clob_client.exceptions import PolyApiException
from py_clob_client.order_builder.constants import BUY, SELL

from .config import Settings, TradingConstants, get_settings
from .exceptions import ExchangeError


@dataclass(frozen=True)
class BookLevel:
    price: float
    size: float


@dataclass
class OrderBook:
    """Order book snapshot for one token"""
    asset: str
    bids: List[BookLevel]
    asks: List[BookLevel]

    @classmethod
    def from_dict(cls, data: Any, asset: str) -> "OrderBook":
        """Create OrderBook from an SDK summary or a raw API dict"""
        def levels(side):
            raw = data.get(side, []) if isinstance(data, dict) else getattr(data, side, None)
            parsed = []
            for level in raw or []:
                price = level["price"] if isinstance(level, dict) else level.price
                size = level["size"] if isinstance(level, dict) else level.size
                parsed.append(BookLevel(float(price), float(size)))
            return parsed

        return cls(asset=asset, bids=levels("bids"), asks=levels("asks"))

    def best_bid(self) -> Optional[BookLevel]:
        """Highest priced bid; books are not assumed sorted"""
        return max(self.bids, key=lambda level: level.price) if self.bids else None

    def best_ask(self) -> Optional[BookLevel]:
        """Lowest priced ask"""
        return min(self.asks, key=lambda level: level.price) if self.asks else None


class ClobExchange:
    """
    Order placement through the Polymarket CLOB
    """

    def __init__(self, settings: Optional[Settings] = None, client: Optional[ClobClient] = None):
        self.settings = settings or get_settings()
        self._client = client

    @property
    def is_ready(self) -> bool:
        return self._client is not None

    async def connect(self):
        """Build the CLOB client and derive API credentials"""
        if self._client is not None:
            return
        if not self.settings.private_key:
            raise ExchangeError("No private key configured")

        def _build() -> ClobClient:
            client = ClobClient(
                host=self.settings.clob_host,
                key=self.settings.private_key,
                chain_id=self.settings.chain_id,
                signature_type=self.settings.signature_type,
                funder=self.settings.proxy_wallet or None
            )
            client.set_api_creds(client.create_or_derive_api_creds())
            return client

        self._client = await asyncio.to_thread(_build)
        logger.info("CLOB client initialized")

    def _require_client(self) -> ClobClient:
        if self._client is None:
            raise ExchangeError("Exchange not connected")
        return self._client

    async def get_order_book(self, asset: str) -> OrderBook:
        client = self._require_client()
        try:
            summary = await asyncio.to_thread(client.get_order_book, asset)
        except PolyApiException as e:
            raise ExchangeError(f"Order book unavailable: {e.error_msg}", e.status_code) from e
        return OrderBook.from_dict(summary, asset)

    async def create_order(self, side: str, asset: str, amount: float, price: float) -> Any:
        """
        Build a signed fill-or-kill market order

        Args:
            side: "BUY" (amount in USD) or "SELL" (amount in tokens)
            asset: Token id
            amount: Order amount
            price: Worst acceptable price
        """
        client = self._require_client()
        args = MarketOrderArgs(
            token_id=asset,
            amount=amount,
            side=BUY if side == TradingConstants.BUY else SELL,
            price=price,
            order_type=OrderType.FOK
        )
        try:
            return await asyncio.to_thread(client.create_market_order, args)
        except PolyApiException as e:
            raise ExchangeError(f"Order build failed: {e.error_msg}", e.status_code) from e

    async def submit_order(self, signed_order: Any, fill_or_kill: bool = True) -> Dict:
        """Post a signed order; failures come back as success=False dicts"""
        client = self._require_client()
        order_type = OrderType.FOK if fill_or_kill else OrderType.GTC
        try:
            response = await asyncio.to_thread(client.post_order, signed_order, order_type)
        except PolyApiException as e:
            return {
                "success": False,
                "status": e.status_code,
                "error": e.error_msg if isinstance(e.error_msg, (str, dict)) else str(e.error_msg),
                "network_error": e.status_code is None,
            }
        if not isinstance(response, dict):
            return {"success": False, "error": str(response)}
        return response
