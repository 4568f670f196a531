"""
Polymarket API Client Module

Resilient reads against the Polymarket data API. Every attempt is rate
limited, paced like a human and sent through a rotating proxy; network
failures are retried with exponential backoff.
"""

import asyncio
import errno
import random
import socket
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp
from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import APIEndpoints, Settings, TradingConstants, get_settings
from .exceptions import HTTPStatusError, NetworkError
from .humanize import Pacer, RequestClass
from .proxy_manager import ProxyIdentity, ProxyRotator, proxy_headers, parse_proxy_list
from .rate_limiter import SlidingWindowRateLimiter


@dataclass(frozen=True)
class TradeEvent:
    """One action taken by a mirrored account"""
    id: str
    trader_address: str
    asset: str
    condition_id: str
    side: str
    price: float
    size: float
    usdc_size: float
    timestamp: datetime
    activity_type: str = TradingConstants.ACTIVITY_TRADE
    title: str = ""

    @classmethod
    def from_dict(cls, data: Dict, trader_address: str) -> "TradeEvent":
        """Create TradeEvent from a data API activity entry"""
        asset = data.get("asset", "")
        tx_hash = data.get("transactionHash", "")
        return cls(
            id=f"{tx_hash}:{asset}:{data.get('side', '')}",
            trader_address=trader_address.lower(),
            asset=asset,
            condition_id=data.get("conditionId", ""),
            side=(data.get("side") or "").upper(),
            price=float(data.get("price") or 0),
            size=float(data.get("size") or 0),
            usdc_size=float(data.get("usdcSize") or 0),
            timestamp=datetime.fromtimestamp(int(data.get("timestamp", 0)), tz=timezone.utc)
                .replace(tzinfo=None),
            activity_type=(data.get("type") or TradingConstants.ACTIVITY_TRADE).upper(),
            title=data.get("title") or ""
        )


@dataclass
class OwnPosition:
    """Current holding in one instrument"""
    asset: str
    condition_id: str
    size: float
    avg_price: float = 0.0
    current_value: float = 0.0
    cur_price: float = 0.0
    title: str = ""
    outcome: str = ""

    @classmethod
    def from_dict(cls, data: Dict) -> "OwnPosition":
        """Create OwnPosition from a data API positions entry"""
        return cls(
            asset=data.get("asset", ""),
            condition_id=data.get("conditionId", ""),
            size=float(data.get("size") or 0),
            avg_price=float(data.get("avgPrice") or 0),
            current_value=float(data.get("currentValue") or 0),
            cur_price=float(data.get("curPrice") or 0),
            title=data.get("title") or "",
            outcome=data.get("outcome") or ""
        )

    @property
    def cost_basis(self) -> float:
        return self.size * self.avg_price


# Share of proxied successes that get logged
PROXY_LOG_SAMPLE = 0.1

NETWORK_EXCEPTIONS = (
    asyncio.TimeoutError,
    aiohttp.ClientConnectionError,
    aiohttp.ClientPayloadError,
)


def network_error_code(exc: BaseException) -> str:
    """Short code for a network failure, e.g. ETIMEDOUT or ECONNRESET"""
    if isinstance(exc, asyncio.TimeoutError):
        return "ETIMEDOUT"
    os_error = getattr(exc, "os_error", None) or exc
    code = getattr(os_error, "errno", None)
    if isinstance(code, int) and code in errno.errorcode:
        return errno.errorcode[code]
    return type(exc).__name__


class ResilientFetcher:
    """
    GET JSON with pacing, rate limiting, proxy rotation and retries

    Only network-class failures are retried. An HTTP error status surfaces
    immediately as HTTPStatusError.
    """

    RETRY_BASE_SECONDS = 1.0

    def __init__(
        self,
        settings: Optional[Settings] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        proxy_rotator: Optional[ProxyRotator] = None,
        pacer: Optional[Pacer] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None
    ):
        self.settings = settings or get_settings()
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            max_requests=self.settings.rate_limit_max_requests,
            window_seconds=self.settings.rate_limit_window_seconds
        )
        self.proxy_rotator = proxy_rotator or ProxyRotator(
            parse_proxy_list(self.settings.proxies),
            rotation_seconds=self.settings.proxy_rotation_minutes * 60,
            cooldown_seconds=self.settings.proxy_cooldown_minutes * 60
        )
        self.pacer = pacer or Pacer()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(family=socket.AF_INET),
                timeout=aiohttp.ClientTimeout(total=self.settings.request_timeout_ms / 1000)
            )
        return self._session

    async def close(self):
        """Close the HTTP session"""
        if self._session and not self._session.closed:
            await self._session.close()

    async def fetch(
        self,
        url: str,
        request_class: RequestClass = RequestClass.READ,
        params: Optional[Dict] = None
    ) -> Any:
        """
        Fetch JSON from url

        Args:
            url: Absolute URL to GET
            request_class: Pacing profile for the request
            params: Query parameters

        Returns:
            Decoded JSON body

        Raises:
            NetworkError: every attempt failed at the network level
            HTTPStatusError: the server answered with an error status
        """
        attempts = max(1, self.settings.network_retry_limit)
        evasion = self.settings.evasion_enabled

        def log_retry(retry_state: RetryCallState):
            code = network_error_code(retry_state.outcome.exception())
            logger.warning(
                f"Network error {code} (attempt {retry_state.attempt_number}/{attempts}), "
                f"retrying in {retry_state.next_action.sleep:.0f}s..."
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=self.RETRY_BASE_SECONDS, exp_base=2),
            retry=retry_if_exception_type(NETWORK_EXCEPTIONS),
            sleep=self._sleep,
            before_sleep=log_retry,
            reraise=True
        )

        try:
            async for attempt in retrying:
                with attempt:
                    data = await self._attempt(url, request_class, params, evasion)
        except NETWORK_EXCEPTIONS as e:
            code = network_error_code(e)
            logger.error(f"Network timeout after {attempts} attempts - {code}")
            raise NetworkError(url, code, attempts) from e

        return data

    async def _attempt(
        self,
        url: str,
        request_class: RequestClass,
        params: Optional[Dict],
        evasion: bool
    ) -> Any:
        """One paced, rate limited and proxied GET"""
        if evasion:
            await self.rate_limiter.admit()
            await self.pacer.pause(request_class)

        proxy = self.proxy_rotator.current() if evasion else None
        headers = proxy_headers(proxy) if evasion else {
            "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
        }

        data = await self._request(url, params, proxy, headers)
        if proxy and self._rng.random() < PROXY_LOG_SAMPLE:
            logger.info(f"Request successful via proxy: {proxy.label}")
        return data

    async def _request(
        self,
        url: str,
        params: Optional[Dict],
        proxy: Optional[ProxyIdentity],
        headers: Dict[str, str]
    ) -> Any:
        """Single GET attempt"""
        session = await self._get_session()

        kwargs: Dict[str, Any] = {"params": params, "headers": headers}
        if proxy:
            kwargs["proxy"] = f"http://{proxy.host}:{proxy.port}"
            if proxy.username and proxy.password:
                kwargs["proxy_auth"] = aiohttp.BasicAuth(proxy.username, proxy.password)

        async with session.get(url, **kwargs) as response:
            if response.status >= 400:
                body = await response.text()
                raise HTTPStatusError(url, response.status, body, response.reason or "")
            return await response.json(content_type=None)


class PolymarketDataClient:
    """
    Positions and activity from the Polymarket data API
    """

    def __init__(self, fetcher: ResilientFetcher, settings: Optional[Settings] = None):
        self.fetcher = fetcher
        self.settings = settings or fetcher.settings
        self.data_host = self.settings.data_api_host.rstrip("/")

    async def get_positions(self, address: str) -> List[OwnPosition]:
        """
        Get open positions for a wallet

        Args:
            address: Wallet address

        Returns:
            List of OwnPosition objects
        """
        url = f"{self.data_host}{APIEndpoints.POSITIONS}"
        data = await self.fetcher.fetch(url, RequestClass.READ, params={"user": address})
        if not isinstance(data, list):
            return []
        return [OwnPosition.from_dict(p) for p in data]

    async def get_activity(self, address: str, limit: int = 100) -> List[TradeEvent]:
        """Get recent TRADE and MERGE activity for a wallet"""
        url = f"{self.data_host}{APIEndpoints.ACTIVITY}"
        data = await self.fetcher.fetch(
            url, RequestClass.READ, params={"user": address, "limit": limit}
        )
        if not isinstance(data, list):
            return []

        wanted = (TradingConstants.ACTIVITY_TRADE, TradingConstants.ACTIVITY_MERGE)
        return [
            TradeEvent.from_dict(item, address)
            for item in data
            if (item.get("type") or "").upper() in wanted
        ]

    async def close(self):
        await self.fetcher.close()
