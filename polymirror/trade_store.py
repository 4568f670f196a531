"""
Persisted trade records

Async SQLAlchemy access to UserActivity rows: ingestion of observed events,
terminal bookkeeping and the purchase ledger queries.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from .api_client import TradeEvent
from .config import TradingConstants
from .models import ExecutionStatus, UserActivity


def _to_event(row: UserActivity) -> TradeEvent:
    return TradeEvent(
        id=row.id,
        trader_address=row.trader_address,
        asset=row.asset,
        condition_id=row.condition_id,
        side=row.side,
        price=row.price,
        size=row.size,
        usdc_size=row.usdc_size,
        timestamp=row.timestamp,
        activity_type=row.activity_type,
        title=row.title or ""
    )


class TradeStore:
    """Trade record store keyed by event id"""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def save_events(self, events: Iterable[TradeEvent]) -> int:
        """Insert events not seen before; returns how many were new"""
        events = list(events)
        if not events:
            return 0

        async with self._sessions() as session:
            result = await session.execute(
                select(UserActivity.id).where(UserActivity.id.in_([e.id for e in events]))
            )
            known = set(result.scalars().all())

            added = 0
            for event in events:
                if event.id in known:
                    continue
                known.add(event.id)
                session.add(UserActivity(
                    id=event.id,
                    trader_address=event.trader_address,
                    asset=event.asset,
                    condition_id=event.condition_id,
                    activity_type=event.activity_type,
                    side=event.side,
                    price=event.price,
                    size=event.size,
                    usdc_size=event.usdc_size,
                    title=event.title,
                    timestamp=event.timestamp,
                    handled=False
                ))
                added += 1

            await session.commit()
            return added

    async def get_event(self, event_id: str) -> Optional[UserActivity]:
        async with self._sessions() as session:
            return await session.get(UserActivity, event_id)

    async def get_unhandled(self, limit: int = 50) -> List[TradeEvent]:
        """Oldest unhandled events first"""
        async with self._sessions() as session:
            result = await session.execute(
                select(UserActivity)
                .where(UserActivity.handled.is_(False))
                .order_by(UserActivity.timestamp.asc())
                .limit(limit)
            )
            return [_to_event(row) for row in result.scalars().all()]

    async def mark_handled(
        self,
        event_id: str,
        status: ExecutionStatus,
        reason: str = "",
        retry_count: Optional[int] = None,
        own_bought_tokens: Optional[float] = None
    ):
        """Terminal bookkeeping for one event"""
        values = {
            "handled": True,
            "execution_status": status.value,
            "status_reason": reason or None,
            "handled_at": datetime.utcnow(),
        }
        if retry_count is not None:
            values["retry_count"] = retry_count
        if own_bought_tokens is not None:
            values["own_bought_tokens"] = own_bought_tokens

        async with self._sessions() as session:
            await session.execute(
                update(UserActivity).where(UserActivity.id == event_id).values(**values)
            )
            await session.commit()

    async def find_tracked_buys(self, asset: str, condition_id: str) -> List[UserActivity]:
        """Handled BUY records that still carry tracked tokens"""
        async with self._sessions() as session:
            result = await session.execute(
                select(UserActivity).where(
                    UserActivity.asset == asset,
                    UserActivity.condition_id == condition_id,
                    UserActivity.side == TradingConstants.BUY,
                    UserActivity.handled.is_(True),
                    UserActivity.own_bought_tokens > 0
                )
            )
            return list(result.scalars().all())

    async def set_bought_tokens(self, updates: Dict[str, float]):
        """Overwrite own_bought_tokens for several records in one transaction"""
        if not updates:
            return
        async with self._sessions() as session:
            for event_id, tokens in updates.items():
                await session.execute(
                    update(UserActivity)
                    .where(UserActivity.id == event_id)
                    .values(own_bought_tokens=tokens)
                )
            await session.commit()

    async def ledger_summary(self) -> List[Dict]:
        """Tracked tokens per instrument, largest first"""
        async with self._sessions() as session:
            total = func.sum(UserActivity.own_bought_tokens)
            result = await session.execute(
                select(
                    UserActivity.asset,
                    UserActivity.condition_id,
                    func.max(UserActivity.title),
                    func.count(UserActivity.id),
                    total
                )
                .where(
                    UserActivity.side == TradingConstants.BUY,
                    UserActivity.handled.is_(True),
                    UserActivity.own_bought_tokens > 0
                )
                .group_by(UserActivity.asset, UserActivity.condition_id)
                .order_by(total.desc())
            )
            return [
                {
                    "asset": asset,
                    "condition_id": condition_id,
                    "title": title or "",
                    "purchases": count,
                    "tokens": tokens or 0.0,
                }
                for asset, condition_id, title, count, tokens in result.all()
            ]

    async def status_counts(self) -> Dict[str, int]:
        """Number of records per execution status, plus pending"""
        async with self._sessions() as session:
            result = await session.execute(
                select(UserActivity.execution_status, func.count(UserActivity.id))
                .group_by(UserActivity.execution_status)
            )
            return {
                (status or "pending"): count
                for status, count in result.all()
            }
