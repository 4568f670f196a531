"""
Database Models for the Polymarket mirror trading system

Uses SQLAlchemy for ORM with async support
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column, String, Float, Integer, Boolean, DateTime, Text, Index
)
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool
import enum

from .config import get_settings

Base = declarative_base()


class ExecutionStatus(enum.Enum):
    """Terminal status of a handled trade event"""
    EXECUTED = "executed"
    SKIPPED = "skipped"
    PAUSED = "paused"


class UserActivity(Base):
    """
    One observed trade of a mirrored account, plus our handling of it

    A handled BUY row with own_bought_tokens > 0 is a purchase ledger entry.
    Rows are never deleted; ledger entries are zeroed instead.
    """
    __tablename__ = "user_activity"

    id = Column(String(160), primary_key=True)
    trader_address = Column(String(42), nullable=False, index=True)

    # Trade details
    asset = Column(String(100), nullable=False)
    condition_id = Column(String(100), nullable=False)
    activity_type = Column(String(20), nullable=False, default="TRADE")
    side = Column(String(4), nullable=False)
    price = Column(Float, nullable=False)
    size = Column(Float, nullable=False)
    usdc_size = Column(Float, nullable=False)
    title = Column(String(255), nullable=True)
    timestamp = Column(DateTime, nullable=False, index=True)

    # Handling
    handled = Column(Boolean, default=False, nullable=False, index=True)
    retry_count = Column(Integer, nullable=True)
    own_bought_tokens = Column(Float, nullable=True)
    execution_status = Column(String(20), nullable=True)
    status_reason = Column(Text, nullable=True)

    # Timestamps
    detected_at = Column(DateTime, default=datetime.utcnow)
    handled_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_user_activity_instrument", "asset", "condition_id", "side"),
    )

    def __repr__(self):
        return (
            f"<UserActivity({self.side} {self.size}@{self.price} "
            f"asset={self.asset[:10]}..., handled={self.handled})>"
        )


# Database initialization
async def init_db(database_url: Optional[str] = None) -> AsyncEngine:
    """Initialize database and create tables"""
    url = database_url or get_settings().database_url

    if url.rstrip("/") in ("sqlite+aiosqlite:", "sqlite+aiosqlite:///:memory:"):
        # One shared connection, otherwise every session sees an empty database
        engine = create_async_engine(
            url,
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False}
        )
    else:
        engine = create_async_engine(url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return engine
