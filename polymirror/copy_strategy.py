"""
Copy Sizing

Turns a mirrored trade's USD size into our own order notional:
- Strategy base amount (percentage, fixed or adaptive)
- Tiered or flat multiplier keyed by the trader's order size
- Order, position and balance caps
- Venue minimum
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .config import Settings


class CopyStrategy(Enum):
    """How the base copy amount is derived"""
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"
    ADAPTIVE = "ADAPTIVE"


@dataclass(frozen=True)
class MultiplierTier:
    """Multiplier applied to trader orders in [min_usd, max_usd)"""
    min_usd: float
    max_usd: Optional[float]
    multiplier: float

    def contains(self, amount: float) -> bool:
        return amount >= self.min_usd and (self.max_usd is None or amount < self.max_usd)


@dataclass(frozen=True)
class OrderCalculation:
    """Sizing result; final_amount == 0 means do not trade"""
    trader_order_size: float
    base_amount: float
    final_amount: float
    strategy: CopyStrategy
    capped_by_max: bool
    reduced_by_balance: bool
    below_minimum: bool
    reasoning: str


@dataclass
class CopyStrategyConfig:
    """Sizing parameters"""
    strategy: CopyStrategy = CopyStrategy.PERCENTAGE
    copy_size: float = 10.0
    max_order_size_usd: float = 100.0
    min_order_size_usd: float = 1.0
    max_position_size_usd: Optional[float] = None
    trade_multiplier: float = 1.0
    tiered_multipliers: List[MultiplierTier] = field(default_factory=list)
    adaptive_min_percent: float = 5.0
    adaptive_max_percent: float = 20.0
    adaptive_threshold_usd: float = 500.0
    balance_safety_factor: float = 0.99

    @classmethod
    def from_settings(cls, settings: Settings) -> "CopyStrategyConfig":
        return cls(
            strategy=CopyStrategy(settings.copy_strategy.upper()),
            copy_size=settings.copy_size,
            max_order_size_usd=settings.max_order_size_usd,
            min_order_size_usd=settings.min_order_size_usd,
            max_position_size_usd=settings.max_position_size_usd,
            trade_multiplier=settings.trade_multiplier,
            tiered_multipliers=parse_tiered_multipliers(settings.tiered_multipliers),
            adaptive_min_percent=settings.adaptive_min_percent,
            adaptive_max_percent=settings.adaptive_max_percent,
            adaptive_threshold_usd=settings.adaptive_threshold_usd,
            balance_safety_factor=settings.balance_safety_factor
        )


def parse_tiered_multipliers(raw: str) -> List[MultiplierTier]:
    """
    Parse "1-10:2.0,10-100:1.0,100+:0.5" into ordered tiers

    Raises:
        ValueError: malformed tier
    """
    tiers = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            bounds, multiplier = chunk.split(":")
            bounds = bounds.strip()
            if bounds.endswith("+"):
                low, high = float(bounds[:-1]), None
            else:
                low_text, high_text = bounds.split("-")
                low, high = float(low_text), float(high_text)
            tier = MultiplierTier(low, high, float(multiplier))
        except ValueError as e:
            raise ValueError(f"Invalid multiplier tier {chunk!r}") from e

        if tier.max_usd is not None and tier.max_usd <= tier.min_usd:
            raise ValueError(f"Tier upper bound must exceed lower bound: {chunk!r}")
        tiers.append(tier)

    return sorted(tiers, key=lambda t: t.min_usd)


def get_trade_multiplier(config: CopyStrategyConfig, trader_order_size: float) -> float:
    """Tier multiplier for the trader's order size, else the flat multiplier"""
    for tier in config.tiered_multipliers:
        if tier.contains(trader_order_size):
            return tier.multiplier
    return config.trade_multiplier


def _adaptive_percent(config: CopyStrategyConfig, trader_order_size: float) -> float:
    """Copy more of small trades and less of large ones"""
    threshold = config.adaptive_threshold_usd
    if threshold <= 0:
        return config.copy_size

    if trader_order_size >= threshold:
        factor = min(1.0, trader_order_size / threshold - 1)
        return config.copy_size + (config.adaptive_min_percent - config.copy_size) * factor

    factor = trader_order_size / threshold
    return config.adaptive_max_percent + (config.copy_size - config.adaptive_max_percent) * factor


def calculate_order_size(
    config: CopyStrategyConfig,
    trader_order_size: float,
    available_balance: float,
    current_position_value: float = 0.0
) -> OrderCalculation:
    """
    Size our order for a mirrored BUY

    Args:
        config: Sizing parameters
        trader_order_size: The trader's order notional in USD
        available_balance: Our spendable USDC
        current_position_value: What we already hold in this instrument

    Returns:
        OrderCalculation; a final_amount of 0 explains itself in reasoning
    """
    steps = []

    if config.strategy == CopyStrategy.FIXED:
        base = config.copy_size
        steps.append(f"Fixed amount: ${base:.2f}")
    elif config.strategy == CopyStrategy.ADAPTIVE:
        percent = _adaptive_percent(config, trader_order_size)
        base = trader_order_size * percent / 100
        steps.append(
            f"Adaptive {percent:.1f}% of trader's ${trader_order_size:.2f} = ${base:.2f}"
        )
    else:
        base = trader_order_size * config.copy_size / 100
        steps.append(
            f"{config.copy_size:.1f}% of trader's ${trader_order_size:.2f} = ${base:.2f}"
        )

    amount = base
    multiplier = get_trade_multiplier(config, trader_order_size)
    if multiplier != 1.0:
        amount = base * multiplier
        steps.append(f"{multiplier}x multiplier: ${base:.2f} -> ${amount:.2f}")

    capped_by_max = False
    if amount > config.max_order_size_usd:
        amount = config.max_order_size_usd
        capped_by_max = True
        steps.append(f"Capped at max order ${config.max_order_size_usd:.2f}")

    if config.max_position_size_usd is not None:
        capacity = max(0.0, config.max_position_size_usd - current_position_value)
        if amount > capacity:
            amount = capacity
            steps.append(
                f"Reduced to fit position limit (${current_position_value:.2f} held of "
                f"${config.max_position_size_usd:.2f})"
            )

    reduced_by_balance = False
    affordable = max(0.0, available_balance * config.balance_safety_factor)
    if amount > affordable:
        amount = affordable
        reduced_by_balance = True
        steps.append(f"Reduced to fit balance (${affordable:.2f} available)")

    below_minimum = amount < config.min_order_size_usd
    if below_minimum:
        steps.append(
            f"Below minimum ${config.min_order_size_usd:.2f} (${amount:.2f}), not trading"
        )
        amount = 0.0

    return OrderCalculation(
        trader_order_size=trader_order_size,
        base_amount=base,
        final_amount=amount,
        strategy=config.strategy,
        capped_by_max=capped_by_max,
        reduced_by_balance=reduced_by_balance,
        below_minimum=below_minimum,
        reasoning=" → ".join(steps)
    )
