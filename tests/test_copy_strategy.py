"""Unit tests for copy sizing."""
import pytest

from polymirror.copy_strategy import (
    CopyStrategy, CopyStrategyConfig, MultiplierTier,
    calculate_order_size, get_trade_multiplier, parse_tiered_multipliers
)


class TestParseTieredMultipliers:
    """Parsing the TIERED_MULTIPLIERS setting."""

    def test_parses_and_sorts_tiers(self):
        tiers = parse_tiered_multipliers("100+:0.5, 1-10:2.0,10-100:1.0")

        assert tiers == [
            MultiplierTier(1.0, 10.0, 2.0),
            MultiplierTier(10.0, 100.0, 1.0),
            MultiplierTier(100.0, None, 0.5),
        ]

    def test_empty_string(self):
        assert parse_tiered_multipliers("") == []

    @pytest.mark.parametrize("raw", ["1-10", "abc:2", "10-5:1.0", "1-x:2"])
    def test_malformed_tiers_rejected(self, raw):
        with pytest.raises(ValueError):
            parse_tiered_multipliers(raw)


class TestTradeMultiplier:
    """Tier lookup."""

    def test_tier_matches_half_open_range(self):
        config = CopyStrategyConfig(tiered_multipliers=parse_tiered_multipliers("1-10:2.0,10+:0.5"))

        assert get_trade_multiplier(config, 5) == 2.0
        assert get_trade_multiplier(config, 10) == 0.5

    def test_falls_back_to_flat_multiplier(self):
        config = CopyStrategyConfig(
            trade_multiplier=1.5, tiered_multipliers=parse_tiered_multipliers("1-10:2.0")
        )

        assert get_trade_multiplier(config, 0.5) == 1.5
        assert get_trade_multiplier(config, 50) == 1.5


class TestCalculateOrderSize:
    """Sizing pipeline."""

    def test_percentage_of_trader_order(self):
        calc = calculate_order_size(CopyStrategyConfig(copy_size=10.0), 100.0, 1000.0)

        assert calc.base_amount == pytest.approx(10.0)
        assert calc.final_amount == pytest.approx(10.0)
        assert not calc.capped_by_max

    def test_fixed_amount(self):
        config = CopyStrategyConfig(strategy=CopyStrategy.FIXED, copy_size=25.0)

        assert calculate_order_size(config, 5000.0, 1000.0).final_amount == 25.0

    def test_capped_by_max_order(self):
        config = CopyStrategyConfig(copy_size=50.0, max_order_size_usd=100.0)

        calc = calculate_order_size(config, 1000.0, 10_000.0)

        assert calc.final_amount == 100.0
        assert calc.capped_by_max

    def test_reduced_to_balance_with_safety_factor(self):
        config = CopyStrategyConfig(copy_size=100.0, max_order_size_usd=1000.0)

        calc = calculate_order_size(config, 100.0, 50.0)

        assert calc.final_amount == pytest.approx(49.5)
        assert calc.reduced_by_balance

    def test_position_limit(self):
        config = CopyStrategyConfig(copy_size=100.0, max_position_size_usd=60.0)

        calc = calculate_order_size(config, 50.0, 1000.0, current_position_value=40.0)

        assert calc.final_amount == pytest.approx(20.0)

    def test_below_minimum_is_zero(self):
        calc = calculate_order_size(CopyStrategyConfig(copy_size=10.0), 5.0, 1000.0)

        assert calc.final_amount == 0.0
        assert calc.below_minimum
        assert "minimum" in calc.reasoning

    def test_multiplier_applied_before_caps(self):
        config = CopyStrategyConfig(copy_size=10.0, trade_multiplier=3.0)

        calc = calculate_order_size(config, 100.0, 1000.0)

        assert calc.final_amount == pytest.approx(30.0)

    def test_adaptive_copies_more_of_small_trades(self):
        config = CopyStrategyConfig(strategy=CopyStrategy.ADAPTIVE, copy_size=10.0,
                                    max_order_size_usd=10_000.0)

        small = calculate_order_size(config, 50.0, 100_000.0)
        large = calculate_order_size(config, 2000.0, 100_000.0)

        assert small.final_amount / 50.0 > 0.10
        assert large.final_amount / 2000.0 == pytest.approx(0.05)

    def test_idempotent(self):
        config = CopyStrategyConfig(copy_size=10.0)

        assert calculate_order_size(config, 123.0, 456.0) == calculate_order_size(config, 123.0, 456.0)
