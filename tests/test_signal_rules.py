"""
Tests for the signal rule families.
"""
import logging

import numpy as np
import pytest

from strategy_lab.config import ExitReason, SignalRuleType, StrategyParameters
from strategy_lab.signal_rules import (
    BandReversionRule,
    BreakoutRule,
    TrendMomentumRule,
    build_signal_rule,
)
from strategy_lab.technical_indicators import compute_indicator_set


def evaluate(bars, start=30, **overrides):
    params = StrategyParameters(**overrides)
    indicators = compute_indicator_set(bars, params)
    return build_signal_rule(params.rule).evaluate(indicators, params, start)


class TestTrendMomentumRule:
    """Test suite for the crossover rule."""

    def test_trend_in_force_fires_on_first_tradable_bar(self, uptrend_bars):
        signals = evaluate(uptrend_bars, start=30)
        assert signals.enter_long[30]
        assert not signals.enter_long[31:].any()
        assert not signals.enter_short.any()

    def test_rsi_filter_blocks_entry(self, uptrend_bars):
        # a steady rise keeps RSI at 100
        signals = evaluate(uptrend_bars, buy_rsi_max=70.0)
        assert not signals.enter_long.any()

    def test_reversal_exit_on_downtrend(self, make_bars):
        bars = make_bars(100.0 * 0.995 ** np.arange(100))
        signals = evaluate(bars)
        assert signals.exit_long[1:].all()
        assert not signals.exit_short.any()
        assert signals.enter_short[30]
        assert signals.exit_reason == ExitReason.TREND_REVERSAL

    def test_momentum_exhaustion_optional(self, uptrend_bars):
        assert not evaluate(uptrend_bars).exhaust_long.any()
        assert evaluate(uptrend_bars, exit_rsi_long=70.0).exhaust_long.all()

    def test_signal_counts_logged(self, uptrend_bars, caplog):
        with caplog.at_level(logging.DEBUG, logger="strategy_lab.signal_rules"):
            evaluate(uptrend_bars, start=30)
        assert "TrendMomentumRule from bar 30: 1 long / 0 short entry signals" in caplog.text


class TestBandReversionRule:
    """Test suite for the band fade rule."""

    @pytest.fixture
    def drop_bars(self, make_bars):
        closes = np.r_[np.full(40, 100.0), 90.0, 95.0, 101.0]
        return make_bars(closes)

    def test_enters_below_lower_band(self, drop_bars):
        signals = evaluate(drop_bars, rule=SignalRuleType.BAND_REVERSION)
        assert signals.enter_long[40]
        assert not signals.enter_long[:40].any()
        assert not signals.enter_short.any()

    def test_exits_at_middle_band(self, drop_bars):
        signals = evaluate(drop_bars, rule=SignalRuleType.BAND_REVERSION)
        assert not signals.exit_long[40]
        assert signals.exit_long[42]
        assert signals.exit_reason == ExitReason.MEAN_REACHED


class TestBreakoutRule:
    """Test suite for the channel breakout rule."""

    def test_long_and_short_breaks(self, make_bars):
        closes = np.r_[np.full(30, 100.0), 105.0, 100.0, 94.0]
        signals = evaluate(make_bars(closes), rule=SignalRuleType.BREAKOUT)
        assert signals.enter_long[30]
        assert not signals.enter_long[31]
        assert signals.enter_short[32]
        assert not signals.exit_long.any() and not signals.exit_short.any()


class TestRegistry:
    """Test suite for rule lookup."""

    @pytest.mark.parametrize("rule_type, cls", [
        (SignalRuleType.TREND_MOMENTUM, TrendMomentumRule),
        (SignalRuleType.BAND_REVERSION, BandReversionRule),
        (SignalRuleType.BREAKOUT, BreakoutRule),
    ])
    def test_build(self, rule_type, cls):
        assert isinstance(build_signal_rule(rule_type), cls)

    def test_unknown_rule(self):
        with pytest.raises(ValueError):
            build_signal_rule("grid_martingale")
