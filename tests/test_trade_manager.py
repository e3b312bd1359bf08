"""
Tests for the trade state machine.
"""
import numpy as np
import pandas as pd
import pytest

from strategy_lab.config import Direction, EngineSettings, ExitReason, StrategyParameters
from strategy_lab.signal_rules import RuleSignals
from strategy_lab.trade_manager import TradeManager, TradeStatus

N = 10
T = pd.Timestamp("2021-01-01", tz="UTC")


def make_signals(**overrides):
    """RuleSignals with every predicate off unless overridden by index list."""
    arrays = {
        name: np.zeros(N, dtype=bool)
        for name in ("enter_long", "enter_short", "exit_long", "exit_short",
                     "exhaust_long", "exhaust_short")
    }
    for name, indices in overrides.items():
        arrays[name][indices] = True
    return RuleSignals(**arrays)


def make_manager(signals, atr=1.0, **param_overrides):
    params = StrategyParameters(
        atr_mult=2.0, min_stop_pct=0.001, risk_fraction=0.01,
        leverage=1.0, fee_rate=0.0002, reward_risk=1.5,
    ).with_overrides(**param_overrides)
    return TradeManager(params, signals, np.full(N, atr), EngineSettings())


class TestEntrySizing:
    """Test suite for position sizing at entry."""

    def test_units_from_stop_distance(self):
        manager = make_manager(make_signals(enter_long=[0]))
        manager.step(0, T, 100.0)

        pos = manager.position
        # stop distance = max(1 * 2, 100 * 0.001) = 2; units = 10000 * 0.01 / 2
        assert pos.direction == Direction.LONG
        assert pos.units == pytest.approx(50.0)
        assert pos.stop_price == pytest.approx(98.0)
        assert pos.take_price == pytest.approx(103.0)
        assert manager.equity == pytest.approx(10000.0 - 50.0 * 100.0 * 0.0002)

    def test_short_levels_mirror_long(self):
        manager = make_manager(make_signals(enter_short=[0]))
        manager.step(0, T, 100.0)
        pos = manager.position
        assert pos.direction == Direction.SHORT
        assert pos.stop_price == pytest.approx(102.0)
        assert pos.take_price == pytest.approx(97.0)

    def test_short_disabled(self):
        manager = make_manager(make_signals(enter_short=[0]), allow_short=False)
        manager.step(0, T, 100.0)
        assert manager.position is None

    def test_zero_stop_distance_skipped(self):
        manager = make_manager(make_signals(enter_long=[0]), atr=np.nan, min_stop_pct=0.0)
        manager.step(0, T, 100.0)
        assert manager.position is None
        assert manager.equity == 10000.0
        assert manager.skipped_entries == 1

    def test_tiny_risk_skipped(self):
        manager = make_manager(make_signals(enter_long=[0]), risk_fraction=1e-12)
        manager.step(0, T, 100.0)
        assert manager.position is None
        assert manager.entries == 0

    def test_fee_larger_than_equity_skipped(self):
        manager = make_manager(
            make_signals(enter_long=[0]), risk_fraction=1.0, leverage=10.0, fee_rate=0.01
        )
        manager.step(0, T, 100.0)
        assert manager.position is None
        assert manager.equity == 10000.0

    def test_non_finite_price_skipped(self):
        manager = make_manager(make_signals(enter_long=[0]))
        manager.step(0, T, float("nan"))
        assert manager.position is None
        assert manager.equity == 10000.0
        assert manager.skipped_entries == 1

    def test_entry_blocked_when_not_allowed(self):
        manager = make_manager(make_signals(enter_long=[0, 1]))
        manager.step(0, T, 100.0, allow_entry=False)
        assert manager.position is None
        assert manager.skipped_entries == 0
        manager.step(1, T, 100.0)
        assert manager.position is not None


class TestExits:
    """Test suite for exit priority and settlement."""

    def test_take_profit_settles_pnl_and_fees(self):
        manager = make_manager(make_signals(enter_long=[0]))
        manager.step(0, T, 100.0)
        trade = manager.step(1, T, 104.0)

        assert trade.exit_reason == ExitReason.TAKE
        assert trade.gross_pnl == pytest.approx(4.0 * 50.0)
        assert trade.exit_fee == pytest.approx(50.0 * 104.0 * 0.0002)
        assert trade.net_pnl == pytest.approx(200.0 - 1.0 - 1.04)
        assert trade.status == TradeStatus.WIN
        assert manager.equity == pytest.approx(10000.0 + trade.net_pnl)
        assert manager.position is None

    def test_stop_beats_rule_exit(self):
        manager = make_manager(make_signals(enter_long=[0], exit_long=[1], exhaust_long=[1]))
        manager.step(0, T, 100.0)
        trade = manager.step(1, T, 97.0)
        assert trade.exit_reason == ExitReason.STOP
        assert not trade.is_win

    def test_rule_exit_beats_exhaustion(self):
        manager = make_manager(make_signals(enter_long=[0], exit_long=[1], exhaust_long=[1]))
        manager.step(0, T, 100.0)
        trade = manager.step(1, T, 100.5)
        assert trade.exit_reason == ExitReason.TREND_REVERSAL

    def test_momentum_exhaustion(self):
        manager = make_manager(make_signals(enter_short=[0], exhaust_short=[2]))
        manager.step(0, T, 100.0)
        assert manager.step(1, T, 100.2) is None
        trade = manager.step(2, T, 99.5)
        assert trade.exit_reason == ExitReason.MOMENTUM_EXHAUSTION
        assert trade.gross_pnl == pytest.approx(0.5 * trade.units)

    def test_max_holding(self):
        manager = make_manager(make_signals(enter_long=[0]), max_holding_bars=2)
        manager.step(0, T, 100.0)
        assert manager.step(1, T, 100.0) is None
        assert manager.step(2, T, 100.0) is None
        trade = manager.step(3, T, 100.0)
        assert trade.exit_reason == ExitReason.MAX_HOLDING
        assert trade.bars_held == 3

    def test_no_entry_on_exit_bar(self):
        manager = make_manager(make_signals(enter_long=[0, 1], exit_long=[1]))
        manager.step(0, T, 100.0)
        trade = manager.step(1, T, 100.0)
        assert trade is not None
        assert manager.position is None
        manager.step(2, T, 100.0)
        assert manager.position is None
        assert manager.entries == 1

    def test_mark_to_market_includes_open_pnl(self):
        manager = make_manager(make_signals(enter_long=[0]))
        manager.step(0, T, 100.0)
        assert manager.mark_to_market(101.0) == pytest.approx(manager.equity + 50.0)


class TestKillSwitch:
    """Test suite for the drawdown kill-switch."""

    def test_entries_suspended_above_limit(self):
        manager = make_manager(make_signals(enter_long=[0, 1]), kill_drawdown_pct=0.25)
        manager.step(0, T, 100.0, drawdown=0.30)
        assert manager.position is None
        manager.step(1, T, 100.0, drawdown=0.10)
        assert manager.position is not None

    def test_open_position_still_exits(self):
        manager = make_manager(make_signals(enter_long=[0]), kill_drawdown_pct=0.25)
        manager.step(0, T, 100.0)
        trade = manager.step(1, T, 90.0, drawdown=0.5)
        assert trade.exit_reason == ExitReason.STOP
