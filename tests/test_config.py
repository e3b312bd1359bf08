"""
Tests for configuration records and grid presets.
"""
import pytest

from strategy_lab.config import (
    GRID_PRESETS,
    MULTI_RULE_GRID,
    EngineSettings,
    MonteCarloSettings,
    ScoreObjective,
    SearchConstraints,
    SignalRuleType,
    StrategyParameters,
    WalkForwardSettings,
    get_grid_preset,
)
from strategy_lab.parameter_search import enumerate_grid


class TestStrategyParameters:
    """Test suite for strategy parameter validation."""

    @pytest.mark.parametrize("overrides", [
        {"fast_window": 21, "slow_window": 21},
        {"fast_window": 0},
        {"rsi_period": 2.5},
        {"risk_fraction": 0.0},
        {"risk_fraction": 1.5},
        {"leverage": 0.0},
        {"fee_rate": -0.001},
        {"reward_risk": 0.0},
        {"band_k": 0.0},
        {"max_holding_bars": 0},
        {"kill_drawdown_pct": 1.5},
    ])
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValueError):
            StrategyParameters(**overrides)

    def test_rule_from_string(self):
        params = StrategyParameters(rule="breakout")
        assert params.rule == SignalRuleType.BREAKOUT

    def test_with_overrides_revalidates(self):
        with pytest.raises(ValueError):
            StrategyParameters().with_overrides(fast_window=50)

    def test_hashable_and_comparable(self):
        assert StrategyParameters(fast_window=5) == StrategyParameters(fast_window=5)
        assert len({StrategyParameters(), StrategyParameters()}) == 1

    def test_to_dict_uses_rule_value(self):
        data = StrategyParameters().to_dict()
        assert data["rule"] == "trend_momentum"
        assert set(data) == set(StrategyParameters.field_names())

    def test_longest_window_depends_on_rule(self):
        assert StrategyParameters(breakout_window=60).longest_window == 21
        assert StrategyParameters(rule="breakout", breakout_window=60).longest_window == 60


class TestSettings:
    """Test suite for engine, validation and search settings."""

    def test_warmup_floor(self):
        assert EngineSettings().warmup_bars(StrategyParameters()) == 30

    def test_warmup_from_longest_window(self):
        params = StrategyParameters(slow_window=55)
        assert EngineSettings().warmup_bars(params) == 57

    @pytest.mark.parametrize("factory", [
        lambda: EngineSettings(initial_equity=0.0),
        lambda: EngineSettings(bars_per_bucket=0),
        lambda: WalkForwardSettings(fold_count=0),
        lambda: MonteCarloSettings(horizon_bars=0),
        lambda: SearchConstraints(penalty_weight=-1.0),
        lambda: SearchConstraints(soft_dd_weight=-1.0),
        lambda: SearchConstraints(objective="sharpe"),
    ])
    def test_invalid_settings_rejected(self, factory):
        with pytest.raises(ValueError):
            factory()

    def test_objective_from_string(self):
        constraints = SearchConstraints(objective="target_monthly")
        assert constraints.objective == ScoreObjective.TARGET_MONTHLY


class TestGridPresets:
    """Test suite for the named grids."""

    def test_lookup(self):
        assert get_grid_preset("multi") is MULTI_RULE_GRID

    def test_unknown_preset(self):
        with pytest.raises(ValueError, match="weekly"):
            get_grid_preset("weekly")

    @pytest.mark.parametrize("name", sorted(GRID_PRESETS))
    def test_keys_are_parameter_fields(self, name):
        grid = get_grid_preset(name)
        sub_grids = [grid] if isinstance(grid, dict) else grid
        known = set(StrategyParameters.field_names())
        for sub_grid in sub_grids:
            assert set(sub_grid) <= known

    def test_multi_rule_grid_covers_every_rule(self):
        candidates, _ = enumerate_grid(MULTI_RULE_GRID)
        assert {c.rule for c in candidates} == set(SignalRuleType)
