"""
Tests for the robust parameter search.
"""
import pytest

from strategy_lab.backtest_engine import WalkForwardResult
from strategy_lab.config import (
    ScoreObjective,
    SearchConstraints,
    SignalRuleType,
    StrategyParameters,
    ValidationStatus,
)
from strategy_lab.parameter_search import (
    ParameterSearch,
    SearchOutcome,
    enumerate_grid,
    run_search,
    score_candidate,
)

SMALL_GRID = {"fast_window": [3, 5, 8], "slow_window": [13, 21]}
LENIENT = SearchConstraints(max_worst_drawdown_pct=100.0, min_avg_trades=0.0)


class TestEnumerateGrid:
    """Test suite for grid expansion."""

    def test_fast_must_be_below_slow(self):
        candidates, skipped = enumerate_grid(
            {"fast_window": [5, 10, 21, 30], "slow_window": [10, 21]}
        )
        pairs = [(c.fast_window, c.slow_window) for c in candidates]
        assert pairs == [(5, 10), (5, 21), (10, 21)]
        assert skipped == 5

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="lookback"):
            enumerate_grid({"lookback": [10]})

    def test_duplicate_sub_grids_skipped(self):
        candidates, skipped = enumerate_grid([{"fast_window": [5]}, {"fast_window": [5, 6]}])
        assert [c.fast_window for c in candidates] == [5, 6]
        assert skipped == 1

    def test_base_fills_missing_fields(self):
        base = StrategyParameters(rule=SignalRuleType.BREAKOUT, leverage=3.0)
        candidates, _ = enumerate_grid({"breakout_window": [10, 30]}, base)
        assert all(c.rule == SignalRuleType.BREAKOUT and c.leverage == 3.0 for c in candidates)


class TestScoreCandidate:
    """Test suite for constraint filtering and scoring."""

    def wf(self, avg, dd, trades=3.0):
        return WalkForwardResult(
            status=ValidationStatus.OK,
            avg_monthly_pct=avg,
            worst_drawdown_pct=dd,
            avg_trade_count=trades,
        )

    def test_accepted_score(self):
        accepted, score, fallback = score_candidate(self.wf(2.0, 10.0), SearchConstraints())
        assert accepted
        assert score == pytest.approx(2.0 - 0.08 * 10.0)
        assert fallback == pytest.approx(2.0 - 0.04 * 10.0)

    def test_drawdown_limit(self):
        accepted, _, _ = score_candidate(self.wf(2.0, 50.0), SearchConstraints())
        assert not accepted

    def test_min_trades(self):
        accepted, _, _ = score_candidate(self.wf(2.0, 5.0, trades=1.0), SearchConstraints())
        assert not accepted

    def test_require_positive(self):
        constraints = SearchConstraints(require_positive_return=True)
        assert not score_candidate(self.wf(-0.5, 5.0), constraints)[0]
        assert score_candidate(self.wf(-0.5, 5.0), SearchConstraints())[0]

    def test_trade_bonus(self):
        constraints = SearchConstraints(trade_bonus_weight=0.1)
        _, score, _ = score_candidate(self.wf(1.0, 0.0, trades=4.0), constraints)
        assert score == pytest.approx(1.4)

    def test_target_monthly_objective(self):
        constraints = SearchConstraints(objective=ScoreObjective.TARGET_MONTHLY, target_monthly_pct=20.0)
        accepted, score, fallback = score_candidate(self.wf(18.0, 40.0), constraints)
        # distance 2 plus half of the 5 points above the soft 35% limit
        assert score == pytest.approx(-4.5)
        assert fallback == score
        assert not accepted

    def test_target_monthly_ranks_by_distance(self):
        constraints = SearchConstraints(objective="target_monthly", target_monthly_pct=5.0)
        near = score_candidate(self.wf(4.5, 10.0), constraints)[1]
        far = score_candidate(self.wf(9.0, 10.0), constraints)[1]
        assert near > far


class TestParameterSearch:
    """End-to-end search behavior."""

    def test_robust_winner(self, random_walk_bars):
        result = run_search(random_walk_bars, SMALL_GRID, LENIENT)
        assert result.outcome == SearchOutcome.ROBUST
        assert result.found
        assert result.candidates_evaluated == 6
        assert result.candidates_accepted == 6
        assert result.full_history.bars_used == len(random_walk_bars)
        assert result.monte_carlo.status == ValidationStatus.OK
        assert result.holdout is None

    def test_none_found_without_fallback(self, random_walk_bars):
        strict = SearchConstraints(min_avg_trades=1e6)
        result = run_search(random_walk_bars, SMALL_GRID, strict)
        assert result.outcome == SearchOutcome.NONE_FOUND
        assert result.parameters is None
        assert result.full_history is None
        assert result.holdout is None
        assert result.candidates_accepted == 0

    def test_fallback_when_enabled(self, random_walk_bars):
        strict = SearchConstraints(min_avg_trades=1e6, allow_fallback=True)
        result = run_search(random_walk_bars, SMALL_GRID, strict)
        assert result.outcome == SearchOutcome.FALLBACK
        assert result.parameters is not None
        assert result.score == pytest.approx(
            result.walk_forward.avg_monthly_pct - 0.04 * result.walk_forward.worst_drawdown_pct
        )

    def test_ties_keep_first_candidate(self, random_walk_bars):
        # band_k does not affect the trend rule, so every candidate scores the same
        result = run_search(random_walk_bars, {"band_k": [1.5, 2.0, 2.5]}, LENIENT)
        assert result.parameters.band_k == 1.5

    def test_deterministic(self, random_walk_bars):
        first = run_search(random_walk_bars, SMALL_GRID, LENIENT, seed=9)
        second = run_search(random_walk_bars, SMALL_GRID, LENIENT, seed=9)
        assert first.to_dict() == second.to_dict()

    def test_short_history_skips_candidates(self, uptrend_bars):
        result = run_search(uptrend_bars, SMALL_GRID, LENIENT)
        assert result.outcome == SearchOutcome.NONE_FOUND
        assert result.candidates_skipped == 6

    def test_expired_deadline(self, random_walk_bars):
        search = ParameterSearch(constraints=LENIENT, deadline_seconds=-1.0)
        result = search.search(random_walk_bars, SMALL_GRID)
        assert result.timed_out
        assert result.candidates_evaluated == 0
        assert result.outcome == SearchOutcome.NONE_FOUND

    def test_parallel_matches_sequential(self, random_walk_bars):
        sequential = ParameterSearch(constraints=LENIENT).search(random_walk_bars, SMALL_GRID)
        parallel = ParameterSearch(constraints=LENIENT, max_workers=2).search(
            random_walk_bars, SMALL_GRID
        )
        assert parallel.parameters == sequential.parameters
        assert parallel.score == pytest.approx(sequential.score)
        assert parallel.candidates_evaluated == sequential.candidates_evaluated


class TestHoldout:
    """Test suite for the train/holdout split."""

    def test_winner_backtested_on_tail(self, random_walk_bars):
        search = ParameterSearch(constraints=LENIENT, holdout_fraction=0.25)
        result = search.search(random_walk_bars, SMALL_GRID)
        assert result.outcome == SearchOutcome.ROBUST
        assert result.full_history.bars_used == 900
        assert result.holdout.bars_used == 300
        assert result.holdout.parameters == result.parameters
        assert result.holdout.equity_curve.index[0] > result.full_history.equity_curve.index[-1]
        assert result.to_dict()["holdout"]["bars_used"] == 300

    def test_split_keeps_order(self, random_walk_bars):
        history, holdout = ParameterSearch(holdout_fraction=0.5).split_holdout(random_walk_bars)
        assert len(history) == len(holdout) == 600
        assert history.index[-1] < holdout.index[0]

    def test_no_split_by_default(self, random_walk_bars):
        history, holdout = ParameterSearch().split_holdout(random_walk_bars)
        assert history is random_walk_bars
        assert holdout is None

    def test_no_holdout_without_winner(self, random_walk_bars):
        strict = SearchConstraints(min_avg_trades=1e6)
        result = run_search(random_walk_bars, SMALL_GRID, strict, holdout_fraction=0.25)
        assert result.outcome == SearchOutcome.NONE_FOUND
        assert result.holdout is None

    @pytest.mark.parametrize("fraction", [0.0, 1.0, 1.5, -0.2])
    def test_fraction_outside_unit_interval_rejected(self, fraction):
        with pytest.raises(ValueError, match="holdout_fraction"):
            ParameterSearch(holdout_fraction=fraction)

    @pytest.mark.parametrize("folds", [0, -2])
    def test_fold_count_below_one_rejected(self, folds):
        with pytest.raises(ValueError, match="fold_count"):
            ParameterSearch(fold_count=folds)
