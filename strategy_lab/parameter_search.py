"""
Parameter Search

Exhaustive grid search for strategy configurations that stay profitable
out-of-sample. Every candidate is walk-forward validated, filtered by
robustness constraints and scored:

    score = avg_monthly - penalty_weight * worst_drawdown
            + trade_bonus_weight * avg_trades

With ScoreObjective.TARGET_MONTHLY candidates are instead ranked by how
close their average monthly return lands to a target:

    score = -|target - avg_monthly|
            - soft_dd_weight * max(0, worst_drawdown - soft_dd_limit)

The best-scoring candidate is re-run on the search history and its per-bar
returns feed a seeded Monte Carlo projection. With a holdout fraction the
last bars are withheld from the search and the winner is backtested on them
afterwards as an out-of-sample check.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from itertools import product
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from strategy_lab.backtest_engine import (
    BacktestEngine,
    BacktestResult,
    MonteCarloProjection,
    MonteCarloResampler,
    WalkForwardResult,
    WalkForwardValidator,
    default_horizon,
)
from strategy_lab.config import (
    EngineSettings,
    MonteCarloSettings,
    ScoreObjective,
    SearchConstraints,
    StrategyParameters,
    ValidationStatus,
    WalkForwardSettings,
)
from strategy_lab.data_loader import validate_bars

logger = logging.getLogger(__name__)

Grid = Union[Mapping[str, Sequence[Any]], Sequence[Mapping[str, Sequence[Any]]]]


class SearchOutcome(Enum):
    """How the search ended."""
    ROBUST = "robust"             # Best candidate passing every constraint
    FALLBACK = "fallback"         # Best unconstrained candidate (opt-in)
    NONE_FOUND = "none_found"


@dataclass(frozen=True)
class CandidateScore:
    """Walk-forward verdict for one enumerated candidate."""
    index: int
    parameters: StrategyParameters
    walk_forward: WalkForwardResult
    accepted: bool
    score: float
    fallback_score: float


@dataclass(frozen=True, eq=False)
class SearchResult:
    """Winner of a parameter search plus its validation artifacts."""
    outcome: SearchOutcome
    parameters: Optional[StrategyParameters] = None
    walk_forward: Optional[WalkForwardResult] = None
    score: Optional[float] = None
    full_history: Optional[BacktestResult] = None
    monte_carlo: Optional[MonteCarloProjection] = None
    holdout: Optional[BacktestResult] = None
    candidates_evaluated: int = 0
    candidates_accepted: int = 0
    candidates_skipped: int = 0
    timed_out: bool = False

    @property
    def found(self) -> bool:
        return self.outcome != SearchOutcome.NONE_FOUND

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "outcome": self.outcome.value,
            "parameters": self.parameters.to_dict() if self.parameters else None,
            "score": self.score,
            "walk_forward": self.walk_forward.to_dict() if self.walk_forward else None,
            "full_history": self.full_history.to_dict() if self.full_history else None,
            "monte_carlo": self.monte_carlo.to_dict() if self.monte_carlo else None,
            "holdout": self.holdout.to_dict() if self.holdout else None,
            "candidates_evaluated": self.candidates_evaluated,
            "candidates_accepted": self.candidates_accepted,
            "candidates_skipped": self.candidates_skipped,
            "timed_out": self.timed_out,
        }


# =============================================================================
# GRID ENUMERATION
# =============================================================================

def enumerate_grid(
    grid: Grid,
    base: Optional[StrategyParameters] = None,
) -> Tuple[List[StrategyParameters], int]:
    """
    Expand a grid into distinct, valid candidates in enumeration order.

    Args:
        grid: Mapping field -> values, or a list of such mappings whose
            expansions are concatenated
        base: Parameters filling every field a sub-grid leaves out

    Returns:
        (candidates, skipped) where skipped counts invalid and duplicate
        combinations

    Raises:
        ValueError: If a grid key is not a StrategyParameters field
    """
    base = base or StrategyParameters()
    sub_grids = [grid] if isinstance(grid, Mapping) else list(grid)
    known = set(StrategyParameters.field_names())

    candidates: List[StrategyParameters] = []
    seen = set()
    skipped = 0

    for sub_grid in sub_grids:
        unknown = set(sub_grid) - known
        if unknown:
            raise ValueError(f"Unknown grid parameters: {sorted(unknown)}")

        names = list(sub_grid.keys())
        for combo in product(*(sub_grid[name] for name in names)):
            try:
                params = base.with_overrides(**dict(zip(names, combo)))
            except ValueError:
                skipped += 1
                continue
            if params in seen:
                skipped += 1
                continue
            seen.add(params)
            candidates.append(params)

    return candidates, skipped


def score_candidate(
    walk_forward: WalkForwardResult,
    constraints: SearchConstraints,
) -> Tuple[bool, float, float]:
    """
    Apply the robustness constraints.

    Under PENALIZED_RETURN the fallback score swaps penalty_weight for
    fallback_penalty_weight; under TARGET_MONTHLY both scores are the
    distance-to-target score.

    Returns:
        (accepted, score, fallback_score)
    """
    avg = walk_forward.avg_monthly_pct
    dd = walk_forward.worst_drawdown_pct
    bonus = constraints.trade_bonus_weight * walk_forward.avg_trade_count

    if constraints.objective == ScoreObjective.TARGET_MONTHLY:
        score = (
            -abs(constraints.target_monthly_pct - avg)
            - constraints.soft_dd_weight * max(0.0, dd - constraints.soft_dd_limit_pct)
            + bonus
        )
        fallback_score = score
    else:
        score = avg - constraints.penalty_weight * dd + bonus
        fallback_score = avg - constraints.fallback_penalty_weight * dd + bonus

    accepted = (
        math.isfinite(score)
        and dd <= constraints.max_worst_drawdown_pct
        and walk_forward.avg_trade_count >= constraints.min_avg_trades
        and (avg > 0 or not constraints.require_positive_return)
    )
    return accepted, score, fallback_score


# =============================================================================
# WORKER PROCESS HELPERS
# =============================================================================

_WORKER_STATE: Dict[str, Any] = {}


def _init_worker(
    bars: pd.DataFrame,
    engine_settings: EngineSettings,
    wf_settings: WalkForwardSettings,
    fold_count: Optional[int],
) -> None:
    _WORKER_STATE["bars"] = bars
    _WORKER_STATE["validator"] = WalkForwardValidator(BacktestEngine(engine_settings), wf_settings)
    _WORKER_STATE["fold_count"] = fold_count


def _validate_in_worker(index: int, params: StrategyParameters) -> Tuple[int, WalkForwardResult]:
    validator = _WORKER_STATE["validator"]
    return index, validator.validate(_WORKER_STATE["bars"], params, _WORKER_STATE["fold_count"])


# =============================================================================
# PARAMETER SEARCH
# =============================================================================

class ParameterSearch:
    """
    Grid search with walk-forward validation and Monte Carlo projection.

    Candidates are independent: with max_workers > 1 they are spread over a
    process pool and reduced in enumeration order, so the winner does not
    depend on completion order. Ties go to the earliest candidate.
    """

    def __init__(
        self,
        constraints: Optional[SearchConstraints] = None,
        engine_settings: Optional[EngineSettings] = None,
        walk_forward_settings: Optional[WalkForwardSettings] = None,
        monte_carlo_settings: Optional[MonteCarloSettings] = None,
        base: Optional[StrategyParameters] = None,
        fold_count: Optional[int] = None,
        max_workers: Optional[int] = None,
        deadline_seconds: Optional[float] = None,
        holdout_fraction: Optional[float] = None,
    ):
        """
        Initialize the search.

        Args:
            constraints: Rejection thresholds and score weights
            engine_settings: Shared by walk-forward folds and the final run
            walk_forward_settings: Fold layout
            monte_carlo_settings: Bootstrap settings for the winner
            base: Defaults for fields the grid leaves out
            fold_count: Override of walk_forward_settings.fold_count
            max_workers: Worker processes; None or 1 runs in-process
            deadline_seconds: Wall-clock budget checked between candidates
            holdout_fraction: Share of the latest bars withheld from the
                search and used to backtest the winner out-of-sample

        Raises:
            ValueError: On fold_count < 1 or holdout_fraction outside (0, 1)
        """
        if fold_count is not None and fold_count < 1:
            raise ValueError(f"fold_count must be >= 1, got {fold_count}")
        if holdout_fraction is not None and not 0 < holdout_fraction < 1:
            raise ValueError(f"holdout_fraction must be in (0, 1), got {holdout_fraction}")

        self.constraints = constraints or SearchConstraints()
        self.engine_settings = engine_settings or EngineSettings()
        self.walk_forward_settings = walk_forward_settings or WalkForwardSettings()
        self.monte_carlo_settings = monte_carlo_settings or MonteCarloSettings()
        self.base = base or StrategyParameters()
        self.fold_count = fold_count
        self.max_workers = max_workers
        self.deadline_seconds = deadline_seconds
        self.holdout_fraction = holdout_fraction

        self.engine = BacktestEngine(self.engine_settings)
        self.validator = WalkForwardValidator(self.engine, self.walk_forward_settings)

    def search(
        self,
        bars: pd.DataFrame,
        grid: Grid,
        seed: Optional[int] = None,
    ) -> SearchResult:
        """
        Run the full search.

        Args:
            bars: Bar frame shared read-only by every candidate
            grid: Parameter grid (mapping or list of mappings)
            seed: Monte Carlo seed override

        Returns:
            SearchResult with outcome ROBUST, FALLBACK or NONE_FOUND
        """
        validate_bars(bars)
        bars, holdout_bars = self.split_holdout(bars)
        candidates, skipped = enumerate_grid(grid, self.base)
        logger.info(
            f"Searching {len(candidates)} candidates over {len(bars)} bars "
            f"({skipped} invalid or duplicate combinations skipped)"
        )

        started = time.monotonic()
        if self.max_workers and self.max_workers > 1:
            results, failed, timed_out = self._validate_parallel(bars, candidates, started)
        else:
            results, failed, timed_out = self._validate_sequential(bars, candidates, started)
        skipped += failed

        scored: List[CandidateScore] = []
        for index in sorted(results):
            wf = results[index]
            if wf.status == ValidationStatus.NO_DATA:
                skipped += 1
                continue
            accepted, score, fallback_score = score_candidate(wf, self.constraints)
            scored.append(CandidateScore(index, candidates[index], wf, accepted, score, fallback_score))
            logger.debug(
                f"Candidate {index}: avg {wf.avg_monthly_pct:+.3f}% "
                f"DD {wf.worst_drawdown_pct:.2f}% trades {wf.avg_trade_count:.1f} "
                f"-> {'accepted' if accepted else 'rejected'} score {score:.4f}"
            )

        accepted_count = sum(1 for c in scored if c.accepted)
        counters = dict(
            candidates_evaluated=len(results),
            candidates_accepted=accepted_count,
            candidates_skipped=skipped,
            timed_out=timed_out,
        )

        winner, outcome = self._select(scored)
        if winner is None:
            logger.warning(
                f"No robust candidate among {len(scored)} validated "
                f"(fallback {'enabled' if self.constraints.allow_fallback else 'disabled'})"
            )
            return SearchResult(outcome=SearchOutcome.NONE_FOUND, **counters)

        full = self.engine.run(bars, winner.parameters)
        horizon = self.monte_carlo_settings.horizon_bars
        mc = MonteCarloResampler(self.monte_carlo_settings).resample(
            full.per_bar_returns(),
            horizon_bars=default_horizon(self.engine_settings) if horizon is None else horizon,
            seed=seed,
        )
        score = winner.score if outcome == SearchOutcome.ROBUST else winner.fallback_score

        holdout = None
        if holdout_bars is not None:
            holdout = self.engine.run(holdout_bars, winner.parameters)
            logger.info(
                f"Holdout over {len(holdout_bars)} bars: {holdout.status.value}, "
                f"avg {holdout.avg_monthly_pct:+.3f}%/month, DD {holdout.max_drawdown_pct:.2f}%"
            )

        logger.info(
            f"Search finished: {outcome.value} candidate {winner.index} "
            f"score {score:.4f}, {accepted_count}/{len(scored)} accepted"
        )
        return SearchResult(
            outcome=outcome,
            parameters=winner.parameters,
            walk_forward=winner.walk_forward,
            score=score,
            full_history=full,
            monte_carlo=mc,
            holdout=holdout,
            **counters,
        )

    def split_holdout(
        self, bars: pd.DataFrame
    ) -> Tuple[pd.DataFrame, Optional[pd.DataFrame]]:
        """
        Split bars into (search history, holdout).

        The holdout is the latest floor(n * holdout_fraction) bars, rounded so
        the history keeps floor(n * (1 - holdout_fraction)) bars. Without a
        holdout fraction the bars are returned whole with None.
        """
        if self.holdout_fraction is None:
            return bars, None
        split = int(math.floor(len(bars) * (1.0 - self.holdout_fraction)))
        logger.info(
            f"Holding out the last {len(bars) - split} of {len(bars)} bars "
            f"({self.holdout_fraction:.0%}) for out-of-sample evaluation"
        )
        return bars.iloc[:split], bars.iloc[split:]

    def _select(
        self, scored: List[CandidateScore]
    ) -> Tuple[Optional[CandidateScore], SearchOutcome]:
        """Ordered max; `scored` is in enumeration order and ties keep the first."""
        best: Optional[CandidateScore] = None
        for cand in scored:
            if cand.accepted and (best is None or cand.score > best.score):
                best = cand
        if best is not None:
            return best, SearchOutcome.ROBUST

        if self.constraints.allow_fallback:
            for cand in scored:
                if not math.isfinite(cand.fallback_score):
                    continue
                if best is None or cand.fallback_score > best.fallback_score:
                    best = cand
            if best is not None:
                return best, SearchOutcome.FALLBACK

        return None, SearchOutcome.NONE_FOUND

    def _expired(self, started: float) -> bool:
        return (
            self.deadline_seconds is not None
            and time.monotonic() - started > self.deadline_seconds
        )

    def _validate_sequential(
        self,
        bars: pd.DataFrame,
        candidates: List[StrategyParameters],
        started: float,
    ) -> Tuple[Dict[int, WalkForwardResult], int, bool]:
        results: Dict[int, WalkForwardResult] = {}
        failed = 0
        for index, params in enumerate(candidates):
            if self._expired(started):
                logger.warning(f"Search deadline reached after {index} candidates")
                return results, failed, True
            try:
                results[index] = self.validator.validate(bars, params, self.fold_count)
            except Exception as e:
                failed += 1
                logger.warning(f"Candidate {index} failed: {e}")
        return results, failed, False

    def _validate_parallel(
        self,
        bars: pd.DataFrame,
        candidates: List[StrategyParameters],
        started: float,
    ) -> Tuple[Dict[int, WalkForwardResult], int, bool]:
        results: Dict[int, WalkForwardResult] = {}
        failed = 0
        timed_out = False

        executor = ProcessPoolExecutor(
            max_workers=self.max_workers,
            initializer=_init_worker,
            initargs=(bars, self.engine_settings, self.walk_forward_settings, self.fold_count),
        )
        try:
            futures = {
                executor.submit(_validate_in_worker, index, params): index
                for index, params in enumerate(candidates)
            }
            for future in as_completed(futures):
                index = futures[future]
                try:
                    _, wf = future.result()
                    results[index] = wf
                except Exception as e:
                    failed += 1
                    logger.warning(f"Candidate {index} failed: {e}")
                if self._expired(started):
                    logger.warning(f"Search deadline reached after {len(results)} candidates")
                    timed_out = True
                    break
        finally:
            executor.shutdown(wait=True, cancel_futures=timed_out)

        return results, failed, timed_out


def run_search(
    bars: pd.DataFrame,
    grid: Grid,
    constraints: Optional[SearchConstraints] = None,
    seed: Optional[int] = None,
    **kwargs: Any,
) -> SearchResult:
    """
    Convenience function for a one-off search.

    Example:
        >>> result = run_search(bars, DAILY_GRID, SearchConstraints(max_worst_drawdown_pct=45))
        >>> print(result.outcome, result.parameters)
    """
    return ParameterSearch(constraints=constraints, **kwargs).search(bars, grid, seed=seed)


__all__ = [
    "SearchOutcome",
    "CandidateScore",
    "SearchResult",
    "enumerate_grid",
    "score_candidate",
    "ParameterSearch",
    "run_search",
]
