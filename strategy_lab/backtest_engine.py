"""
Backtesting Engine with Walk-Forward and Monte Carlo Validation

BACKTEST METHODOLOGY
    Bar-by-bar simulation of a single-position strategy:
        1. Indicators are computed once for the run (no lookahead: every
           series at bar i only uses bars <= i)
        2. The first `warm-up` bars are skipped so indicators settle
        3. On each tradable bar the trade state machine applies at most one
           transition, filling at the bar close
        4. Equity is marked to market, the running peak and drawdown are
           updated and the value is bucketed by month
        5. A position still open on the last bar is closed there; no new
           position opens on the last bar

PERFORMANCE METRICS
    - Total return and average monthly return (arithmetic mean of monthly
      percent changes, or geometric from final/initial equity)
    - Maximum drawdown from the mark-to-market peak
    - Trade count and win rate (net of both fees)
    - Per-bar volatility, Sharpe, skewness, excess kurtosis and 95% VaR

VALIDATION
    Walk-Forward:
        The bars are cut into fold_count + 1 equal chunks; fold k backtests
        chunk k + 1 in isolation. Folds too short to trade are skipped and
        the rest are aggregated (mean return, worst drawdown, mean trades).

    Monte Carlo:
        Per-bar returns of a realized equity curve are drawn with
        replacement and compounded over a horizon; the spread of terminal
        returns is summarized by its 10th/50th/90th percentiles.

STATUS HANDLING
    Data problems never raise. A run on too few bars returns a result with
    status INSUFFICIENT_DATA, a walk-forward with no usable fold returns
    NO_DATA and Monte Carlo on too few returns returns INSUFFICIENT_DATA.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from strategy_lab.config import (
    DAYS_PER_MONTH,
    MC_QUANTILES,
    TRADING_DAYS_MONTH,
    BucketMode,
    EngineSettings,
    ExitReason,
    MonteCarloSettings,
    ReturnConvention,
    StrategyParameters,
    ValidationStatus,
    WalkForwardSettings,
)
from strategy_lab.data_loader import validate_bars
from strategy_lab.signal_rules import build_signal_rule
from strategy_lab.technical_indicators import compute_indicator_set
from strategy_lab.trade_manager import TradeManager, TradeRecord

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# Floor for the denominator of per-bar returns
RETURN_EPSILON: float = 1e-9
VAR_CONFIDENCE: float = 0.95


# =============================================================================
# SECTION 1: ENUMERATIONS
# =============================================================================

class BacktestStatus(Enum):
    """Backtest execution status."""
    SUCCESS = "SUCCESS"
    NO_TRADES = "NO_TRADES"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


# =============================================================================
# SECTION 2: DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class EquityPoint:
    """One row of the equity curve."""
    index: int
    time: pd.Timestamp
    equity: float
    mark_to_market: float
    peak: float
    drawdown: float


@dataclass(frozen=True)
class RiskSummary:
    """Distribution statistics of the per-bar mark-to-market returns."""
    observations: int = 0
    per_bar_volatility: float = 0.0
    annualized_volatility: float = 0.0
    sharpe_ratio: float = 0.0
    skewness: float = 0.0
    excess_kurtosis: float = 0.0
    var_95: float = 0.0           # 5th percentile per-bar return (fraction)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "observations": self.observations,
            "per_bar_volatility": self.per_bar_volatility,
            "annualized_volatility": self.annualized_volatility,
            "sharpe_ratio": self.sharpe_ratio,
            "skewness": self.skewness,
            "excess_kurtosis": self.excess_kurtosis,
            "var_95": self.var_95,
        }


EQUITY_COLUMNS: Tuple[str, ...] = ("bar_index", "equity", "mark_to_market", "peak", "drawdown")


@dataclass(frozen=True, eq=False)
class BacktestResult:
    """
    Complete result of one backtest run.

    Percent fields (total_return_pct, avg_monthly_pct, max_drawdown_pct,
    win_rate) are in percent points.
    """
    status: BacktestStatus
    parameters: StrategyParameters
    initial_equity: float
    final_equity: float
    total_return_pct: float
    avg_monthly_pct: float
    max_drawdown_pct: float
    trade_count: int
    win_rate: float
    return_convention: ReturnConvention
    bars_used: int
    warmup_bars: int
    monthly_returns: pd.Series = field(default_factory=lambda: pd.Series(dtype=float))
    equity_curve: pd.DataFrame = field(
        default_factory=lambda: pd.DataFrame(columns=list(EQUITY_COLUMNS))
    )
    trade_log: Tuple[TradeRecord, ...] = ()
    risk: RiskSummary = field(default_factory=RiskSummary)
    execution_time_ms: float = 0.0

    @property
    def exit_reasons(self) -> Dict[str, int]:
        """Count of closed trades per exit reason."""
        counts: Dict[str, int] = {}
        for trade in self.trade_log:
            counts[trade.exit_reason.value] = counts.get(trade.exit_reason.value, 0) + 1
        return counts

    def equity_points(self) -> List[EquityPoint]:
        """Equity curve as EquityPoint records."""
        return [
            EquityPoint(
                index=int(row.bar_index),
                time=ts,
                equity=float(row.equity),
                mark_to_market=float(row.mark_to_market),
                peak=float(row.peak),
                drawdown=float(row.drawdown),
            )
            for ts, row in self.equity_curve.iterrows()
        ]

    def per_bar_returns(self) -> np.ndarray:
        """Per-bar returns of the mark-to-market equity."""
        if self.equity_curve.empty:
            return np.array([], dtype=float)
        return per_bar_returns(self.equity_curve["mark_to_market"].to_numpy(dtype=float))

    def to_dict(self, include_trades: bool = True) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = {
            "status": self.status.value,
            "parameters": self.parameters.to_dict(),
            "initial_equity": float(self.initial_equity),
            "final_equity": float(self.final_equity),
            "total_return_pct": float(self.total_return_pct),
            "avg_monthly_pct": float(self.avg_monthly_pct),
            "max_drawdown_pct": float(self.max_drawdown_pct),
            "trade_count": int(self.trade_count),
            "win_rate": float(self.win_rate),
            "return_convention": self.return_convention.value,
            "bars_used": self.bars_used,
            "warmup_bars": self.warmup_bars,
            "monthly_returns": {str(k): float(v) for k, v in self.monthly_returns.items()},
            "exit_reasons": self.exit_reasons,
            "risk": self.risk.to_dict(),
        }
        if include_trades:
            data["trades"] = [t.to_dict() for t in self.trade_log]
        return data


@dataclass(frozen=True, eq=False)
class FoldResult:
    """Backtest of one out-of-sample walk-forward fold."""
    fold: int
    start_index: int
    end_index: int
    result: BacktestResult

    @property
    def bars(self) -> int:
        return self.end_index - self.start_index

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fold": self.fold,
            "start_index": self.start_index,
            "end_index": self.end_index,
            "avg_monthly_pct": float(self.result.avg_monthly_pct),
            "max_drawdown_pct": float(self.result.max_drawdown_pct),
            "trade_count": int(self.result.trade_count),
            "win_rate": float(self.result.win_rate),
        }


@dataclass(frozen=True, eq=False)
class WalkForwardResult:
    """Aggregate of the qualifying walk-forward folds."""
    status: ValidationStatus
    avg_monthly_pct: float = 0.0
    worst_drawdown_pct: float = 0.0       # Max across folds
    avg_trade_count: float = 0.0
    avg_win_rate: float = 0.0
    folds: Tuple[FoldResult, ...] = ()

    @property
    def fold_count(self) -> int:
        return len(self.folds)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "avg_monthly_pct": float(self.avg_monthly_pct),
            "worst_drawdown_pct": float(self.worst_drawdown_pct),
            "avg_trade_count": float(self.avg_trade_count),
            "avg_win_rate": float(self.avg_win_rate),
            "folds": [f.to_dict() for f in self.folds],
        }


@dataclass(frozen=True)
class MonteCarloProjection:
    """Distribution of resampled terminal returns (percent points)."""
    status: ValidationStatus
    iterations: int = 0
    horizon_bars: int = 0
    p10: float = 0.0
    p50: float = 0.0
    p90: float = 0.0
    mean: float = 0.0
    prob_positive: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "iterations": self.iterations,
            "horizon_bars": self.horizon_bars,
            "p10": float(self.p10),
            "p50": float(self.p50),
            "p90": float(self.p90),
            "mean": float(self.mean),
            "prob_positive": float(self.prob_positive),
        }


# =============================================================================
# SECTION 3: RETURN CALCULATOR
# =============================================================================

class ReturnCalculator:
    """
    Monthly bucketing and average monthly return.

    Arithmetic:
        mean of (bucket_end[k] - bucket_end[k-1]) / bucket_end[k-1]
    Geometric:
        (final / initial) ** (1 / months) - 1,  months >= 1
        Ruin (final <= 0) maps to -100%.
    """

    @staticmethod
    def bucket_keys(times: pd.DatetimeIndex, settings: EngineSettings) -> np.ndarray:
        """Bucket label per bar."""
        if settings.bucket_mode == BucketMode.FIXED_BARS:
            return np.arange(len(times)) // settings.bars_per_bucket
        utc = times.tz_convert("UTC") if times.tz is not None else times
        return np.asarray(utc.year * 100 + utc.month)

    @staticmethod
    def bucket_ends(
        mtm: np.ndarray,
        times: pd.DatetimeIndex,
        settings: EngineSettings,
    ) -> pd.Series:
        """Latest marked equity of every bucket, in order."""
        if len(mtm) == 0:
            return pd.Series(dtype=float)
        keys = ReturnCalculator.bucket_keys(times, settings)
        last = np.r_[keys[1:] != keys[:-1], True]
        values = mtm[last]
        if settings.bucket_mode == BucketMode.FIXED_BARS:
            labels = [f"bucket-{int(k) + 1}" for k in keys[last]]
        else:
            labels = [f"{int(k) // 100:04d}-{int(k) % 100:02d}" for k in keys[last]]
        return pd.Series(values, index=labels, dtype=float)

    @staticmethod
    def monthly_returns(ends: pd.Series) -> pd.Series:
        """Percent change between consecutive bucket ends."""
        if len(ends) < 2:
            return pd.Series(dtype=float)
        prev = ends.to_numpy()[:-1]
        curr = ends.to_numpy()[1:]
        with np.errstate(divide="ignore", invalid="ignore"):
            pct = np.where(prev != 0, (curr - prev) / np.abs(prev), 0.0) * 100.0
        return pd.Series(pct, index=ends.index[1:], dtype=float)

    @staticmethod
    def elapsed_months(times: pd.DatetimeIndex, settings: EngineSettings) -> float:
        if settings.bucket_mode == BucketMode.FIXED_BARS:
            months = len(times) / settings.bars_per_bucket
        elif len(times) > 1:
            span_days = (times[-1] - times[0]).total_seconds() / 86400.0
            months = span_days / DAYS_PER_MONTH
        else:
            months = 0.0
        return max(1.0, months)

    @staticmethod
    def average_monthly(
        monthly: pd.Series,
        initial_equity: float,
        final_equity: float,
        months: float,
        convention: ReturnConvention,
    ) -> float:
        """Average monthly return in percent under one convention."""
        if convention == ReturnConvention.GEOMETRIC:
            if final_equity <= 0:
                return -100.0
            return ((final_equity / initial_equity) ** (1.0 / months) - 1.0) * 100.0
        if len(monthly) == 0:
            return 0.0
        return float(monthly.mean())


# =============================================================================
# SECTION 4: RISK CALCULATOR
# =============================================================================

def per_bar_returns(equity: Sequence[float]) -> np.ndarray:
    """
    Per-bar returns of an equity path.

    r_i = (e_i - e_{i-1}) / max(1e-9, e_{i-1})
    """
    e = np.asarray(equity, dtype=float)
    if len(e) < 2:
        return np.array([], dtype=float)
    return (e[1:] - e[:-1]) / np.maximum(RETURN_EPSILON, e[:-1])


class RiskCalculator:
    """Distribution statistics of per-bar returns."""

    @staticmethod
    def calculate(returns: np.ndarray, annualization_bars: int) -> RiskSummary:
        """
        Calculate the risk summary.

        Args:
            returns: Per-bar returns (fractions)
            annualization_bars: Bars per year

        Returns:
            RiskSummary (zeros when fewer than 3 returns)
        """
        r = np.asarray(returns, dtype=float)
        r = r[np.isfinite(r)]
        if len(r) < 3:
            return RiskSummary(observations=len(r))

        vol = float(np.std(r, ddof=1))
        if vol > 0:
            sharpe = float(np.mean(r) / vol * math.sqrt(annualization_bars))
            skewness = float(stats.skew(r))
            kurtosis = float(stats.kurtosis(r))
        else:
            sharpe = skewness = kurtosis = 0.0

        return RiskSummary(
            observations=len(r),
            per_bar_volatility=vol,
            annualized_volatility=vol * math.sqrt(annualization_bars),
            sharpe_ratio=sharpe,
            skewness=skewness,
            excess_kurtosis=kurtosis,
            var_95=float(np.percentile(r, (1 - VAR_CONFIDENCE) * 100)),
        )


# =============================================================================
# SECTION 5: BACKTEST ENGINE
# =============================================================================

class BacktestEngine:
    """
    Runs one strategy configuration over one bar frame.

    The engine holds no per-run state; `run` can be called repeatedly and
    from several processes on the same bars.
    """

    def __init__(self, settings: Optional[EngineSettings] = None):
        """
        Initialize backtest engine.

        Args:
            settings: Engine settings (defaults if None)
        """
        self.settings = settings or EngineSettings()

    def run(self, bars: pd.DataFrame, params: StrategyParameters) -> BacktestResult:
        """
        Run a backtest.

        Args:
            bars: Bar frame (UTC DatetimeIndex, close column required)
            params: Strategy configuration

        Returns:
            BacktestResult; status INSUFFICIENT_DATA when bars <= warm-up
        """
        start_time = time.time()
        validate_bars(bars)
        settings = self.settings
        n = len(bars)
        warmup = settings.warmup_bars(params)

        if n <= warmup:
            return self._error_result(params, warmup, n)

        indicators = compute_indicator_set(bars, params)
        signals = build_signal_rule(params.rule).evaluate(indicators, params, warmup)
        manager = TradeManager(params, signals, indicators.atr.to_numpy(), settings)

        close = indicators.close.to_numpy()
        times = bars.index
        m = n - warmup
        equity = np.empty(m)
        mtm = np.empty(m)
        peaks = np.empty(m)
        drawdowns = np.empty(m)

        peak = settings.initial_equity
        drawdown = 0.0
        for j, i in enumerate(range(warmup, n)):
            price = close[i]
            manager.step(i, times[i], price, drawdown, allow_entry=i < n - 1)
            if i == n - 1 and manager.position is not None:
                manager.close(i, times[i], price, ExitReason.END_OF_DATA)

            marked = manager.mark_to_market(price)
            peak = max(peak, marked)
            drawdown = min(1.0, max(0.0, (peak - marked) / peak))

            equity[j] = manager.equity
            mtm[j] = marked
            peaks[j] = peak
            drawdowns[j] = drawdown

        trade_times = times[warmup:]
        curve = pd.DataFrame(
            {
                "bar_index": np.arange(warmup, n),
                "equity": equity,
                "mark_to_market": mtm,
                "peak": peaks,
                "drawdown": drawdowns,
            },
            index=trade_times,
        )

        final_equity = manager.equity
        ends = ReturnCalculator.bucket_ends(mtm, trade_times, settings)
        monthly = ReturnCalculator.monthly_returns(ends)
        avg_monthly = ReturnCalculator.average_monthly(
            monthly,
            settings.initial_equity,
            final_equity,
            ReturnCalculator.elapsed_months(times, settings),
            settings.return_convention,
        )

        trades = tuple(manager.trades)
        wins = sum(1 for t in trades if t.is_win)
        trade_count = manager.entries
        returns = per_bar_returns(np.r_[settings.initial_equity, mtm])

        result = BacktestResult(
            status=BacktestStatus.SUCCESS if trade_count else BacktestStatus.NO_TRADES,
            parameters=params,
            initial_equity=settings.initial_equity,
            final_equity=final_equity,
            total_return_pct=(final_equity / settings.initial_equity - 1.0) * 100.0,
            avg_monthly_pct=avg_monthly,
            max_drawdown_pct=float(drawdowns.max()) * 100.0,
            trade_count=trade_count,
            win_rate=(wins / len(trades) * 100.0) if trades else 0.0,
            return_convention=settings.return_convention,
            bars_used=n,
            warmup_bars=warmup,
            monthly_returns=monthly,
            equity_curve=curve,
            trade_log=trades,
            risk=RiskCalculator.calculate(returns, settings.annualization_bars),
            execution_time_ms=(time.time() - start_time) * 1000,
        )
        logger.debug(
            f"Backtest {params.rule.value}: {trade_count} trades, "
            f"final {final_equity:,.2f}, max DD {result.max_drawdown_pct:.2f}%"
        )
        return result

    def _error_result(self, params: StrategyParameters, warmup: int, n: int) -> BacktestResult:
        """Create a degenerate result with empty metrics."""
        logger.warning(f"Backtest skipped: {n} bars do not exceed warm-up of {warmup}")
        equity = self.settings.initial_equity
        return BacktestResult(
            status=BacktestStatus.INSUFFICIENT_DATA,
            parameters=params,
            initial_equity=equity,
            final_equity=equity,
            total_return_pct=0.0,
            avg_monthly_pct=0.0,
            max_drawdown_pct=0.0,
            trade_count=0,
            win_rate=0.0,
            return_convention=self.settings.return_convention,
            bars_used=n,
            warmup_bars=warmup,
        )


# =============================================================================
# SECTION 6: WALK-FORWARD VALIDATOR
# =============================================================================

def aggregate_folds(fold_results: Sequence[Any]) -> Dict[str, float]:
    """
    Aggregate per-fold metrics.

    Each item needs avg_monthly_pct, max_drawdown_pct, trade_count and
    win_rate attributes. Returns/trades/win rate are averaged; drawdown is
    the worst (max) fold.
    """
    if not fold_results:
        raise ValueError("aggregate_folds() needs at least one fold")
    return {
        "avg_monthly_pct": float(np.mean([r.avg_monthly_pct for r in fold_results])),
        "worst_drawdown_pct": float(max(r.max_drawdown_pct for r in fold_results)),
        "avg_trade_count": float(np.mean([r.trade_count for r in fold_results])),
        "avg_win_rate": float(np.mean([r.win_rate for r in fold_results])),
    }


class WalkForwardValidator:
    """
    Sequential out-of-sample validation.

    With n bars and F folds, chunk = n // (F + 1) and fold k (0-based)
    backtests bars [chunk * (k + 1), min(n, chunk * (k + 2))). Every fold
    starts flat with fresh equity; nothing carries across folds.
    """

    def __init__(
        self,
        engine: Optional[BacktestEngine] = None,
        settings: Optional[WalkForwardSettings] = None,
    ):
        self.engine = engine or BacktestEngine()
        self.settings = settings or WalkForwardSettings()

    def fold_bounds(self, n: int, fold_count: Optional[int] = None) -> List[Tuple[int, int]]:
        """(start, end) of every fold before the length filter."""
        folds = self.settings.fold_count if fold_count is None else fold_count
        if folds < 1:
            raise ValueError(f"fold_count must be >= 1, got {folds}")
        chunk = n // (folds + 1)
        bounds = []
        for k in range(folds):
            start = chunk * (k + 1)
            bounds.append((start, min(n, start + chunk)))
        return bounds

    def validate(
        self,
        bars: pd.DataFrame,
        params: StrategyParameters,
        fold_count: Optional[int] = None,
    ) -> WalkForwardResult:
        """
        Perform walk-forward validation.

        Args:
            bars: Full bar frame
            params: Strategy configuration
            fold_count: Override of settings.fold_count

        Returns:
            WalkForwardResult; status NO_DATA when no fold qualifies
        """
        folds: List[FoldResult] = []
        for k, (start, end) in enumerate(self.fold_bounds(len(bars), fold_count)):
            if end - start < self.settings.min_fold_bars:
                continue
            result = self.engine.run(bars.iloc[start:end], params)
            if result.status == BacktestStatus.INSUFFICIENT_DATA:
                continue
            folds.append(FoldResult(fold=k + 1, start_index=start, end_index=end, result=result))

        if not folds:
            return WalkForwardResult(status=ValidationStatus.NO_DATA)

        agg = aggregate_folds([f.result for f in folds])
        return WalkForwardResult(status=ValidationStatus.OK, folds=tuple(folds), **agg)


# =============================================================================
# SECTION 7: MONTE CARLO RESAMPLER
# =============================================================================

def _quantile(sorted_values: np.ndarray, p: float) -> float:
    """Lower empirical quantile: sorted[floor((N - 1) * p)]."""
    return float(sorted_values[int(math.floor((len(sorted_values) - 1) * p))])


class MonteCarloResampler:
    """
    IID bootstrap of per-bar returns.

    Each iteration draws `horizon` returns with replacement and compounds
    them multiplicatively into a terminal return. Randomness comes only from
    the seed or the injected generator.
    """

    def __init__(
        self,
        settings: Optional[MonteCarloSettings] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self.settings = settings or MonteCarloSettings()
        self._rng = rng

    def resample(
        self,
        returns: Sequence[float],
        horizon_bars: Optional[int] = None,
        iterations: Optional[int] = None,
        seed: Optional[int] = None,
    ) -> MonteCarloProjection:
        """
        Run the bootstrap.

        Args:
            returns: Realized per-bar returns (fractions)
            horizon_bars: Draws per path (settings default)
            iterations: Number of paths (settings default)
            seed: Overrides the settings seed; ignored with an injected rng

        Returns:
            MonteCarloProjection with p10 <= p50 <= p90

        Raises:
            ValueError: On horizon_bars or iterations below 1
        """
        pool = np.asarray(returns, dtype=float)
        pool = pool[np.isfinite(pool)]
        if horizon_bars is None:
            horizon_bars = self.settings.horizon_bars
        horizon = TRADING_DAYS_MONTH if horizon_bars is None else horizon_bars
        n_iter = self.settings.iterations if iterations is None else iterations
        if horizon < 1 or n_iter < 1:
            raise ValueError(
                f"horizon_bars and iterations must be >= 1, got {horizon} and {n_iter}"
            )

        if len(pool) < self.settings.min_returns:
            logger.warning(
                f"Monte Carlo skipped: {len(pool)} returns, "
                f"need {self.settings.min_returns}"
            )
            return MonteCarloProjection(status=ValidationStatus.INSUFFICIENT_DATA)

        rng = self._rng or np.random.default_rng(
            seed if seed is not None else self.settings.seed
        )
        draws = rng.integers(0, len(pool), size=(n_iter, horizon))
        terminal = (np.prod(1.0 + pool[draws], axis=1) - 1.0) * 100.0
        ordered = np.sort(terminal)

        p10, p50, p90 = (_quantile(ordered, q) for q in MC_QUANTILES)
        logger.info(
            f"Monte Carlo: {n_iter} paths x {horizon} bars, "
            f"p10={p10:+.2f}% p50={p50:+.2f}% p90={p90:+.2f}%"
        )
        return MonteCarloProjection(
            status=ValidationStatus.OK,
            iterations=n_iter,
            horizon_bars=horizon,
            p10=p10,
            p50=p50,
            p90=p90,
            mean=float(terminal.mean()),
            prob_positive=float((terminal > 0).mean()),
        )


def default_horizon(settings: EngineSettings) -> int:
    """One month of bars for the configured bucketing."""
    if settings.bucket_mode == BucketMode.FIXED_BARS:
        return settings.bars_per_bucket
    return TRADING_DAYS_MONTH


# =============================================================================
# SECTION 8: REPORT FORMATTING
# =============================================================================

def format_backtest_report(
    result: BacktestResult,
    walk_forward: Optional[WalkForwardResult] = None,
    monte_carlo: Optional[MonteCarloProjection] = None,
) -> str:
    """
    Format a backtest result as a human-readable text report.

    Args:
        result: Full-history backtest
        walk_forward: Optional walk-forward aggregate
        monte_carlo: Optional Monte Carlo projection

    Returns:
        Formatted string report
    """
    p = result.parameters
    curve = result.equity_curve
    period = (
        f"{curve.index[0]:%Y-%m-%d} to {curve.index[-1]:%Y-%m-%d}"
        if len(curve) else "n/a"
    )
    lines = [
        "=" * 70,
        "BACKTEST PERFORMANCE REPORT",
        "=" * 70,
        f"Rule:     {p.rule.value}",
        f"Period:   {period}",
        f"Bars:     {result.bars_used:,} ({result.warmup_bars} warm-up)",
        f"Status:   {result.status.value}",
        "",
        "-" * 70,
        "CAPITAL",
        "-" * 70,
        f"Initial Equity:    ${result.initial_equity:,.2f}",
        f"Final Equity:      ${result.final_equity:,.2f}",
        f"Total Return:      {result.total_return_pct:+.2f}%",
        "",
        "-" * 70,
        "KEY METRICS",
        "-" * 70,
        f"  Avg Monthly ({result.return_convention.value}): {result.avg_monthly_pct:+.3f}%",
        f"  Maximum Drawdown:  {result.max_drawdown_pct:.2f}%",
        f"  Trades:            {result.trade_count}",
        f"  Win Rate:          {result.win_rate:.1f}%",
        "",
        "-" * 70,
        "RISK ANALYSIS (PER BAR)",
        "-" * 70,
        f"Volatility:        {result.risk.per_bar_volatility:.4%}",
        f"Sharpe (annual):   {result.risk.sharpe_ratio:.3f}",
        f"VaR (95%):         {result.risk.var_95:.4%}",
        f"Skewness:          {result.risk.skewness:+.3f}",
        f"Excess Kurtosis:   {result.risk.excess_kurtosis:.3f}",
    ]

    if result.trade_log:
        lines.extend(["", "-" * 70, "EXIT REASONS", "-" * 70])
        for reason, count in sorted(result.exit_reasons.items()):
            lines.append(f"  {reason:<22} {count}")

    if walk_forward is not None:
        lines.extend([
            "",
            "-" * 70,
            "WALK-FORWARD ANALYSIS",
            "-" * 70,
            f"Status:            {walk_forward.status.value}",
            f"Folds:             {walk_forward.fold_count}",
            f"Avg Monthly:       {walk_forward.avg_monthly_pct:+.3f}%",
            f"Worst Drawdown:    {walk_forward.worst_drawdown_pct:.2f}%",
            f"Avg Trades:        {walk_forward.avg_trade_count:.1f}",
            f"Avg Win Rate:      {walk_forward.avg_win_rate:.1f}%",
        ])

    if monte_carlo is not None:
        lines.extend([
            "",
            "-" * 70,
            "MONTE CARLO PROJECTION",
            "-" * 70,
            f"Status:            {monte_carlo.status.value}",
        ])
        if monte_carlo.status == ValidationStatus.OK:
            lines.extend([
                f"Paths x Horizon:   {monte_carlo.iterations} x {monte_carlo.horizon_bars} bars",
                f"P10 / P50 / P90:   {monte_carlo.p10:+.2f}% / {monte_carlo.p50:+.2f}% / {monte_carlo.p90:+.2f}%",
                f"Mean:              {monte_carlo.mean:+.2f}%",
                f"P(positive):       {monte_carlo.prob_positive:.1%}",
            ])

    lines.append("=" * 70)
    return "\n".join(lines)


# =============================================================================
# SECTION 9: CONVENIENCE
# =============================================================================

def run_backtest(
    bars: pd.DataFrame,
    params: Optional[StrategyParameters] = None,
    settings: Optional[EngineSettings] = None,
) -> BacktestResult:
    """
    Convenience function for a single backtest.

    Example:
        >>> bars, _ = load_bars_csv("eurusd_1h.csv")
        >>> result = run_backtest(bars, StrategyParameters(fast_window=5))
        >>> print(format_backtest_report(result))
    """
    return BacktestEngine(settings).run(bars, params or StrategyParameters())


# =============================================================================
# SECTION 10: MODULE EXPORTS
# =============================================================================

__all__ = [
    'VERSION',

    # Enumerations
    'BacktestStatus',

    # Data structures
    'EquityPoint',
    'RiskSummary',
    'BacktestResult',
    'FoldResult',
    'WalkForwardResult',
    'MonteCarloProjection',

    # Calculators
    'ReturnCalculator',
    'RiskCalculator',
    'per_bar_returns',

    # Engine and validators
    'BacktestEngine',
    'WalkForwardValidator',
    'aggregate_folds',
    'MonteCarloResampler',
    'default_horizon',

    # Convenience
    'run_backtest',
    'format_backtest_report',
]
