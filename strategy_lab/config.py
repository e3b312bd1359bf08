"""
Configuration Module for the Robust Strategy Lab

This module centralizes all configuration constants, enumerations, strategy
parameter records and engine settings used throughout the backtesting and
validation pipeline.

All "magic numbers" and configuration values are defined here to ensure:
1. Single source of truth for all constants
2. Easy modification without touching engine code
3. Transparency in assumptions and thresholds
4. Consistency across all modules

Settings objects are frozen dataclasses that validate themselves on
construction. The library never reads environment variables; callers (the
demo runner, tests) build settings explicitly and pass them in.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional


VERSION: str = "1.0.0"


# =============================================================================
# CONSTANTS
# =============================================================================

# Trading calendar
TRADING_DAYS_YEAR: int = 252
TRADING_DAYS_MONTH: int = 21
DAYS_PER_MONTH: float = 30.4375            # Mean Gregorian month length
BARS_PER_MONTH_INTRADAY: int = 24 * 30     # Hourly bars in a 30-day month

# Capital
INITIAL_EQUITY: float = 10_000.0

# Warm-up
MIN_WARMUP_BARS: int = 30
WARMUP_BUFFER: int = 2

# Sizing
MIN_NOTIONAL: float = 1.0                  # Smallest position worth opening

# Monte Carlo
MC_ITERATIONS: int = 500
MC_MIN_RETURNS: int = 100
MC_SEED: int = 42
MC_QUANTILES: tuple = (0.10, 0.50, 0.90)

# Walk-forward
WF_FOLD_COUNT: int = 4
WF_MIN_FOLD_BARS: int = 120

# Train/holdout split of the search history
HOLDOUT_FRACTION: float = 0.25


# =============================================================================
# ENUMERATIONS
# =============================================================================

class SignalRuleType(Enum):
    """Strategy families sharing one trade state machine."""
    TREND_MOMENTUM = "trend_momentum"
    BAND_REVERSION = "band_reversion"
    BREAKOUT = "breakout"


class ReturnConvention(Enum):
    """
    How the average monthly return is derived.

    ARITHMETIC: mean of bucket-to-bucket percent changes of marked equity
    GEOMETRIC: (final / initial) ** (1 / months) - 1
    """
    ARITHMETIC = "arithmetic"
    GEOMETRIC = "geometric"


class BucketMode(Enum):
    """How bars are grouped into monthly buckets."""
    CALENDAR = "calendar"        # UTC calendar month of the bar timestamp
    FIXED_BARS = "fixed_bars"    # Every N bars (intraday feeds)


class Direction(Enum):
    """Position state of the single-position trade machine."""
    FLAT = 0
    LONG = 1
    SHORT = -1


class ExitReason(Enum):
    """Why a position was closed, in priority order."""
    STOP = "stop"
    TAKE = "take"
    TREND_REVERSAL = "trend_reversal"
    MEAN_REACHED = "mean_reached"
    MOMENTUM_EXHAUSTION = "momentum_exhaustion"
    MAX_HOLDING = "max_holding"
    END_OF_DATA = "end_of_data"


class ScoreObjective(Enum):
    """
    How the parameter search ranks accepted candidates.

    PENALIZED_RETURN: avg_monthly - penalty_weight * worst_dd
    TARGET_MONTHLY: -|target - avg_monthly| - soft_dd_weight * max(0, worst_dd - soft_dd_limit)
    """
    PENALIZED_RETURN = "penalized_return"
    TARGET_MONTHLY = "target_monthly"


class ValidationStatus(Enum):
    """Status codes for validation results."""
    OK = "ok"
    NO_DATA = "no_data"
    INSUFFICIENT_DATA = "insufficient_data"


# =============================================================================
# STRATEGY PARAMETERS
# =============================================================================

@dataclass(frozen=True)
class StrategyParameters:
    """
    One candidate strategy configuration.

    Window lengths are in bars. Percentages (min_stop_pct, risk_fraction,
    kill_drawdown_pct, fee_rate) are fractions, not percent points.
    RSI thresholds are on the 0-100 scale.
    """

    rule: SignalRuleType = SignalRuleType.TREND_MOMENTUM

    # Indicator windows
    fast_window: int = 8
    slow_window: int = 21
    rsi_period: int = 14
    atr_period: int = 14

    # Trend/momentum entry filters: long needs RSI <= buy_rsi_max,
    # short needs RSI >= sell_rsi_min
    buy_rsi_max: float = 100.0
    sell_rsi_min: float = 0.0

    # Momentum exhaustion exits (disabled when None)
    exit_rsi_long: Optional[float] = None
    exit_rsi_short: Optional[float] = None

    # Band mean-reversion
    band_window: int = 20
    band_k: float = 2.0
    band_rsi_long_max: float = 45.0
    band_rsi_short_min: float = 55.0

    # Breakout
    breakout_window: int = 20

    # Stops and targets
    atr_mult: float = 2.0
    min_stop_pct: float = 0.001
    reward_risk: float = 1.5

    # Sizing and costs
    risk_fraction: float = 0.01
    leverage: float = 1.0
    fee_rate: float = 0.0002

    # Risk controls
    max_holding_bars: Optional[int] = None
    kill_drawdown_pct: Optional[float] = None
    allow_short: bool = True

    def __post_init__(self):
        """Validate parameter invariants."""
        if isinstance(self.rule, str):
            object.__setattr__(self, "rule", SignalRuleType(self.rule))

        for name in ("fast_window", "slow_window", "rsi_period", "atr_period",
                     "band_window", "breakout_window"):
            value = getattr(self, name)
            if int(value) != value or value <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")
            object.__setattr__(self, name, int(value))

        if self.fast_window >= self.slow_window:
            raise ValueError(
                f"fast_window must be below slow_window "
                f"(got {self.fast_window} >= {self.slow_window})"
            )
        if not 0 < self.risk_fraction <= 1:
            raise ValueError(f"risk_fraction must be in (0, 1], got {self.risk_fraction}")
        if not self.leverage > 0 or not math.isfinite(self.leverage):
            raise ValueError(f"leverage must be positive, got {self.leverage}")
        if self.fee_rate < 0:
            raise ValueError(f"fee_rate must be non-negative, got {self.fee_rate}")
        if self.min_stop_pct < 0 or self.atr_mult < 0:
            raise ValueError("min_stop_pct and atr_mult must be non-negative")
        if self.reward_risk <= 0:
            raise ValueError(f"reward_risk must be positive, got {self.reward_risk}")
        if self.band_k <= 0:
            raise ValueError(f"band_k must be positive, got {self.band_k}")
        if self.max_holding_bars is not None and self.max_holding_bars <= 0:
            raise ValueError(f"max_holding_bars must be positive, got {self.max_holding_bars}")
        if self.kill_drawdown_pct is not None and not 0 < self.kill_drawdown_pct <= 1:
            raise ValueError(
                f"kill_drawdown_pct must be in (0, 1], got {self.kill_drawdown_pct}"
            )

    @property
    def longest_window(self) -> int:
        """Longest indicator lookback the configured rule depends on."""
        windows = [self.fast_window, self.slow_window, self.rsi_period, self.atr_period]
        if self.rule == SignalRuleType.BAND_REVERSION:
            windows.append(self.band_window)
        elif self.rule == SignalRuleType.BREAKOUT:
            windows.append(self.breakout_window)
        return max(windows)

    def with_overrides(self, **overrides: Any) -> "StrategyParameters":
        """Return a copy with the given fields replaced (validated again)."""
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["rule"] = self.rule.value
        return data

    @classmethod
    def field_names(cls) -> List[str]:
        """Names accepted as grid keys."""
        return [f.name for f in fields(cls)]


# =============================================================================
# ENGINE SETTINGS
# =============================================================================

@dataclass(frozen=True)
class EngineSettings:
    """Settings shared by every backtest run."""

    initial_equity: float = INITIAL_EQUITY

    # Warm-up = max(min_warmup_bars, longest window + warmup_buffer)
    min_warmup_bars: int = MIN_WARMUP_BARS
    warmup_buffer: int = WARMUP_BUFFER

    # Entries whose notional falls below this are skipped
    min_notional: float = MIN_NOTIONAL

    # Monthly statistics
    return_convention: ReturnConvention = ReturnConvention.ARITHMETIC
    bucket_mode: BucketMode = BucketMode.CALENDAR
    bars_per_bucket: int = BARS_PER_MONTH_INTRADAY

    # Bars per year used to annualize the risk summary
    annualization_bars: int = TRADING_DAYS_YEAR

    def __post_init__(self):
        """Validate configuration"""
        if not self.initial_equity > 0:
            raise ValueError("initial_equity must be positive")
        if self.min_warmup_bars < 1 or self.warmup_buffer < 0:
            raise ValueError("min_warmup_bars must be >= 1 and warmup_buffer >= 0")
        if self.min_notional < 0:
            raise ValueError("min_notional must be non-negative")
        if self.bars_per_bucket <= 0 or self.annualization_bars <= 0:
            raise ValueError("bars_per_bucket and annualization_bars must be positive")

    def warmup_bars(self, params: StrategyParameters) -> int:
        """Number of leading bars reserved for indicator warm-up."""
        return max(self.min_warmup_bars, params.longest_window + self.warmup_buffer)


@dataclass(frozen=True)
class WalkForwardSettings:
    """Fold layout for walk-forward validation."""

    fold_count: int = WF_FOLD_COUNT
    min_fold_bars: int = WF_MIN_FOLD_BARS

    def __post_init__(self):
        if self.fold_count < 1:
            raise ValueError("fold_count must be >= 1")
        if self.min_fold_bars < 1:
            raise ValueError("min_fold_bars must be >= 1")


@dataclass(frozen=True)
class MonteCarloSettings:
    """Bootstrap resampling settings."""

    iterations: int = MC_ITERATIONS
    horizon_bars: Optional[int] = None    # None: one month of bars for the engine bucketing
    min_returns: int = MC_MIN_RETURNS
    seed: Optional[int] = MC_SEED

    def __post_init__(self):
        if self.iterations < 1 or (self.horizon_bars is not None and self.horizon_bars < 1):
            raise ValueError("iterations and horizon_bars must be >= 1")
        if self.min_returns < 1:
            raise ValueError("min_returns must be >= 1")


@dataclass(frozen=True)
class SearchConstraints:
    """Robustness constraints and scoring weights for the parameter search."""

    # Rejection thresholds
    max_worst_drawdown_pct: float = 35.0
    min_avg_trades: float = 2.0
    require_positive_return: bool = False

    # score = avg_monthly - penalty_weight * worst_dd + trade_bonus_weight * trades
    penalty_weight: float = 0.08
    trade_bonus_weight: float = 0.0

    # TARGET_MONTHLY ranks by distance to a monthly return goal instead
    objective: ScoreObjective = ScoreObjective.PENALIZED_RETURN
    target_monthly_pct: float = 20.0
    soft_dd_limit_pct: float = 35.0
    soft_dd_weight: float = 0.5

    # Best unconstrained candidate, only returned when allow_fallback is set
    allow_fallback: bool = False
    fallback_penalty_weight: float = 0.04

    def __post_init__(self):
        if isinstance(self.objective, str):
            object.__setattr__(self, "objective", ScoreObjective(self.objective))
        if self.max_worst_drawdown_pct < 0 or self.min_avg_trades < 0:
            raise ValueError("constraint thresholds must be non-negative")
        if self.penalty_weight < 0 or self.fallback_penalty_weight < 0:
            raise ValueError("penalty weights must be non-negative")
        if self.soft_dd_limit_pct < 0 or self.soft_dd_weight < 0:
            raise ValueError("soft drawdown limit and weight must be non-negative")


# =============================================================================
# GRID PRESETS
# =============================================================================

# Hourly FX feed: trend + momentum with short side, kill-switch and time exit
INTRADAY_GRID: Dict[str, List[Any]] = {
    "rule": [SignalRuleType.TREND_MOMENTUM],
    "fast_window": [5, 8, 13],
    "slow_window": [21, 34, 55],
    "buy_rsi_max": [50.0, 55.0, 60.0],
    "sell_rsi_min": [40.0, 45.0, 50.0],
    "atr_mult": [1.5, 2.0, 2.5],
    "reward_risk": [1.2, 1.5, 2.0],
    "risk_fraction": [0.005, 0.01, 0.015],
    "leverage": [3.0, 5.0, 10.0],
    "min_stop_pct": [0.001, 0.002],
    "max_holding_bars": [24, 48, 72],
    "fee_rate": [0.0002],
    "kill_drawdown_pct": [0.25],
}

# Daily FX closes: long-only crossover with momentum exhaustion exit
DAILY_GRID: Dict[str, List[Any]] = {
    "rule": [SignalRuleType.TREND_MOMENTUM],
    "fast_window": [3, 5, 8, 10],
    "slow_window": [13, 21, 34],
    "buy_rsi_max": [55.0, 60.0, 65.0, 70.0],
    "exit_rsi_long": [62.0],
    "reward_risk": [1.0, 1.3, 1.6, 2.0],
    "risk_fraction": [0.01, 0.02, 0.03, 0.05],
    "leverage": [3.0, 5.0, 10.0, 20.0],
    "min_stop_pct": [0.002, 0.003, 0.005, 0.008],
    "atr_mult": [0.0],
    "allow_short": [False],
    "fee_rate": [0.00005],
}

# Strategy lab: one sub-grid per rule family so rule-specific knobs are only
# crossed with their own rule
MULTI_RULE_GRID: List[Dict[str, List[Any]]] = [
    {
        "rule": [SignalRuleType.TREND_MOMENTUM],
        "leverage": [2.0, 3.0, 5.0],
        "risk_fraction": [0.003, 0.005, 0.01],
        "fast_window": [5, 8, 13],
        "slow_window": [21, 34],
        "buy_rsi_max": [55.0, 60.0, 65.0],
        "sell_rsi_min": [35.0, 40.0, 45.0],
    },
    {
        "rule": [SignalRuleType.BAND_REVERSION],
        "leverage": [2.0, 3.0, 5.0],
        "risk_fraction": [0.003, 0.005, 0.01],
        "band_k": [1.5, 2.0, 2.5],
    },
    {
        "rule": [SignalRuleType.BREAKOUT],
        "leverage": [2.0, 3.0, 5.0],
        "risk_fraction": [0.003, 0.005, 0.01],
        "breakout_window": [10, 20, 30, 40],
    },
]


# =============================================================================
# GLOBAL CONFIGURATION INSTANCES
# =============================================================================

DEFAULT_PARAMETERS = StrategyParameters()
ENGINE = EngineSettings()
WALK_FORWARD = WalkForwardSettings()
MONTE_CARLO = MonteCarloSettings()
CONSTRAINTS = SearchConstraints()

GRID_PRESETS: Dict[str, Any] = {
    "intraday": INTRADAY_GRID,
    "daily": DAILY_GRID,
    "multi": MULTI_RULE_GRID,
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_grid_preset(name: str) -> Any:
    """
    Look up a named grid preset.

    Args:
        name: One of 'intraday', 'daily', 'multi'

    Returns:
        The grid mapping (or list of mappings)
    """
    try:
        return GRID_PRESETS[name]
    except KeyError:
        raise ValueError(
            f"Unknown grid preset {name!r}; choose from {sorted(GRID_PRESETS)}"
        ) from None


__all__ = [
    "VERSION",
    "TRADING_DAYS_YEAR",
    "TRADING_DAYS_MONTH",
    "DAYS_PER_MONTH",
    "BARS_PER_MONTH_INTRADAY",
    "INITIAL_EQUITY",
    "MC_QUANTILES",
    "HOLDOUT_FRACTION",
    "SignalRuleType",
    "Direction",
    "ExitReason",
    "ReturnConvention",
    "BucketMode",
    "ValidationStatus",
    "ScoreObjective",
    "StrategyParameters",
    "EngineSettings",
    "WalkForwardSettings",
    "MonteCarloSettings",
    "SearchConstraints",
    "INTRADAY_GRID",
    "DAILY_GRID",
    "MULTI_RULE_GRID",
    "DEFAULT_PARAMETERS",
    "ENGINE",
    "WALK_FORWARD",
    "MONTE_CARLO",
    "CONSTRAINTS",
    "get_grid_preset",
]
