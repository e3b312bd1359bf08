"""
Technical Indicator Library for the Robust Strategy Lab

INDICATOR ARCHITECTURE
    Indicators are grouped into three families, each exposed as a class of
    static calculators operating on pandas Series aligned with the bars:

    Family 1 - TREND
        - EMA: exponential moving average seeded with the first value
        - Crossover state: sign of (fast EMA - slow EMA)

    Family 2 - MOMENTUM
        - RSI: bounded momentum oscillator [0-100] built from EMA-smoothed
          gains and losses

    Family 3 - VOLATILITY
        - ATR: EMA of true range (close-to-close range on close-only feeds)
        - Bands: rolling mean +/- k population standard deviations
        - Donchian: highest high / lowest low of the previous N bars

    Every series has the same length and index as its input. Rolling
    statistics carry NaN until their window is full; callers never read an
    index below the warm-up boundary.

INDICATOR SET
    compute_indicator_set() evaluates every series a backtest needs once per
    run so the bar loop only performs O(1) lookups.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import pandas as pd

from strategy_lab.config import SignalRuleType, StrategyParameters

# Module-level logger
logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

RSI_PERIOD: int = 14
ATR_PERIOD: int = 14
BAND_PERIOD: int = 20
BAND_STD_DEV: float = 2.0
DONCHIAN_PERIOD: int = 20

RSI_CEILING: float = 100.0


# =============================================================================
# SECTION 1: TREND INDICATORS
# =============================================================================

class TrendIndicators:
    """Moving averages and crossover state."""

    @staticmethod
    def calculate_ema(series: pd.Series, period: int) -> pd.Series:
        """
        Calculate an exponential moving average.

        EMA[0] = series[0]
        EMA[i] = series[i] * k + EMA[i-1] * (1 - k),  k = 2 / (period + 1)

        Parameters
        ----------
        series : pd.Series
            Input values
        period : int
            Smoothing span; period=1 returns the input unchanged

        Returns
        -------
        pd.Series
            EMA values, same length as the input
        """
        if period <= 0:
            raise ValueError(f"EMA period must be positive, got {period}")
        series = series.astype(float)
        if period == 1:
            return series.copy()
        return series.ewm(span=period, adjust=False).mean()

    @staticmethod
    def crossover_state(fast: pd.Series, slow: pd.Series) -> pd.Series:
        """
        Trend state per bar: +1 when fast > slow, -1 when fast < slow, 0 on ties.
        """
        diff = (fast - slow).to_numpy(dtype=float)
        state = np.sign(np.nan_to_num(diff, nan=0.0)).astype(int)
        return pd.Series(state, index=fast.index, name="trend_state")


# =============================================================================
# SECTION 2: MOMENTUM INDICATORS
# =============================================================================

class MomentumIndicators:
    """Bounded momentum oscillators."""

    @staticmethod
    def calculate_rsi(close: pd.Series, period: int = RSI_PERIOD) -> pd.Series:
        """
        Calculate the Relative Strength Index.

        RSI = 100 - (100 / (1 + RS)),  RS = EMA(gains) / EMA(losses)
        RSI = 100 where the average loss is zero.

        Parameters
        ----------
        close : pd.Series
            Closing prices
        period : int
            EMA span for the gain/loss averages (default: 14)

        Returns
        -------
        pd.Series
            RSI values in [0, 100]
        """
        delta = close.astype(float).diff().fillna(0.0)

        gains = delta.clip(lower=0.0)
        losses = (-delta).clip(lower=0.0)

        avg_gain = TrendIndicators.calculate_ema(gains, period).to_numpy()
        avg_loss = TrendIndicators.calculate_ema(losses, period).to_numpy()

        with np.errstate(divide="ignore", invalid="ignore"):
            rs = avg_gain / avg_loss
            rsi = np.where(avg_loss > 0, 100.0 - 100.0 / (1.0 + rs), RSI_CEILING)

        return pd.Series(np.clip(rsi, 0.0, RSI_CEILING), index=close.index, name="rsi")


# =============================================================================
# SECTION 3: VOLATILITY INDICATORS
# =============================================================================

class VolatilityIndicators:
    """True range, rolling bands and channels."""

    @staticmethod
    def true_range(bars: pd.DataFrame) -> pd.Series:
        """
        True range per bar; TR[0] = 0.

        Bars without finite high and low use |close - previous close|.
        """
        close = bars["close"].astype(float)
        prev_close = close.shift(1)

        if "high" in bars and "low" in bars:
            high = bars["high"].astype(float)
            low = bars["low"].astype(float)
        else:
            high = pd.Series(np.nan, index=bars.index)
            low = pd.Series(np.nan, index=bars.index)

        tr_full = pd.concat(
            [high - low, (high - prev_close).abs(), (low - prev_close).abs()], axis=1
        ).max(axis=1)
        tr_close = (close - prev_close).abs()

        has_range = np.isfinite(high.to_numpy()) & np.isfinite(low.to_numpy())
        tr = pd.Series(np.where(has_range, tr_full, tr_close), index=bars.index)
        tr.iloc[0] = 0.0
        return tr.fillna(0.0).rename("true_range")

    @staticmethod
    def calculate_atr(bars: pd.DataFrame, period: int = ATR_PERIOD) -> pd.Series:
        """
        Calculate Average True Range as the EMA of the true range.

        Parameters
        ----------
        bars : pd.DataFrame
            Bars with a close column and optional high/low columns
        period : int
            EMA span (default: 14)

        Returns
        -------
        pd.Series
            ATR values, non-negative
        """
        tr = VolatilityIndicators.true_range(bars)
        return TrendIndicators.calculate_ema(tr, period).rename("atr")

    @staticmethod
    def rolling_mean(series: pd.Series, window: int) -> pd.Series:
        """Simple moving average; NaN for index < window - 1."""
        return series.astype(float).rolling(window=window, min_periods=window).mean()

    @staticmethod
    def rolling_std(series: pd.Series, window: int) -> pd.Series:
        """Population standard deviation; NaN for index < window - 1."""
        return series.astype(float).rolling(window=window, min_periods=window).std(ddof=0)

    @staticmethod
    def calculate_bands(
        close: pd.Series,
        window: int = BAND_PERIOD,
        k: float = BAND_STD_DEV,
    ) -> Tuple[pd.Series, pd.Series, pd.Series]:
        """
        Calculate mean-reversion bands.

        Middle = SMA(close, window)
        Upper = Middle + k * StdDev(close, window)
        Lower = Middle - k * StdDev(close, window)

        Returns
        -------
        Tuple[pd.Series, pd.Series, pd.Series]
            (Upper, Middle, Lower)
        """
        middle = VolatilityIndicators.rolling_mean(close, window)
        std = VolatilityIndicators.rolling_std(close, window)
        return middle + k * std, middle, middle - k * std

    @staticmethod
    def calculate_donchian(
        bars: pd.DataFrame,
        window: int = DONCHIAN_PERIOD,
    ) -> Tuple[pd.Series, pd.Series]:
        """
        Highest high and lowest low of the previous `window` bars.

        The current bar is excluded so a close beyond the channel is a
        breakout. Close stands in for missing high/low values.

        Returns
        -------
        Tuple[pd.Series, pd.Series]
            (Upper, Lower)
        """
        close = bars["close"].astype(float)
        high = bars["high"].astype(float).fillna(close) if "high" in bars else close
        low = bars["low"].astype(float).fillna(close) if "low" in bars else close

        upper = high.rolling(window=window, min_periods=window).max().shift(1)
        lower = low.rolling(window=window, min_periods=window).min().shift(1)
        return upper, lower


# Convenience aliases
calculate_ema = TrendIndicators.calculate_ema
crossover_state = TrendIndicators.crossover_state
calculate_rsi = MomentumIndicators.calculate_rsi
calculate_atr = VolatilityIndicators.calculate_atr
rolling_mean = VolatilityIndicators.rolling_mean
rolling_std = VolatilityIndicators.rolling_std
calculate_bands = VolatilityIndicators.calculate_bands
calculate_donchian = VolatilityIndicators.calculate_donchian


# =============================================================================
# SECTION 4: INDICATOR SET
# =============================================================================

@dataclass(frozen=True, eq=False)
class IndicatorSet:
    """Every series a single backtest run reads, aligned with the bars."""
    close: pd.Series
    fast_ema: pd.Series
    slow_ema: pd.Series
    trend_state: pd.Series
    rsi: pd.Series
    atr: pd.Series
    band_upper: Optional[pd.Series] = None
    band_middle: Optional[pd.Series] = None
    band_lower: Optional[pd.Series] = None
    channel_upper: Optional[pd.Series] = None
    channel_lower: Optional[pd.Series] = None

    def __len__(self) -> int:
        return len(self.close)


def compute_indicator_set(bars: pd.DataFrame, params: StrategyParameters) -> IndicatorSet:
    """
    Compute the indicators required by `params` over `bars`.

    Band and channel series are only built for the rules that read them.
    """
    close = bars["close"].astype(float)

    fast = calculate_ema(close, params.fast_window)
    slow = calculate_ema(close, params.slow_window)

    band_upper = band_middle = band_lower = None
    if params.rule == SignalRuleType.BAND_REVERSION:
        band_upper, band_middle, band_lower = calculate_bands(
            close, params.band_window, params.band_k
        )

    channel_upper = channel_lower = None
    if params.rule == SignalRuleType.BREAKOUT:
        channel_upper, channel_lower = calculate_donchian(bars, params.breakout_window)

    logger.debug(
        f"Indicators for {params.rule.value} over {len(close)} bars "
        f"(EMA {params.fast_window}/{params.slow_window}, RSI {params.rsi_period}, "
        f"ATR {params.atr_period})"
    )
    return IndicatorSet(
        close=close,
        fast_ema=fast,
        slow_ema=slow,
        trend_state=crossover_state(fast, slow),
        rsi=calculate_rsi(close, params.rsi_period),
        atr=calculate_atr(bars, params.atr_period),
        band_upper=band_upper,
        band_middle=band_middle,
        band_lower=band_lower,
        channel_upper=channel_upper,
        channel_lower=channel_lower,
    )


__all__ = [
    "TrendIndicators",
    "MomentumIndicators",
    "VolatilityIndicators",
    "calculate_ema",
    "crossover_state",
    "calculate_rsi",
    "calculate_atr",
    "rolling_mean",
    "rolling_std",
    "calculate_bands",
    "calculate_donchian",
    "IndicatorSet",
    "compute_indicator_set",
]
