"""
Signal Rules for the Robust Strategy Lab

A signal rule turns a precomputed IndicatorSet into boolean arrays of entry
and exit predicates. Rules never touch equity or positions; the shared trade
state machine consumes their arrays bar by bar.

RULE FAMILIES
    TrendMomentumRule   EMA crossover filtered by RSI, exits on reversal
    BandReversionRule   close outside rolling bands with an RSI filter,
                        exits once the close returns to the middle band
    BreakoutRule        close beyond the previous N-bar channel, no rule
                        exit (stops, targets and time exits only)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Type

import numpy as np

from strategy_lab.config import ExitReason, SignalRuleType, StrategyParameters
from strategy_lab.technical_indicators import IndicatorSet

# Module-level logger
logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True, eq=False)
class RuleSignals:
    """
    Per-bar predicate arrays produced by a signal rule.

    exit_long / exit_short are the rule's own exit (reported with
    exit_reason); exhaust_long / exhaust_short are momentum exhaustion exits.
    """
    enter_long: np.ndarray
    enter_short: np.ndarray
    exit_long: np.ndarray
    exit_short: np.ndarray
    exhaust_long: np.ndarray
    exhaust_short: np.ndarray
    exit_reason: ExitReason = ExitReason.TREND_REVERSAL

    def __len__(self) -> int:
        return len(self.enter_long)


def _never(n: int) -> np.ndarray:
    return np.zeros(n, dtype=bool)


def _values(series) -> np.ndarray:
    return series.to_numpy(dtype=float)


# =============================================================================
# SECTION 1: RULE INTERFACE
# =============================================================================

class SignalRule(ABC):
    """Base class for entry/exit predicate generators."""

    rule_type: SignalRuleType

    def evaluate(
        self,
        indicators: IndicatorSet,
        params: StrategyParameters,
        start: int,
    ) -> RuleSignals:
        """
        Build the predicate arrays for one run.

        Args:
            indicators: Series computed once for the run
            params: Candidate configuration
            start: First tradable bar (the warm-up boundary)

        Returns:
            RuleSignals aligned with the bars
        """
        signals = self._evaluate(indicators, params, start)
        exhaust_long, exhaust_short = self._momentum_exhaustion(indicators, params)
        logger.debug(
            f"{type(self).__name__} from bar {start}: "
            f"{int(signals.enter_long[start:].sum())} long / "
            f"{int(signals.enter_short[start:].sum())} short entry signals"
        )
        return RuleSignals(
            enter_long=signals.enter_long,
            enter_short=signals.enter_short,
            exit_long=signals.exit_long,
            exit_short=signals.exit_short,
            exhaust_long=exhaust_long,
            exhaust_short=exhaust_short,
            exit_reason=signals.exit_reason,
        )

    @abstractmethod
    def _evaluate(
        self,
        indicators: IndicatorSet,
        params: StrategyParameters,
        start: int,
    ) -> RuleSignals:
        ...

    @staticmethod
    def _momentum_exhaustion(indicators: IndicatorSet, params: StrategyParameters):
        n = len(indicators)
        rsi = _values(indicators.rsi)
        exhaust_long = rsi >= params.exit_rsi_long if params.exit_rsi_long is not None else _never(n)
        exhaust_short = rsi <= params.exit_rsi_short if params.exit_rsi_short is not None else _never(n)
        return exhaust_long, exhaust_short


# =============================================================================
# SECTION 2: RULE FAMILIES
# =============================================================================

class TrendMomentumRule(SignalRule):
    """
    Fast/slow EMA crossover with an RSI momentum filter.

    A crossover is a change of the trend state between consecutive bars. The
    bar before the first tradable bar counts as neutral, so a trend already in
    force when trading starts fires on the warm-up boundary.
    """

    rule_type = SignalRuleType.TREND_MOMENTUM

    def _evaluate(self, indicators, params, start):
        state = indicators.trend_state.to_numpy()
        n = len(state)
        rsi = _values(indicators.rsi)

        prev = np.zeros(n, dtype=int)
        prev[1:] = state[:-1]
        if 0 <= start < n:
            prev[start] = 0

        cross_up = (state > 0) & (prev <= 0)
        cross_down = (state < 0) & (prev >= 0)

        return RuleSignals(
            enter_long=cross_up & (rsi <= params.buy_rsi_max),
            enter_short=cross_down & (rsi >= params.sell_rsi_min),
            exit_long=state < 0,
            exit_short=state > 0,
            exhaust_long=_never(n),
            exhaust_short=_never(n),
            exit_reason=ExitReason.TREND_REVERSAL,
        )


class BandReversionRule(SignalRule):
    """Fade closes outside the bands, take profit at the middle band."""

    rule_type = SignalRuleType.BAND_REVERSION

    def _evaluate(self, indicators, params, start):
        close = _values(indicators.close)
        rsi = _values(indicators.rsi)
        upper = _values(indicators.band_upper)
        middle = _values(indicators.band_middle)
        lower = _values(indicators.band_lower)
        n = len(close)

        return RuleSignals(
            enter_long=(close < lower) & (rsi < params.band_rsi_long_max),
            enter_short=(close > upper) & (rsi > params.band_rsi_short_min),
            exit_long=close >= middle,
            exit_short=close <= middle,
            exhaust_long=_never(n),
            exhaust_short=_never(n),
            exit_reason=ExitReason.MEAN_REACHED,
        )


class BreakoutRule(SignalRule):
    """Enter when the close clears the previous channel high or low."""

    rule_type = SignalRuleType.BREAKOUT

    def _evaluate(self, indicators, params, start):
        close = _values(indicators.close)
        upper = _values(indicators.channel_upper)
        lower = _values(indicators.channel_lower)
        n = len(close)

        return RuleSignals(
            enter_long=close > upper,
            enter_short=close < lower,
            exit_long=_never(n),
            exit_short=_never(n),
            exhaust_long=_never(n),
            exhaust_short=_never(n),
        )


# =============================================================================
# SECTION 3: REGISTRY
# =============================================================================

RULE_REGISTRY: Dict[SignalRuleType, Type[SignalRule]] = {
    SignalRuleType.TREND_MOMENTUM: TrendMomentumRule,
    SignalRuleType.BAND_REVERSION: BandReversionRule,
    SignalRuleType.BREAKOUT: BreakoutRule,
}


def build_signal_rule(rule_type: SignalRuleType) -> SignalRule:
    """Instantiate the rule for a rule type."""
    try:
        return RULE_REGISTRY[rule_type]()
    except KeyError:
        raise ValueError(f"No signal rule registered for {rule_type!r}") from None


__all__ = [
    "RuleSignals",
    "SignalRule",
    "TrendMomentumRule",
    "BandReversionRule",
    "BreakoutRule",
    "RULE_REGISTRY",
    "build_signal_rule",
]
