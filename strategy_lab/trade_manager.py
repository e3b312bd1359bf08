"""
Trade State Machine for the Robust Strategy Lab

One position at a time, three states: FLAT, LONG, SHORT.

PER-BAR ORDER
    1. If a position is open, evaluate exits in priority order
       STOP > TAKE > rule exit > MOMENTUM_EXHAUSTION > MAX_HOLDING
       and close at the bar close when one fires.
    2. Otherwise, if FLAT and the kill-switch is not engaged, evaluate
       entries and size the position from the stop distance.

    At most one transition happens per bar: a bar that closes a position
    never opens another one.

SIZING
    stop_distance = max(ATR * atr_mult, price * min_stop_pct)
    units         = equity * risk_fraction / stop_distance * leverage
    entry_fee     = units * price * fee_rate   (deducted at entry)

    Entries with a non-finite or non-positive size, a notional below the
    minimum, or an equity that cannot cover the entry fee are skipped
    without opening anything.

Equity changes only at entries (fee) and exits (pnl - exit fee).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from strategy_lab.config import (
    Direction,
    EngineSettings,
    ExitReason,
    StrategyParameters,
)
from strategy_lab.signal_rules import RuleSignals

# Module-level logger
logger = logging.getLogger(__name__)


class TradeStatus(Enum):
    """Trade outcome labels."""
    WIN = "WIN"
    LOSS = "LOSS"
    BREAKEVEN = "BREAKEVEN"


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class TradeRecord:
    """
    Closed trade with full attribution.

    net_pnl = gross_pnl - entry_fee - exit_fee; a trade is a win when its
    net pnl is positive.
    """
    trade_id: int
    direction: Direction
    entry_index: int
    exit_index: int
    entry_time: pd.Timestamp
    exit_time: pd.Timestamp
    entry_price: float
    exit_price: float
    units: float
    entry_fee: float
    exit_fee: float
    gross_pnl: float
    net_pnl: float
    exit_reason: ExitReason

    @property
    def bars_held(self) -> int:
        return self.exit_index - self.entry_index

    @property
    def is_win(self) -> bool:
        return self.net_pnl > 0

    @property
    def status(self) -> TradeStatus:
        if self.net_pnl > 0:
            return TradeStatus.WIN
        if self.net_pnl < 0:
            return TradeStatus.LOSS
        return TradeStatus.BREAKEVEN

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "trade_id": self.trade_id,
            "direction": self.direction.name,
            "entry_index": self.entry_index,
            "exit_index": self.exit_index,
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat(),
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "units": self.units,
            "entry_fee": self.entry_fee,
            "exit_fee": self.exit_fee,
            "gross_pnl": self.gross_pnl,
            "net_pnl": self.net_pnl,
            "exit_reason": self.exit_reason.value,
            "bars_held": self.bars_held,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class Position:
    """The single open position of a run."""
    direction: Direction
    units: float
    entry_price: float
    stop_price: float
    take_price: float
    opened_at_index: int
    opened_at: pd.Timestamp
    entry_fee: float

    def unrealized_pnl(self, price: float) -> float:
        return (price - self.entry_price) * self.units * self.direction.value

    def stop_hit(self, price: float) -> bool:
        if self.direction == Direction.LONG:
            return price <= self.stop_price
        return price >= self.stop_price

    def take_hit(self, price: float) -> bool:
        if self.direction == Direction.LONG:
            return price >= self.take_price
        return price <= self.take_price


# =============================================================================
# TRADE MANAGER
# =============================================================================

class TradeManager:
    """
    Drives one position through the bars of a single backtest run.

    Usage:
        manager = TradeManager(params, signals, atr, settings)
        for i in range(start, n):
            manager.step(i, time, price, drawdown)
    """

    def __init__(
        self,
        params: StrategyParameters,
        signals: RuleSignals,
        atr: np.ndarray,
        settings: Optional[EngineSettings] = None,
    ):
        self.params = params
        self.signals = signals
        self.atr = np.asarray(atr, dtype=float)
        self.settings = settings or EngineSettings()

        self.equity: float = self.settings.initial_equity
        self.position: Optional[Position] = None
        self.trades: List[TradeRecord] = []
        self.entries: int = 0
        self.skipped_entries: int = 0

    @property
    def direction(self) -> Direction:
        return self.position.direction if self.position else Direction.FLAT

    def mark_to_market(self, price: float) -> float:
        """Realized equity plus the open position's unrealized pnl."""
        if self.position is None:
            return self.equity
        return self.equity + self.position.unrealized_pnl(price)

    def kill_switch_engaged(self, drawdown: float) -> bool:
        limit = self.params.kill_drawdown_pct
        return limit is not None and drawdown > limit

    def step(
        self,
        index: int,
        time: pd.Timestamp,
        price: float,
        drawdown: float = 0.0,
        allow_entry: bool = True,
    ) -> Optional[TradeRecord]:
        """
        Apply at most one transition for bar `index`.

        Args:
            index: Bar position within the run
            time: Bar timestamp
            price: Bar close (fill price)
            drawdown: Running drawdown fraction as of the previous bar
            allow_entry: False on bars where a new position may not open
                (the engine passes False on the last bar)

        Returns:
            The closed trade when this bar exited a position, else None
        """
        if self.position is not None:
            reason = self._exit_reason(index, price)
            if reason is not None:
                return self.close(index, time, price, reason)
            return None

        if not allow_entry or self.kill_switch_engaged(drawdown):
            return None

        direction = self._entry_direction(index)
        if direction is not None:
            self._open(index, time, price, direction)
        return None

    def close(
        self,
        index: int,
        time: pd.Timestamp,
        price: float,
        reason: ExitReason,
    ) -> TradeRecord:
        """Close the open position at `price` and realize its pnl."""
        pos = self.position
        if pos is None:
            raise RuntimeError("close() called while flat")

        gross = pos.unrealized_pnl(price)
        exit_fee = pos.units * price * self.params.fee_rate
        self.equity += gross - exit_fee

        record = TradeRecord(
            trade_id=len(self.trades) + 1,
            direction=pos.direction,
            entry_index=pos.opened_at_index,
            exit_index=index,
            entry_time=pos.opened_at,
            exit_time=time,
            entry_price=pos.entry_price,
            exit_price=price,
            units=pos.units,
            entry_fee=pos.entry_fee,
            exit_fee=exit_fee,
            gross_pnl=gross,
            net_pnl=gross - pos.entry_fee - exit_fee,
            exit_reason=reason,
        )
        self.trades.append(record)
        self.position = None
        return record

    # -------------------------------------------------------------------------

    def _exit_reason(self, index: int, price: float) -> Optional[ExitReason]:
        pos = self.position
        is_long = pos.direction == Direction.LONG
        sig = self.signals

        if pos.stop_hit(price):
            return ExitReason.STOP
        if pos.take_hit(price):
            return ExitReason.TAKE
        if sig.exit_long[index] if is_long else sig.exit_short[index]:
            return sig.exit_reason
        if sig.exhaust_long[index] if is_long else sig.exhaust_short[index]:
            return ExitReason.MOMENTUM_EXHAUSTION
        max_bars = self.params.max_holding_bars
        if max_bars is not None and index - pos.opened_at_index > max_bars:
            return ExitReason.MAX_HOLDING
        return None

    def _entry_direction(self, index: int) -> Optional[Direction]:
        if self.signals.enter_long[index]:
            return Direction.LONG
        if self.params.allow_short and self.signals.enter_short[index]:
            return Direction.SHORT
        return None

    def _open(self, index: int, time: pd.Timestamp, price: float, direction: Direction) -> None:
        p = self.params
        if not math.isfinite(price) or price <= 0:
            self._skip(index, f"price {price}")
            return
        atr = self.atr[index]
        atr = atr if math.isfinite(atr) else 0.0

        stop_distance = max(atr * p.atr_mult, price * p.min_stop_pct)
        if not math.isfinite(stop_distance) or stop_distance <= 0:
            self._skip(index, f"stop distance {stop_distance}")
            return

        units = (self.equity * p.risk_fraction / stop_distance) * p.leverage
        if not math.isfinite(units) or units <= 0:
            self._skip(index, f"units {units}")
            return

        notional = units * price
        if notional < self.settings.min_notional:
            self._skip(index, f"notional {notional:.6g} below minimum")
            return

        entry_fee = notional * p.fee_rate
        if self.equity <= entry_fee:
            self._skip(index, f"equity {self.equity:.2f} cannot cover fee {entry_fee:.2f}")
            return

        self.equity -= entry_fee
        sign = direction.value
        self.position = Position(
            direction=direction,
            units=units,
            entry_price=price,
            stop_price=price - sign * stop_distance,
            take_price=price + sign * stop_distance * p.reward_risk,
            opened_at_index=index,
            opened_at=time,
            entry_fee=entry_fee,
        )
        self.entries += 1

    def _skip(self, index: int, why: str) -> None:
        self.skipped_entries += 1
        logger.debug(f"Entry skipped at bar {index}: {why}")


__all__ = [
    "TradeStatus",
    "TradeRecord",
    "Position",
    "TradeManager",
]
