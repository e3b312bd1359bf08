"""
Bar Preparation for the Robust Strategy Lab

Turns raw price records (CSV files, record lists, vendor DataFrames) into the
bar frame every other module consumes:

    - UTC DatetimeIndex, strictly increasing and unique
    - float columns open, high, low, close (open/high/low may be NaN)

Each preparation returns a BarSummary recording where the bars came from,
how many rows were dropped and a hash of the closes, so a backtest can be
traced back to its exact input.

No network I/O happens here; fetching data is the caller's job.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd

# Module-level logger
logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

PRICE_COLUMNS: Tuple[str, ...] = ("open", "high", "low", "close")
TIME_COLUMNS: Tuple[str, ...] = ("time", "timestamp", "datetime", "date", "t")

# Short vendor aliases (o/h/l/c records, Yahoo-style capitalized headers)
COLUMN_ALIASES: Dict[str, str] = {
    "o": "open",
    "h": "high",
    "l": "low",
    "c": "close",
    "adj close": "close",
    "adj_close": "close",
}


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class Bar:
    """One price sample. Only close is required."""
    time: Union[datetime, pd.Timestamp, int, float, str]
    close: float
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None


@dataclass(frozen=True)
class BarSummary:
    """
    Provenance of a prepared bar frame.

    The hash covers the close column only, matching what the engine trades on.
    """
    source: str                     # File path or "frame"/"records"
    prepared_at: str                # ISO format timestamp
    rows_in: int                    # Rows before cleaning
    rows_out: int                   # Bars after cleaning
    dropped_invalid: int            # Rows without a finite close or time
    dropped_duplicates: int         # Repeated timestamps (last kept)
    start: Optional[str]            # First bar timestamp
    end: Optional[str]              # Last bar timestamp
    data_hash: str                  # SHA-256 of closes (16 hex chars)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "source": self.source,
            "prepared_at": self.prepared_at,
            "rows_in": self.rows_in,
            "rows_out": self.rows_out,
            "dropped_invalid": self.dropped_invalid,
            "dropped_duplicates": self.dropped_duplicates,
            "date_range": [self.start, self.end],
            "data_hash": self.data_hash,
        }


# =============================================================================
# PREPARATION
# =============================================================================

def _to_utc_index(values: Union[pd.Series, pd.Index]) -> pd.DatetimeIndex:
    """Parse timestamps; numeric values are epoch milliseconds."""
    if isinstance(values, pd.DatetimeIndex):
        index = values
    elif pd.api.types.is_numeric_dtype(values):
        index = pd.DatetimeIndex(pd.to_datetime(values, unit="ms", utc=True, errors="coerce"))
    else:
        index = pd.DatetimeIndex(pd.to_datetime(values, utc=True, errors="coerce"))

    if index.tz is None:
        return index.tz_localize("UTC")
    return index.tz_convert("UTC")


def _normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    renamed = {}
    for col in df.columns:
        key = str(col).strip().lower()
        renamed[col] = COLUMN_ALIASES.get(key, key)
    df = df.rename(columns=renamed)
    # "Close" and "Adj Close" may both map onto close; keep the first
    return df.loc[:, ~df.columns.duplicated()]


def hash_closes(close: pd.Series) -> str:
    """Short SHA-256 fingerprint of a close series."""
    if len(close) == 0:
        return ""
    return hashlib.sha256(
        pd.util.hash_pandas_object(close, index=False).values.tobytes()
    ).hexdigest()[:16]


def prepare_bars(
    frame: pd.DataFrame,
    source: str = "frame",
) -> Tuple[pd.DataFrame, BarSummary]:
    """
    Normalize a raw price frame into engine-ready bars.

    Args:
        frame: Raw data with a close column and either a DatetimeIndex or a
            time/date column (epoch milliseconds or parseable strings)
        source: Label stored in the summary

    Returns:
        (bars, summary)

    Raises:
        ValueError: If no close column or no timestamps can be found
    """
    rows_in = len(frame)
    df = _normalize_columns(frame.copy())

    if "close" not in df.columns:
        raise ValueError(f"Price data from {source} has no close column: {list(df.columns)}")

    time_col = next((c for c in TIME_COLUMNS if c in df.columns), None)
    if time_col is not None:
        index = _to_utc_index(df[time_col])
        df = df.drop(columns=[time_col])
    elif isinstance(df.index, pd.DatetimeIndex):
        index = _to_utc_index(df.index)
    else:
        raise ValueError(f"Price data from {source} has no time column or DatetimeIndex")

    out = pd.DataFrame(index=index)
    for col in PRICE_COLUMNS:
        if col in df.columns:
            out[col] = pd.to_numeric(df[col].to_numpy(), errors="coerce")
        else:
            out[col] = np.nan
    out = out.astype(float)
    out.index.name = "time"

    valid = np.isfinite(out["close"].to_numpy()) & ~out.index.isna()
    dropped_invalid = int((~valid).sum())
    out = out[valid]

    duplicated = out.index.duplicated(keep="last")
    dropped_duplicates = int(duplicated.sum())
    out = out[~duplicated].sort_index()

    if dropped_invalid or dropped_duplicates:
        logger.warning(
            f"{source}: dropped {dropped_invalid} invalid and "
            f"{dropped_duplicates} duplicate rows"
        )

    summary = BarSummary(
        source=source,
        prepared_at=datetime.now(timezone.utc).isoformat(),
        rows_in=rows_in,
        rows_out=len(out),
        dropped_invalid=dropped_invalid,
        dropped_duplicates=dropped_duplicates,
        start=out.index[0].isoformat() if len(out) else None,
        end=out.index[-1].isoformat() if len(out) else None,
        data_hash=hash_closes(out["close"]),
    )
    logger.info(f"Prepared {summary.rows_out} bars from {source}")
    return out, summary


def load_bars_csv(path: Union[str, Path]) -> Tuple[pd.DataFrame, BarSummary]:
    """Read a CSV file and prepare its bars."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Price file not found: {path}")
    return prepare_bars(pd.read_csv(path), source=str(path))


def bars_from_records(
    records: Iterable[Union[Bar, Mapping[str, Any]]],
) -> Tuple[pd.DataFrame, BarSummary]:
    """Build bars from Bar instances or plain mappings."""
    rows = []
    for rec in records:
        if isinstance(rec, Bar):
            rows.append({
                "time": rec.time, "open": rec.open, "high": rec.high,
                "low": rec.low, "close": rec.close,
            })
        else:
            rows.append(dict(rec))
    return prepare_bars(pd.DataFrame(rows), source="records")


def validate_bars(bars: pd.DataFrame) -> None:
    """
    Check the bar frame contract the engine relies on.

    Raises:
        ValueError: On a missing or non-finite close, or a non-increasing index
    """
    if "close" not in bars.columns:
        raise ValueError("bars must contain a close column")
    close = pd.to_numeric(bars["close"], errors="coerce").to_numpy(dtype=float)
    bad = ~np.isfinite(close)
    if bad.any():
        raise ValueError(
            f"bars contain {int(bad.sum())} non-finite close values "
            f"(first at position {int(np.argmax(bad))}); run prepare_bars first"
        )
    if not isinstance(bars.index, pd.DatetimeIndex):
        raise ValueError("bars must be indexed by a DatetimeIndex")
    if not bars.index.is_monotonic_increasing or not bars.index.is_unique:
        raise ValueError("bar timestamps must be strictly increasing")


__all__ = [
    "Bar",
    "BarSummary",
    "prepare_bars",
    "load_bars_csv",
    "bars_from_records",
    "validate_bars",
    "hash_closes",
]
