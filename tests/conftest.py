"""
Pytest configuration and fixtures.
"""
import numpy as np
import pandas as pd
import pytest


def build_bars(closes, start="2020-01-01", freq="D", spread=None):
    """Bar frame from closes; spread adds high/low around each close."""
    closes = np.asarray(closes, dtype=float)
    index = pd.date_range(start, periods=len(closes), freq=freq, tz="UTC", name="time")
    data = {"open": np.nan, "high": np.nan, "low": np.nan, "close": closes}
    if spread is not None:
        data["open"] = closes
        data["high"] = closes + spread
        data["low"] = closes - spread
    return pd.DataFrame(data, index=index)


@pytest.fixture
def make_bars():
    """Factory for synthetic bar frames."""
    return build_bars


@pytest.fixture
def uptrend_bars():
    """300 daily closes rising 0.5% per bar."""
    return build_bars(100.0 * 1.005 ** np.arange(300))


@pytest.fixture
def oscillating_bars():
    """300 daily closes oscillating +/-0.1% around 100."""
    i = np.arange(300)
    return build_bars(100.0 * (1.0 + 0.001 * np.sin(2 * np.pi * i / 100)))


@pytest.fixture
def random_walk_bars():
    """1200 daily bars of a seeded random walk with high/low."""
    rng = np.random.default_rng(7)
    closes = 100.0 * np.exp(np.cumsum(rng.normal(0.0002, 0.01, 1200)))
    return build_bars(closes, spread=0.4)
