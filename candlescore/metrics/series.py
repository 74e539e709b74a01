"""
EMA / RSI recurrences over a close-price series.

Both return a float64 Series aligned with the input, using NaN wherever the
warm-up window is not yet satisfied. Inputs shorter than the warm-up yield an
all-NaN Series rather than an error.
"""

from __future__ import annotations

from typing import Iterable, Optional, Union

import numpy as np
import pandas as pd

RSI_ZERO_LOSS_EPSILON = 1e-10

SeriesLike = Union[pd.Series, Iterable[float]]


def as_series(values: SeriesLike) -> pd.Series:
    if isinstance(values, pd.Series):
        return values.astype("float64")
    return pd.Series(list(values), dtype="float64")


def last_or_none(series: pd.Series) -> Optional[float]:
    if series is None or series.empty:
        return None
    v = series.iloc[-1]
    if pd.isna(v):
        return None
    return float(v)


def ema(values: SeriesLike, period: int) -> pd.Series:
    if period < 1:
        raise ValueError(f"period must be >= 1 (got {period})")

    series = as_series(values)
    n = len(series)
    out = np.full(n, np.nan)
    if n < period:
        return pd.Series(out, index=series.index, dtype="float64")

    data = series.to_numpy(dtype="float64")
    k = 2.0 / (period + 1)

    # Seed with the simple mean of the first `period` values.
    total = 0.0
    for v in data[:period]:
        total += float(v)
    out[period - 1] = total / period

    for i in range(period, n):
        out[i] = data[i] * k + out[i - 1] * (1 - k)

    return pd.Series(out, index=series.index, dtype="float64")


def rsi(values: SeriesLike, period: int = 14) -> pd.Series:
    """
    Wilder RSI seeded with the simple mean of the first `period` gains/losses.

    A zero average loss is replaced by a tiny epsilon, so a strictly rising
    warm-up reads ~100 and a flat or falling one reads 0.
    """
    if period < 1:
        raise ValueError(f"period must be >= 1 (got {period})")

    close = as_series(values)
    out = pd.Series(np.nan, index=close.index, dtype="float64")
    if len(close) < period + 1:
        return out

    delta = close.diff()
    gain = delta.clip(lower=0)
    loss = -delta.clip(upper=0)

    avg_gain = gain.iloc[1 : period + 1].mean()
    avg_loss = loss.iloc[1 : period + 1].mean()
    out.iloc[period] = _rsi_value(avg_gain, avg_loss)

    for i in range(period + 1, len(close)):
        avg_gain = (avg_gain * (period - 1) + gain.iloc[i]) / period
        avg_loss = (avg_loss * (period - 1) + loss.iloc[i]) / period
        out.iloc[i] = _rsi_value(avg_gain, avg_loss)

    return out


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    rs = avg_gain / (avg_loss or RSI_ZERO_LOSS_EPSILON)
    return 100.0 - (100.0 / (1.0 + rs))
