from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from .series import SeriesLike, as_series, ema

MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9


@dataclass(frozen=True)
class MacdResult:
    macd_line: pd.Series
    signal_line: pd.Series
    histogram: pd.Series


def macd(
    values: SeriesLike,
    fast: int = MACD_FAST,
    slow: int = MACD_SLOW,
    signal: int = MACD_SIGNAL,
) -> MacdResult:
    """
    MACD line (fast EMA - slow EMA) plus its signal line.

    The signal EMA runs over the non-null part of the MACD line only. Its j-th
    non-null output belongs at `first_valid + signal - 1 + j` in the original
    index space.
    """
    close = as_series(values)
    n = len(close)

    fast_ema = ema(close, fast).to_numpy()
    slow_ema = ema(close, slow).to_numpy()
    macd_values = fast_ema - slow_ema  # NaN wherever either side is NaN

    signal_values = np.full(n, np.nan)
    valid_positions = np.flatnonzero(~np.isnan(macd_values))
    if valid_positions.size:
        first_valid = int(valid_positions[0])
        signal_ema = ema(macd_values[valid_positions], signal).to_numpy()
        computed = signal_ema[signal - 1 :]
        for j, value in enumerate(computed):
            signal_values[first_valid + signal - 1 + j] = value

    macd_line = pd.Series(macd_values, index=close.index, dtype="float64")
    signal_line = pd.Series(signal_values, index=close.index, dtype="float64")
    return MacdResult(
        macd_line=macd_line,
        signal_line=signal_line,
        histogram=macd_line - signal_line,
    )
