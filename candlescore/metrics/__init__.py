from .macd import MacdResult, macd
from .series import ema, last_or_none, rsi
from .snapshot import (
    Candle,
    IndicatorSnapshot,
    SignalLabel,
    compute_snapshot,
    label_for_score,
    score_snapshot,
    sort_candles,
)

__all__ = [
    "Candle",
    "IndicatorSnapshot",
    "MacdResult",
    "SignalLabel",
    "compute_snapshot",
    "ema",
    "label_for_score",
    "last_or_none",
    "macd",
    "rsi",
    "score_snapshot",
    "sort_candles",
]
