from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import pandas as pd

from candlescore.errors import InputError

from .macd import MACD_FAST, MACD_SIGNAL, MACD_SLOW, macd
from .series import ema, last_or_none, rsi

EMA_FAST_WINDOW = 50
EMA_SLOW_WINDOW = 200
RSI_WINDOW = 14

TREND_WEIGHT = 40
RSI_WEIGHT = 30
MACD_WEIGHT = 30

RSI_BULLISH_LEVEL = 60
RSI_BEARISH_LEVEL = 40

LABEL_THRESHOLD = 20
SCORE_MIN = -100
SCORE_MAX = 100

logger = logging.getLogger(__name__)


class SignalLabel(str, Enum):
    BULLISH = "Bullish"
    NEUTRAL = "Neutral"
    BEARISH = "Bearish"


@dataclass(frozen=True)
class Candle:
    open: float
    high: float
    low: float
    close: float
    volume: float
    timestamp: int


@dataclass(frozen=True)
class IndicatorSnapshot:
    ema50: Optional[float]
    ema200: Optional[float]
    rsi14: Optional[float]
    macd: Optional[float]
    macd_signal: Optional[float]
    score: int
    label: SignalLabel
    last_ts: int
    last_close: float


def sort_candles(candles: Sequence[Candle]) -> list[Candle]:
    # sorted() is stable: equal timestamps keep their input order.
    return sorted(candles, key=lambda c: c.timestamp)


def label_for_score(score: float) -> SignalLabel:
    if score > LABEL_THRESHOLD:
        return SignalLabel.BULLISH
    if score < -LABEL_THRESHOLD:
        return SignalLabel.BEARISH
    return SignalLabel.NEUTRAL


def score_snapshot(
    close: float,
    *,
    ema50: Optional[float],
    ema200: Optional[float],
    rsi14: Optional[float],
    macd_value: Optional[float],
    macd_signal: Optional[float],
) -> int:
    score = 0

    if ema50 is not None and ema200 is not None:
        if close > ema50 > ema200:
            score += TREND_WEIGHT
        elif close < ema50 < ema200:
            score -= TREND_WEIGHT
    elif ema50 is not None:
        if close > ema50:
            score += TREND_WEIGHT // 2
        elif close < ema50:
            score -= TREND_WEIGHT // 2

    if rsi14 is not None:
        if rsi14 >= RSI_BULLISH_LEVEL:
            score += RSI_WEIGHT
        elif rsi14 <= RSI_BEARISH_LEVEL:
            score -= RSI_WEIGHT

    if macd_value is not None and macd_signal is not None:
        if macd_value > macd_signal and macd_value > 0:
            score += MACD_WEIGHT
        elif macd_value < macd_signal and macd_value < 0:
            score -= MACD_WEIGHT

    return max(SCORE_MIN, min(SCORE_MAX, score))


def compute_snapshot(candles: Sequence[Candle]) -> IndicatorSnapshot:
    """
    Compute the latest EMA50/EMA200/RSI14/MACD reading and its composite score.

    Candles are re-sorted by timestamp first; callers do not need to pre-sort.
    Indicators without enough history come back as None and simply do not
    contribute to the score.
    """
    if not candles:
        raise InputError("No candles")

    ordered = sort_candles(candles)
    close = pd.Series([float(c.close) for c in ordered], dtype="float64")

    macd_result = macd(close, MACD_FAST, MACD_SLOW, MACD_SIGNAL)
    ema50 = last_or_none(ema(close, EMA_FAST_WINDOW))
    ema200 = last_or_none(ema(close, EMA_SLOW_WINDOW))
    rsi14 = last_or_none(rsi(close, RSI_WINDOW))
    macd_value = last_or_none(macd_result.macd_line)
    macd_signal = last_or_none(macd_result.signal_line)

    last = ordered[-1]
    score = score_snapshot(
        float(last.close),
        ema50=ema50,
        ema200=ema200,
        rsi14=rsi14,
        macd_value=macd_value,
        macd_signal=macd_signal,
    )
    label = label_for_score(score)

    logger.debug(
        "Indicator snapshot computed",
        extra={
            "stage": "indicators",
            "candles": len(ordered),
            "score": score,
            "label": label.value,
        },
    )

    return IndicatorSnapshot(
        ema50=ema50,
        ema200=ema200,
        rsi14=rsi14,
        macd=macd_value,
        macd_signal=macd_signal,
        score=score,
        label=label,
        last_ts=int(last.timestamp),
        last_close=float(last.close),
    )
