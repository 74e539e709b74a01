from __future__ import annotations

import random

import pytest

from candlescore.errors import InputError
from candlescore.metrics.snapshot import (
    Candle,
    SignalLabel,
    compute_snapshot,
    label_for_score,
    score_snapshot,
)

HOUR_MS = 60 * 60 * 1000
BASE_TS = 1_700_000_000_000


def _candles(closes: list[float]) -> list[Candle]:
    return [
        Candle(open=c, high=c + 1, low=c - 1, close=c, volume=10.0, timestamp=BASE_TS + i * HOUR_MS)
        for i, c in enumerate(closes)
    ]


@pytest.mark.unit
def test_empty_series_raises_input_error() -> None:
    with pytest.raises(InputError):
        compute_snapshot([])


@pytest.mark.unit
@pytest.mark.parametrize(
    "score, label",
    [
        (21, SignalLabel.BULLISH),
        (20, SignalLabel.NEUTRAL),
        (0, SignalLabel.NEUTRAL),
        (-20, SignalLabel.NEUTRAL),
        (-21, SignalLabel.BEARISH),
    ],
)
def test_label_thresholds_are_strict(score: int, label: SignalLabel) -> None:
    assert label_for_score(score) is label


@pytest.mark.unit
def test_full_bullish_and_bearish_alignment() -> None:
    assert score_snapshot(10.0, ema50=9.0, ema200=8.0, rsi14=65.0, macd_value=1.0, macd_signal=0.5) == 100
    assert score_snapshot(7.0, ema50=8.0, ema200=9.0, rsi14=30.0, macd_value=-1.0, macd_signal=-0.5) == -100


@pytest.mark.unit
def test_missing_slow_ema_counts_half_trend_weight() -> None:
    assert score_snapshot(10.0, ema50=9.0, ema200=None, rsi14=None, macd_value=None, macd_signal=None) == 20
    assert score_snapshot(8.0, ema50=9.0, ema200=None, rsi14=None, macd_value=None, macd_signal=None) == -20
    assert score_snapshot(9.0, ema50=9.0, ema200=None, rsi14=None, macd_value=None, macd_signal=None) == 0


@pytest.mark.unit
def test_unordered_emas_contribute_nothing() -> None:
    assert score_snapshot(10.0, ema50=9.0, ema200=9.5, rsi14=50.0, macd_value=None, macd_signal=None) == 0


@pytest.mark.unit
def test_rsi_levels_are_inclusive() -> None:
    kwargs = dict(ema50=None, ema200=None, macd_value=None, macd_signal=None)
    assert score_snapshot(1.0, rsi14=60.0, **kwargs) == 30
    assert score_snapshot(1.0, rsi14=59.99, **kwargs) == 0
    assert score_snapshot(1.0, rsi14=40.0, **kwargs) == -30


@pytest.mark.unit
def test_macd_component_requires_sign_agreement() -> None:
    kwargs = dict(ema50=None, ema200=None, rsi14=None)
    assert score_snapshot(1.0, macd_value=-0.1, macd_signal=-0.5, **kwargs) == 0
    assert score_snapshot(1.0, macd_value=0.1, macd_signal=0.5, **kwargs) == 0
    assert score_snapshot(1.0, macd_value=0.2, macd_signal=0.1, **kwargs) == 30


@pytest.mark.unit
def test_linear_uptrend_reads_bullish() -> None:
    snapshot = compute_snapshot(_candles([100.0 + i for i in range(250)]))

    assert snapshot.ema50 is not None and snapshot.ema200 is not None
    assert snapshot.last_close > snapshot.ema50 > snapshot.ema200
    assert snapshot.rsi14 > 99.99
    assert snapshot.macd > 0
    # on a perfectly linear series MACD and its signal converge, so only
    # trend and RSI are guaranteed
    assert snapshot.score in (70, 100)
    assert snapshot.label is SignalLabel.BULLISH


@pytest.mark.unit
def test_accelerating_uptrend_scores_full_bullish() -> None:
    snapshot = compute_snapshot(_candles([100.0 + i + 0.05 * i * i for i in range(250)]))

    assert snapshot.macd > snapshot.macd_signal > 0
    assert snapshot.score == 100
    assert snapshot.label is SignalLabel.BULLISH


@pytest.mark.unit
def test_accelerating_downtrend_scores_full_bearish() -> None:
    snapshot = compute_snapshot(_candles([5000.0 - i - 0.05 * i * i for i in range(250)]))

    assert snapshot.rsi14 == pytest.approx(0.0)
    assert snapshot.macd < snapshot.macd_signal < 0
    assert snapshot.score == -100
    assert snapshot.label is SignalLabel.BEARISH


@pytest.mark.unit
def test_input_order_does_not_matter() -> None:
    candles = _candles([100.0 + i + 0.05 * i * i for i in range(220)])
    shuffled = list(candles)
    random.Random(7).shuffle(shuffled)

    assert compute_snapshot(shuffled) == compute_snapshot(candles)
    assert compute_snapshot(shuffled).last_ts == candles[-1].timestamp


@pytest.mark.unit
def test_short_history_leaves_indicators_null() -> None:
    snapshot = compute_snapshot(_candles([10.0, 11.0, 12.0]))

    assert snapshot.ema50 is None
    assert snapshot.ema200 is None
    assert snapshot.rsi14 is None
    assert snapshot.macd is None
    assert snapshot.macd_signal is None
    assert snapshot.score == 0
    assert snapshot.label is SignalLabel.NEUTRAL
    assert snapshot.last_close == 12.0


@pytest.mark.unit
def test_sixty_candles_use_half_trend_weight() -> None:
    snapshot = compute_snapshot(_candles([100.0 + i for i in range(60)]))

    assert snapshot.ema50 is not None
    assert snapshot.ema200 is None
    # +20 trend, +30 RSI, MACD depends on rounding
    assert snapshot.score in (50, 80)


@pytest.mark.unit
def test_duplicate_timestamps_keep_input_order() -> None:
    candles = [
        Candle(open=1, high=1, low=1, close=5.0, volume=1, timestamp=2),
        Candle(open=1, high=1, low=1, close=1.0, volume=1, timestamp=1),
        Candle(open=1, high=1, low=1, close=7.0, volume=1, timestamp=2),
    ]
    snapshot = compute_snapshot(candles)
    assert snapshot.last_ts == 2
    assert snapshot.last_close == 7.0
