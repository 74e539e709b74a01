from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any

from candlescore.metrics.snapshot import Candle, IndicatorSnapshot

DEFAULT_TIME_MODE = "timestamp"
MILLIS_MODES = frozenset({"ms", "epoch_ms", "bigint"})
SECONDS_MODES = frozenset({"s", "sec", "seconds", "epoch_s"})

DEFAULT_INTERVAL_MS = 4 * 60 * 60 * 1000
_UNIT_MS = {"m": 60 * 1000, "h": 60 * 60 * 1000, "d": 24 * 60 * 60 * 1000}
_INTERVAL_RE = re.compile(r"^(\d+)([mhd])$")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _normalize_mode(mode: str | None) -> str:
    return (mode or DEFAULT_TIME_MODE).strip().lower()


def encode_time(epoch_ms: int, mode: str | None = DEFAULT_TIME_MODE) -> int | str:
    m = _normalize_mode(mode)
    ms = int(epoch_ms)
    if m in MILLIS_MODES:
        return ms
    if m in SECONDS_MODES:
        return ms // 1000
    dt = _EPOCH + timedelta(milliseconds=ms)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def decode_time(value: Any, mode: str | None = DEFAULT_TIME_MODE) -> int:
    """Inverse of encode_time: returns epoch milliseconds."""
    m = _normalize_mode(mode)
    if m in MILLIS_MODES:
        return int(value)
    if m in SECONDS_MODES:
        return int(value) * 1000
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - _EPOCH) // timedelta(milliseconds=1)


def interval_to_ms(interval: str | None) -> int:
    match = _INTERVAL_RE.match((interval or "").strip().lower())
    if not match:
        return DEFAULT_INTERVAL_MS
    return int(match.group(1)) * _UNIT_MS[match.group(2)]


def project_candle_row(
    symbol: str,
    interval: str,
    candle: Candle,
    *,
    time_mode: str | None = DEFAULT_TIME_MODE,
) -> dict[str, Any]:
    return {
        "symbol": symbol,
        "interval": interval,
        "start": encode_time(candle.timestamp, time_mode),
        "end": encode_time(candle.timestamp + interval_to_ms(interval), time_mode),
        "open": candle.open,
        "close": candle.close,
        "high": candle.high,
        "low": candle.low,
        "volume": candle.volume,
    }


def project_indicator_row(
    symbol: str,
    snapshot: IndicatorSnapshot,
    *,
    time_mode: str | None = DEFAULT_TIME_MODE,
) -> dict[str, Any]:
    return {
        "symbol": symbol,
        "ema50": snapshot.ema50,
        "ema200": snapshot.ema200,
        "rsi14": snapshot.rsi14,
        "macd": snapshot.macd,
        "macd_signal": snapshot.macd_signal,
        "score": snapshot.score,
        "label": snapshot.label.value,
        "last_ts": encode_time(snapshot.last_ts, time_mode),
    }
