from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable

from candlescore.metrics.snapshot import Candle

# datetime range (years 1..9999) in epoch milliseconds
MIN_TIMESTAMP_MS = -62_135_596_800_000
MAX_TIMESTAMP_MS = 253_402_300_799_999


@dataclass(frozen=True)
class ParsedCandles:
    candles: list[Candle]
    invalid_rows: int
    invalid_examples: list[str]


def _get_float(record: dict, keys: list[str]) -> float | None:
    for key in keys:
        value = record.get(key)
        if value in (None, ""):
            continue
        try:
            out = float(value)
        except (TypeError, ValueError):
            return None
        return out if math.isfinite(out) else None
    return None


def _get_timestamp(record: dict, keys: list[str]) -> int | None:
    for key in keys:
        value = record.get(key)
        if value in (None, ""):
            continue
        try:
            out = float(str(value).strip())
        except (TypeError, ValueError):
            return None
        if not math.isfinite(out) or not MIN_TIMESTAMP_MS <= out <= MAX_TIMESTAMP_MS:
            return None
        return int(out)
    return None


def parse_candles(
    raw_records: Iterable[Any],
    *,
    max_invalid_examples: int = 10,
) -> ParsedCandles:
    """Normalize provider candle records (short `t,o,h,l,c,v` or long keys) into Candles."""
    candles: list[Candle] = []
    invalid_rows = 0
    invalid_examples: list[str] = []

    for record in raw_records or []:
        if not isinstance(record, dict):
            invalid_rows += 1
            if len(invalid_examples) < max_invalid_examples:
                invalid_examples.append(f"not an object: {type(record).__name__}")
            continue

        ts = _get_timestamp(record, ["t", "timestamp", "ts", "time"])
        open_price = _get_float(record, ["o", "open"])
        high_price = _get_float(record, ["h", "high"])
        low_price = _get_float(record, ["l", "low"])
        close_price = _get_float(record, ["c", "close"])
        volume = _get_float(record, ["v", "volume"])

        if None in (ts, open_price, high_price, low_price, close_price, volume):
            invalid_rows += 1
            if len(invalid_examples) < max_invalid_examples:
                invalid_examples.append(f"t={record.get('t', record.get('timestamp'))}: missing/invalid OHLCV fields")
            continue

        candles.append(
            Candle(
                open=open_price,
                high=high_price,
                low=low_price,
                close=close_price,
                volume=volume,
                timestamp=ts,
            )
        )

    return ParsedCandles(candles=candles, invalid_rows=invalid_rows, invalid_examples=invalid_examples)
