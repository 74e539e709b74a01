from __future__ import annotations

import re
from typing import Any, Iterable, Optional, Protocol

from candlescore.ingestion.candles.rows import interval_to_ms

_SYMBOL_RE = re.compile(r"^[A-Za-z0-9]+$")


class CandleSource(Protocol):
    name: str

    async def fetch_symbols(self) -> dict[str, Optional[float]]:
        """
        Tradable symbols mapped to their reference (mid) price.

        Raises SourceUnavailable when discovery fails.
        """
        ...

    async def fetch_candles(
        self, symbol: str, interval: str, start_ms: int, end_ms: int
    ) -> list[dict[str, Any]]:
        """
        Raw candle records for one symbol, oldest first when the provider
        orders them. An empty list means no data; SourceUnavailable means the
        request itself failed.
        """
        ...

    async def close(self) -> None:
        ...


def filter_symbols(symbols: Iterable[str], *, limit: int | None = None) -> list[str]:
    out = [s for s in symbols if isinstance(s, str) and _SYMBOL_RE.match(s)]
    if limit is not None:
        out = out[: max(0, int(limit))]
    return out


def candle_window(interval: str, count: int, now_ms: int) -> tuple[int, int]:
    end_ms = int(now_ms)
    return end_ms - interval_to_ms(interval) * int(count), end_ms
