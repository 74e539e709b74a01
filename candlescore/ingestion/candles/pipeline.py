from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from candlescore.config import DESTINATION_AIRTABLE, PipelineConfig
from candlescore.db.airtable import AirtableDestination
from candlescore.db.destination import Destination
from candlescore.db.postgres import PostgresDestination
from candlescore.db.upsert import UpsertOutcome, upsert_all
from candlescore.errors import InputError, RunFatalError, SourceUnavailable
from candlescore.metrics.snapshot import compute_snapshot, sort_candles
from candlescore.providers.market_data.base import CandleSource, candle_window, filter_symbols
from candlescore.providers.market_data.hyperliquid import HYPERLIQUID_INFO_URL, HyperliquidProvider

from .parser import parse_candles
from .rows import project_candle_row, project_indicator_row

SKIP_SOURCE_UNAVAILABLE = "source_unavailable"
SKIP_INPUT_ERROR = "input_error"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SkippedSymbol:
    symbol: str
    reason: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"symbol": self.symbol, "reason": self.reason, "message": self.message}


@dataclass
class IngestionReport:
    symbols: list[str]
    candles: UpsertOutcome
    indicators: UpsertOutcome
    candles_prepared: int = 0
    indicators_prepared: int = 0
    skipped: list[SkippedSymbol] = field(default_factory=list)
    debug: dict[str, Any] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def candles_written(self) -> int:
        return self.candles.written

    @property
    def indicators_written(self) -> int:
        return self.indicators.written

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "symbols": list(self.symbols),
            "candles_prepared": self.candles_prepared,
            "indicators_prepared": self.indicators_prepared,
            "candles_written": self.candles_written,
            "indicators_written": self.indicators_written,
            "errors": {
                "candles": [e.to_dict() for e in self.candles.errors],
                "indicators": [e.to_dict() for e in self.indicators.errors],
            },
            "fallbacks": {
                "candles": [f.to_dict() for f in self.candles.fallbacks],
                "indicators": [f.to_dict() for f in self.indicators.fallbacks],
            },
            "skipped": [s.to_dict() for s in self.skipped],
            "debug": dict(self.debug),
        }


def build_destination(config: PipelineConfig) -> Destination:
    if config.destination == DESTINATION_AIRTABLE:
        return AirtableDestination(
            api_key=config.airtable_api_key,
            base_id=config.airtable_base_id,
            check_table=config.candles.name,
        )
    return PostgresDestination(config.db_url, schema=config.db_schema)


def build_source(config: PipelineConfig) -> CandleSource:
    return HyperliquidProvider(info_url=config.hyperliquid_info_url or HYPERLIQUID_INFO_URL)


async def _discover_symbols(source: CandleSource, limit: int) -> list[str]:
    try:
        mids = await source.fetch_symbols()
    except asyncio.CancelledError:
        raise
    except SourceUnavailable as exc:
        raise RunFatalError(f"Failed to fetch symbols: {exc}") from exc
    return filter_symbols(mids.keys(), limit=limit)


async def run_ingestion(
    config: PipelineConfig,
    *,
    source: CandleSource,
    destination: Destination,
    now_ms: Optional[int] = None,
) -> IngestionReport:
    """
    Fetch candles per symbol, compute the latest indicator snapshot and upsert
    one candle row plus one indicator row per symbol.

    Raises RunFatalError only before any row-level work starts (destination
    pre-flight, symbol discovery). Per-symbol and per-chunk failures end up in
    the returned report.
    """
    started = time.perf_counter()
    await destination.check()
    symbols = await _discover_symbols(source, config.symbol_limit)

    now_ms = int(time.time() * 1000) if now_ms is None else int(now_ms)
    start_ms, end_ms = candle_window(config.interval, config.candle_count, now_ms)

    logger.info(
        "Ingestion run started",
        extra={
            "stage": "pipeline",
            "symbols": len(symbols),
            "interval": config.interval,
            "candle_count": config.candle_count,
            "destination": getattr(destination, "name", None),
        },
    )

    candle_rows: list[dict[str, Any]] = []
    indicator_rows: list[dict[str, Any]] = []
    skipped: list[SkippedSymbol] = []

    for symbol in symbols:
        try:
            raw = await source.fetch_candles(symbol, config.interval, start_ms, end_ms)
        except asyncio.CancelledError:
            raise
        except SourceUnavailable as exc:
            skipped.append(SkippedSymbol(symbol, SKIP_SOURCE_UNAVAILABLE, str(exc)))
            logger.warning(
                "Candle fetch failed; skipping symbol",
                extra={"stage": "provider", "symbol": symbol, "status_code": exc.status_code},
            )
            continue

        parsed = parse_candles(raw)
        if parsed.invalid_rows:
            logger.warning(
                "Dropped invalid candle records",
                extra={
                    "stage": "parser",
                    "symbol": symbol,
                    "invalid_rows": parsed.invalid_rows,
                    "examples": parsed.invalid_examples,
                },
            )

        try:
            snapshot = compute_snapshot(parsed.candles)
        except InputError as exc:
            skipped.append(SkippedSymbol(symbol, SKIP_INPUT_ERROR, str(exc)))
            logger.info("No usable candles; skipping symbol", extra={"stage": "indicators", "symbol": symbol})
            continue

        latest = sort_candles(parsed.candles)[-1]
        try:
            candle_row = project_candle_row(symbol, config.interval, latest, time_mode=config.candles.time_mode)
            indicator_row = project_indicator_row(symbol, snapshot, time_mode=config.indicators.time_mode)
        except (OverflowError, ValueError) as exc:
            skipped.append(SkippedSymbol(symbol, SKIP_INPUT_ERROR, f"Unencodable candle time: {exc}"))
            logger.warning(
                "Candle time out of range; skipping symbol",
                extra={"stage": "rows", "symbol": symbol, "last_ts": latest.timestamp},
            )
            continue
        candle_rows.append(candle_row)
        indicator_rows.append(indicator_row)

    candles_outcome = await upsert_all(destination, config.candles, candle_rows, chunk_size=config.chunk_size)
    indicators_outcome = await upsert_all(
        destination, config.indicators, indicator_rows, chunk_size=config.chunk_size
    )

    report = IngestionReport(
        symbols=symbols,
        candles=candles_outcome,
        indicators=indicators_outcome,
        candles_prepared=len(candle_rows),
        indicators_prepared=len(indicator_rows),
        skipped=skipped,
        debug=config.debug_info(),
        duration_seconds=time.perf_counter() - started,
    )
    logger.info(
        "Ingestion run complete",
        extra={
            "stage": "pipeline",
            "symbols": len(symbols),
            "skipped": len(skipped),
            "candles_prepared": report.candles_prepared,
            "indicators_prepared": report.indicators_prepared,
            "candles_written": report.candles_written,
            "indicators_written": report.indicators_written,
            "duration_seconds": report.duration_seconds,
        },
    )
    return report


async def run_ingestion_from_config(config: PipelineConfig) -> IngestionReport:
    """Build the Hyperliquid source and configured destination, run once, close both."""
    destination = build_destination(config)
    source = build_source(config)
    try:
        return await run_ingestion(config, source=source, destination=destination)
    finally:
        await source.close()
        await destination.close()
