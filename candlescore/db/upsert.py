"""
Chunked, best-effort upsert with a conflict-key fallback ladder.

The destination's real uniqueness constraint may not match the configured
conflict key. Each chunk walks:

1. upsert on the configured key
2. plain insert
3. upsert on `symbol` alone, after collapsing the chunk to the latest row per
   symbol (no matching constraint for the key + duplicate on `symbol`)
4. upsert of the unmodified chunk on `symbol` (constraint mismatch on a table
   that is keyed by symbol)

Failures are recorded per chunk and never abort the batch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from candlescore.ingestion.candles.rows import DEFAULT_TIME_MODE, decode_time

from .destination import Destination
from .errors import StoreError, StoreErrorKind, WriteResult

DEFAULT_CHUNK_SIZE = 500
SYMBOL_KEY = ("symbol",)

STRATEGY_LATEST_PER_SYMBOL = "latest-per-symbol"
STRATEGY_UPSERT_ON_SYMBOL = "upsert-on-symbol"

OP_UPSERT = "upsert"
OP_INSERT = "insert"
OP_SYMBOL_FALLBACK = "upsert(symbol)-fallback"
OP_SYMBOL_FATAL = "upsert(symbol)-fatal"
OP_FATAL = "fatal"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableTarget:
    name: str
    conflict_key: tuple[str, ...] = SYMBOL_KEY
    time_field: Optional[str] = None
    time_mode: str = DEFAULT_TIME_MODE
    keyed_by_symbol: bool = False


@dataclass(frozen=True)
class UpsertError:
    table: str
    operation: str
    message: str
    code: Optional[str] = None
    details: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "operation": self.operation,
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }


@dataclass(frozen=True)
class UpsertFallback:
    table: str
    strategy: str

    def to_dict(self) -> dict[str, Any]:
        return {"table": self.table, "strategy": self.strategy}


@dataclass
class UpsertOutcome:
    written: int = 0
    errors: list[UpsertError] = field(default_factory=list)
    fallbacks: list[UpsertFallback] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "written": self.written,
            "errors": [e.to_dict() for e in self.errors],
            "fallbacks": [f.to_dict() for f in self.fallbacks],
        }


def collapse_latest_per_symbol(
    rows: Sequence[dict[str, Any]],
    *,
    time_field: str,
    time_mode: str = DEFAULT_TIME_MODE,
) -> list[dict[str, Any]]:
    """Keep the row with the latest `time_field` per symbol; ties keep the first seen."""
    latest: dict[Any, tuple[int, dict[str, Any]]] = {}
    for row in rows:
        symbol = row.get("symbol")
        ts = decode_time(row[time_field], time_mode)
        current = latest.get(symbol)
        if current is None or ts > current[0]:
            latest[symbol] = (ts, row)
    return [row for (_, row) in latest.values()]


def _record(outcome: UpsertOutcome, table: str, operation: str, error: StoreError) -> None:
    outcome.errors.append(
        UpsertError(
            table=table,
            operation=operation,
            message=error.message,
            code=error.code,
            details=error.details,
        )
    )
    logger.warning(
        "%s failed on %s: %s",
        operation,
        table,
        error.message,
        extra={"stage": "upsert", "table": table, "operation": operation, "code": error.code},
    )


def _record_exception(outcome: UpsertOutcome, table: str, operation: str, exc: Exception) -> None:
    outcome.errors.append(UpsertError(table=table, operation=operation, message=str(exc) or type(exc).__name__))
    logger.error(
        "%s raised on %s: %s",
        operation,
        table,
        exc,
        extra={"stage": "upsert", "table": table, "operation": operation, "root_cause": type(exc).__name__},
    )


async def _symbol_fallback(
    destination: Destination,
    target: TableTarget,
    rows: list[dict[str, Any]],
    strategy: str,
    outcome: UpsertOutcome,
) -> int:
    try:
        result = await destination.upsert(target.name, rows, SYMBOL_KEY)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        _record_exception(outcome, target.name, OP_SYMBOL_FATAL, exc)
        return 0
    if not result.ok:
        _record(outcome, target.name, OP_SYMBOL_FALLBACK, result.error)
        return 0
    outcome.fallbacks.append(UpsertFallback(table=target.name, strategy=strategy))
    logger.info(
        "Fallback %s succeeded on %s",
        strategy,
        target.name,
        extra={"stage": "upsert", "table": target.name, "strategy": strategy, "written": result.written},
    )
    return result.written


async def _write_chunk(
    destination: Destination,
    target: TableTarget,
    chunk: list[dict[str, Any]],
    outcome: UpsertOutcome,
) -> int:
    upserted: WriteResult = await destination.upsert(target.name, chunk, target.conflict_key)
    if upserted.ok:
        return upserted.written
    _record(outcome, target.name, OP_UPSERT, upserted.error)

    inserted = await destination.insert(target.name, chunk)
    if inserted.ok:
        return inserted.written
    _record(outcome, target.name, OP_INSERT, inserted.error)

    no_constraint = upserted.error.kind is StoreErrorKind.NO_MATCHING_CONSTRAINT
    if no_constraint and target.time_field and inserted.error.is_duplicate_on(*SYMBOL_KEY):
        condensed = collapse_latest_per_symbol(
            chunk, time_field=target.time_field, time_mode=target.time_mode
        )
        return await _symbol_fallback(destination, target, condensed, STRATEGY_LATEST_PER_SYMBOL, outcome)

    if no_constraint and target.keyed_by_symbol:
        return await _symbol_fallback(destination, target, chunk, STRATEGY_UPSERT_ON_SYMBOL, outcome)

    return 0


async def upsert_all(
    destination: Destination,
    target: TableTarget,
    rows: Sequence[dict[str, Any]],
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> UpsertOutcome:
    outcome = UpsertOutcome()
    if not rows:
        return outcome
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")

    limit = destination.max_rows_per_write
    size = min(chunk_size, limit) if limit else chunk_size
    rows = list(rows)

    for i in range(0, len(rows), size):
        chunk = rows[i : i + size]
        try:
            outcome.written += await _write_chunk(destination, target, chunk, outcome)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            _record_exception(outcome, target.name, OP_FATAL, exc)
            continue

    logger.info(
        "Upsert finished for %s",
        target.name,
        extra={
            "stage": "upsert",
            "table": target.name,
            "rows": len(rows),
            "written": outcome.written,
            "errors": len(outcome.errors),
            "fallbacks": len(outcome.fallbacks),
        },
    )
    return outcome
