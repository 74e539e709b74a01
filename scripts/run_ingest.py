#!/usr/bin/env python3
from __future__ import annotations

import asyncio
import json
import logging
import sys
from argparse import ArgumentParser

from dotenv import load_dotenv

from candlescore.config import DESTINATIONS, PipelineConfig
from candlescore.errors import RunFatalError
from candlescore.ingestion.candles.pipeline import run_ingestion_from_config


def _positive_int(value: str) -> int:
    try:
        out = int(value)
    except ValueError as e:
        raise SystemExit(f"Invalid integer {value!r}") from e
    if out <= 0:
        raise SystemExit(f"Expected a positive integer, got {out}")
    return out


def build_parser() -> ArgumentParser:
    p = ArgumentParser(
        description=(
            "Fetch Hyperliquid candles, compute EMA/RSI/MACD snapshots and upsert the latest "
            "candle + indicator row per symbol."
        )
    )
    p.add_argument("--db-url", default=None, help="Overrides DATABASE_URL (default: env DATABASE_URL)")
    p.add_argument("--destination", choices=list(DESTINATIONS), default=None, help="Overrides DESTINATION")
    p.add_argument("--interval", default=None, help="Candle interval, e.g. 1h, 4h, 1d (default: env or 4h)")
    p.add_argument("--count", type=_positive_int, default=None, help="Candles to request per symbol")
    p.add_argument("--limit", type=_positive_int, default=None, help="Max symbols to process")
    p.add_argument("--chunk-size", type=_positive_int, default=None, help="Rows per upsert chunk")
    p.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Overrides the default logging level (default: INFO)",
    )
    p.add_argument("--verbose", action="store_true", help="Shorthand for --log-level DEBUG")
    p.add_argument("--quiet", action="store_true", help="Only warnings and the final report")
    return p


def main(argv: list[str]) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    resolved_level = args.log_level.upper()
    if args.verbose:
        resolved_level = "DEBUG"
    elif args.quiet and resolved_level != "DEBUG":
        resolved_level = "WARNING"
    logging.basicConfig(
        level=getattr(logging, resolved_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = PipelineConfig.from_env(
            db_url=args.db_url,
            destination=args.destination,
            interval=args.interval,
            candle_count=args.count,
            symbol_limit=args.limit,
            chunk_size=args.chunk_size,
        )
        report = asyncio.run(run_ingestion_from_config(config))
    except RunFatalError as e:
        print(json.dumps({"ok": False, "error": str(e)}))
        print(f"❌ ingestion failed: {e}", file=sys.stderr)
        return 2

    print(json.dumps(report.to_dict(), indent=2, default=str))
    print(
        f"✅ ingestion complete: symbols={len(report.symbols)} skipped={len(report.skipped)} "
        f"candles_written={report.candles_written}/{report.candles_prepared} "
        f"indicators_written={report.indicators_written}/{report.indicators_prepared}",
        file=sys.stderr,
    )
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main(sys.argv[1:]))
    except KeyboardInterrupt:
        raise SystemExit(130)
