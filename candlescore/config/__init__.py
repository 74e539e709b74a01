from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional

from candlescore.db.destination import parse_conflict_key
from candlescore.db.upsert import DEFAULT_CHUNK_SIZE, TableTarget
from candlescore.errors import ConfigError
from candlescore.ingestion.candles.rows import DEFAULT_TIME_MODE

DEFAULT_INTERVAL = "4h"
DEFAULT_CANDLE_COUNT = 200
DEFAULT_SYMBOL_LIMIT = 100
DEFAULT_CONFLICT_KEY = "symbol"

DESTINATION_POSTGRES = "postgres"
DESTINATION_AIRTABLE = "airtable"
DESTINATIONS = (DESTINATION_POSTGRES, DESTINATION_AIRTABLE)


def normalize_table_name(name: Optional[str], fallback: str) -> str:
    raw = str(name or "").strip() or str(fallback or "").strip()
    raw = re.sub(r"^['\"]|['\"]$", "", raw)
    return re.sub(r"^public\.", "", raw, flags=re.IGNORECASE)


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid {key}={raw!r}") from e
    if value <= 0:
        raise ConfigError(f"{key} must be > 0 (got {value})")
    return value


@dataclass(frozen=True)
class PipelineConfig:
    candles: TableTarget
    indicators: TableTarget
    db_url: Optional[str] = None
    db_schema: str = "public"
    destination: str = DESTINATION_POSTGRES
    interval: str = DEFAULT_INTERVAL
    candle_count: int = DEFAULT_CANDLE_COUNT
    symbol_limit: int = DEFAULT_SYMBOL_LIMIT
    chunk_size: int = DEFAULT_CHUNK_SIZE
    airtable_api_key: Optional[str] = field(default=None, repr=False)
    airtable_base_id: Optional[str] = None
    hyperliquid_info_url: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, **overrides) -> "PipelineConfig":
        """Build the run configuration from environment variables (call load_dotenv() first)."""
        env = os.environ if env is None else env

        candles_time_mode = env.get("CANDLES_TIME_TYPE") or DEFAULT_TIME_MODE
        indicators_time_mode = env.get("INDICATORS_TIME_TYPE") or candles_time_mode
        shared_conflict = env.get("ON_CONFLICT") or DEFAULT_CONFLICT_KEY

        destination = (env.get("DESTINATION") or DESTINATION_POSTGRES).strip().lower()
        if destination not in DESTINATIONS:
            raise ConfigError(f"Unknown DESTINATION={destination!r} (expected one of {', '.join(DESTINATIONS)})")

        try:
            candles = TableTarget(
                name=normalize_table_name(env.get("CANDLES_TABLE"), "candles"),
                conflict_key=parse_conflict_key(env.get("CANDLES_ON_CONFLICT") or shared_conflict),
                time_field="start",
                time_mode=candles_time_mode,
            )
            indicators = TableTarget(
                name=normalize_table_name(env.get("INDICATORS_TABLE"), "indicators"),
                conflict_key=parse_conflict_key(env.get("INDICATORS_ON_CONFLICT") or shared_conflict),
                time_mode=indicators_time_mode,
                keyed_by_symbol=True,
            )
        except ValueError as e:
            raise ConfigError(str(e)) from e

        values = dict(
            candles=candles,
            indicators=indicators,
            db_url=env.get("DATABASE_URL") or None,
            db_schema=env.get("DB_SCHEMA") or "public",
            destination=destination,
            interval=env.get("CANDLE_INTERVAL") or DEFAULT_INTERVAL,
            candle_count=_get_int(env, "CANDLE_COUNT", DEFAULT_CANDLE_COUNT),
            symbol_limit=_get_int(env, "SYMBOL_LIMIT", DEFAULT_SYMBOL_LIMIT),
            chunk_size=_get_int(env, "UPSERT_CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
            airtable_api_key=env.get("AIRTABLE_API_KEY") or None,
            airtable_base_id=env.get("AIRTABLE_BASE_ID") or None,
            hyperliquid_info_url=env.get("HYPERLIQUID_API_URL") or None,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def debug_info(self) -> dict:
        return {
            "destination": self.destination,
            "tables": {"candles": self.candles.name, "indicators": self.indicators.name},
            "time_modes": {"candles": self.candles.time_mode, "indicators": self.indicators.time_mode},
            "conflict_keys": {
                "candles": ",".join(self.candles.conflict_key),
                "indicators": ",".join(self.indicators.conflict_key),
            },
            "strategy": "last-only-per-symbol",
        }
