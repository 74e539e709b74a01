from __future__ import annotations

import pytest

from candlescore.config import PipelineConfig
from candlescore.db.errors import StoreError, StoreErrorKind, WriteResult
from candlescore.errors import RunFatalError, SourceUnavailable
from candlescore.ingestion.candles import pipeline
from candlescore.ingestion.candles.parser import MAX_TIMESTAMP_MS

HOUR_MS = 60 * 60 * 1000
NOW_MS = 1_700_000_000_000


def _records(n: int, *, start: float = 100.0, step: float = 1.0) -> list[dict]:
    first = NOW_MS - n * HOUR_MS
    return [
        {
            "t": first + i * HOUR_MS,
            "o": str(start + i * step),
            "h": str(start + i * step + 1),
            "l": str(start + i * step - 1),
            "c": str(start + i * step),
            "v": "10",
        }
        for i in range(n)
    ]


class _FakeSource:
    name = "fake"

    def __init__(self, mids: dict, candles: dict, *, mids_error: Exception | None = None) -> None:
        self.mids = mids
        self.candles = candles
        self.mids_error = mids_error
        self.requests: list[tuple[str, str, int, int]] = []
        self.closed = False

    async def fetch_symbols(self):
        if self.mids_error is not None:
            raise self.mids_error
        return dict(self.mids)

    async def fetch_candles(self, symbol, interval, start_ms, end_ms):
        self.requests.append((symbol, interval, start_ms, end_ms))
        value = self.candles.get(symbol, [])
        if isinstance(value, Exception):
            raise value
        return value

    async def close(self):
        self.closed = True


class _MemoryDestination:
    name = "memory"
    max_rows_per_write = None

    def __init__(self, *, fail_check: bool = False, upsert_error: StoreError | None = None) -> None:
        self.fail_check = fail_check
        self.upsert_error = upsert_error
        self.tables: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    async def check(self):
        if self.fail_check:
            raise RunFatalError("Database connection failed")

    async def upsert(self, table, rows, conflict_key):
        self.calls.append(("upsert", table))
        if self.upsert_error is not None:
            return WriteResult(error=self.upsert_error)
        self.tables.setdefault(table, []).extend(rows)
        return WriteResult(written=len(rows))

    async def insert(self, table, rows):
        self.calls.append(("insert", table))
        self.tables.setdefault(table, []).extend(rows)
        return WriteResult(written=len(rows))

    async def close(self):
        self.closed = True


def _config(**env) -> PipelineConfig:
    base = {"CANDLES_TIME_TYPE": "ms", "CANDLE_INTERVAL": "1h", "CANDLE_COUNT": "250"}
    base.update(env)
    return PipelineConfig.from_env(base)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_run_writes_latest_candle_and_indicators_per_symbol() -> None:
    btc = _records(250)
    source = _FakeSource(
        mids={"BTC": 1.0, "@1": 2.0, "ETH": 3.0},
        candles={"BTC": list(reversed(btc)), "ETH": _records(250, start=5000.0, step=-1.0)},
    )
    dest = _MemoryDestination()

    report = await pipeline.run_ingestion(_config(), source=source, destination=dest, now_ms=NOW_MS)

    assert report.symbols == ["BTC", "ETH"]
    assert report.candles_prepared == 2
    assert report.candles_written == 2
    assert report.indicators_written == 2
    assert report.skipped == []

    candles = {r["symbol"]: r for r in dest.tables["candles"]}
    assert candles["BTC"]["start"] == btc[-1]["t"]
    assert candles["BTC"]["end"] == btc[-1]["t"] + HOUR_MS
    assert candles["BTC"]["close"] == 349.0

    indicators = {r["symbol"]: r for r in dest.tables["indicators"]}
    assert indicators["BTC"]["label"] == "Bullish"
    assert indicators["ETH"]["label"] == "Bearish"
    assert indicators["BTC"]["last_ts"] == btc[-1]["t"]

    assert source.requests[0] == ("BTC", "1h", NOW_MS - 250 * HOUR_MS, NOW_MS)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_symbols_without_data_are_skipped_not_fatal() -> None:
    source = _FakeSource(
        mids={"EMPTY": 1.0, "DOWN": 1.0, "BTC": 1.0},
        candles={
            "EMPTY": [],
            "DOWN": SourceUnavailable("Hyperliquid candleSnapshot request failed (502)", symbol="DOWN", status_code=502),
            "BTC": _records(30),
        },
    )
    dest = _MemoryDestination()

    report = await pipeline.run_ingestion(_config(), source=source, destination=dest, now_ms=NOW_MS)

    assert report.candles_written == 1
    assert report.indicators_written == 1
    assert {s.symbol: s.reason for s in report.skipped} == {
        "EMPTY": pipeline.SKIP_INPUT_ERROR,
        "DOWN": pipeline.SKIP_SOURCE_UNAVAILABLE,
    }
    btc_row = dest.tables["indicators"][0]
    assert btc_row["ema200"] is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unencodable_timestamps_skip_only_their_symbol() -> None:
    edge = [{"t": MAX_TIMESTAMP_MS, "o": "1", "h": "1", "l": "1", "c": "1", "v": "1"}]
    source = _FakeSource(
        mids={"BAD": 1.0, "EDGE": 1.0, "BTC": 1.0},
        candles={
            "BAD": [{"t": 10**20, "o": "1", "h": "1", "l": "1", "c": "1", "v": "1"}],
            "EDGE": edge,
            "BTC": _records(30),
        },
    )
    dest = _MemoryDestination()

    report = await pipeline.run_ingestion(
        _config(CANDLES_TIME_TYPE="timestamp"), source=source, destination=dest, now_ms=NOW_MS
    )

    assert {s.symbol: s.reason for s in report.skipped} == {
        "BAD": pipeline.SKIP_INPUT_ERROR,
        "EDGE": pipeline.SKIP_INPUT_ERROR,
    }
    assert report.candles_written == 1
    assert report.indicators_written == 1
    assert [r["symbol"] for r in dest.tables["candles"]] == ["BTC"]
    assert dest.tables["candles"][0]["start"].endswith("Z")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_symbol_limit_applies_after_filtering() -> None:
    source = _FakeSource(
        mids={"@1": 1.0, "AAA": 1.0, "BBB": 1.0, "CCC": 1.0},
        candles={"AAA": _records(5), "BBB": _records(5), "CCC": _records(5)},
    )
    report = await pipeline.run_ingestion(
        _config(SYMBOL_LIMIT="2"), source=source, destination=_MemoryDestination(), now_ms=NOW_MS
    )
    assert report.symbols == ["AAA", "BBB"]
    assert [r[0] for r in source.requests] == ["AAA", "BBB"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_symbol_discovery_failure_is_fatal_and_writes_nothing() -> None:
    source = _FakeSource(mids={}, candles={}, mids_error=SourceUnavailable("allMids failed (503)", status_code=503))
    dest = _MemoryDestination()

    with pytest.raises(RunFatalError):
        await pipeline.run_ingestion(_config(), source=source, destination=dest, now_ms=NOW_MS)

    assert dest.calls == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failed_preflight_is_fatal_before_fetching() -> None:
    source = _FakeSource(mids={"BTC": 1.0}, candles={"BTC": _records(5)})

    with pytest.raises(RunFatalError):
        await pipeline.run_ingestion(
            _config(), source=source, destination=_MemoryDestination(fail_check=True), now_ms=NOW_MS
        )

    assert source.requests == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_write_errors_land_in_report() -> None:
    denied = StoreError(kind=StoreErrorKind.OTHER, message="permission denied", code="42501")
    source = _FakeSource(mids={"BTC": 1.0}, candles={"BTC": _records(5)})
    dest = _MemoryDestination(upsert_error=denied)

    report = await pipeline.run_ingestion(_config(), source=source, destination=dest, now_ms=NOW_MS)
    payload = report.to_dict()

    # plain insert still lands the rows
    assert payload["ok"] is True
    assert payload["candles_written"] == 1
    assert payload["errors"]["candles"][0]["operation"] == "upsert"
    assert payload["errors"]["indicators"][0]["code"] == "42501"
    assert payload["fallbacks"] == {"candles": [], "indicators": []}
    assert payload["debug"]["tables"] == {"candles": "candles", "indicators": "indicators"}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_run_from_config_closes_source_and_destination(monkeypatch) -> None:
    source = _FakeSource(mids={"BTC": 1.0}, candles={"BTC": _records(5)})
    dest = _MemoryDestination()
    monkeypatch.setattr(pipeline, "build_source", lambda config: source)
    monkeypatch.setattr(pipeline, "build_destination", lambda config: dest)

    report = await pipeline.run_ingestion_from_config(_config())

    assert report.candles_written == 1
    assert source.closed is True
    assert dest.closed is True


@pytest.mark.unit
def test_build_destination_selects_backend() -> None:
    airtable = pipeline.build_destination(
        _config(DESTINATION="airtable", AIRTABLE_API_KEY="key", AIRTABLE_BASE_ID="app123")
    )
    assert airtable.name == "airtable"

    with pytest.raises(RunFatalError):
        pipeline.build_destination(_config())
