from __future__ import annotations

import logging
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import Counter, make_asgi_app

from candlescore.config import PipelineConfig
from candlescore.errors import RunFatalError
from candlescore.ingestion.candles import pipeline

SERVICE_NAME = "candlescore"

logger = logging.getLogger(__name__)

RUN_COUNTER = Counter(
    f"{SERVICE_NAME}_ingestion_runs_total",
    "Ingestion runs by outcome",
    ["outcome"],
)
ROWS_WRITTEN = Counter(
    f"{SERVICE_NAME}_rows_written_total",
    "Rows written per destination table kind",
    ["table"],
)
CHUNK_ERRORS = Counter(
    f"{SERVICE_NAME}_write_errors_total",
    "Recorded chunk write errors per table kind",
    ["table"],
)

app = FastAPI(title="candlescore", version="0.1.0")
app.mount("/metrics", make_asgi_app())
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    return {"status": "healthy", "service": SERVICE_NAME}


@app.get("/ingest")
async def ingest(
    interval: Optional[str] = Query(default=None, min_length=2, max_length=8),
    n: Optional[int] = Query(default=None, gt=0, le=5000),
    limit: Optional[int] = Query(default=None, gt=0, le=1000),
):
    load_dotenv()
    try:
        config = PipelineConfig.from_env(interval=interval, candle_count=n, symbol_limit=limit)
        report = await pipeline.run_ingestion_from_config(config)
    except RunFatalError as exc:
        RUN_COUNTER.labels(outcome="fatal").inc()
        logger.error("Ingestion run failed", extra={"stage": "api", "error": str(exc)})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"ok": False, "error": str(exc)},
        )

    RUN_COUNTER.labels(outcome="ok").inc()
    ROWS_WRITTEN.labels(table="candles").inc(report.candles_written)
    ROWS_WRITTEN.labels(table="indicators").inc(report.indicators_written)
    CHUNK_ERRORS.labels(table="candles").inc(len(report.candles.errors))
    CHUNK_ERRORS.labels(table="indicators").inc(len(report.indicators.errors))
    return report.to_dict()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("candlescore.api:app", host="0.0.0.0", port=5000, reload=True)
