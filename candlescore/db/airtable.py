from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Sequence
from urllib.parse import quote

import httpx

from candlescore.errors import RunFatalError

from .errors import StoreError, StoreErrorKind, WriteResult

logger = logging.getLogger(__name__)

AIRTABLE_API_URL = "https://api.airtable.com/v0"
AIRTABLE_MAX_RECORDS_PER_REQUEST = 10


def _error_from_response(response: httpx.Response) -> StoreError:
    code = f"http_{response.status_code}"
    message = response.reason_phrase or "Airtable request failed"
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            code = str(err.get("type") or code)
            message = str(err.get("message") or message)
        elif isinstance(err, str):
            code = err
    return StoreError(kind=StoreErrorKind.OTHER, message=message, code=code)


class AirtableDestination:
    """
    Airtable records API as a write destination.

    Airtable has no schema-level uniqueness constraint, so every failure
    classifies as OTHER and the fallback ladder stops at the plain insert.
    """

    name = "airtable"
    max_rows_per_write: Optional[int] = AIRTABLE_MAX_RECORDS_PER_REQUEST

    def __init__(
        self,
        *,
        api_key: str | None,
        base_id: str | None,
        base_url: str = AIRTABLE_API_URL,
        request_timeout: float = 30.0,
        check_table: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key or not base_id:
            raise RunFatalError("AIRTABLE_API_KEY and AIRTABLE_BASE_ID must be set")
        self.api_key = api_key
        self.base_id = base_id
        self.base_url = base_url.rstrip("/")
        self.check_table = check_table
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=request_timeout)

    def _table_url(self, table: str) -> str:
        return f"{self.base_url}/{self.base_id}/{quote(table, safe='')}"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    async def check(self) -> None:
        """Read one record from `check_table` so bad credentials fail before any fetching."""
        if not self.check_table:
            return None
        try:
            response = await self._client.request(
                "GET",
                self._table_url(self.check_table),
                params={"maxRecords": 1},
                headers=self._headers(),
            )
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as exc:
            raise RunFatalError(f"Airtable unreachable: {type(exc).__name__}") from exc
        if response.is_error:
            error = _error_from_response(response)
            raise RunFatalError(
                f"Airtable pre-flight failed ({response.status_code} {error.code}): {error.message}"
            )

    async def _send(self, method: str, table: str, payload: dict[str, Any]) -> WriteResult:
        try:
            response = await self._client.request(
                method, self._table_url(table), json=payload, headers=self._headers()
            )
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as exc:
            return WriteResult(
                written=0,
                error=StoreError(kind=StoreErrorKind.OTHER, message=str(exc), code=type(exc).__name__),
            )
        if response.is_error:
            error = _error_from_response(response)
            logger.debug(
                "Airtable write rejected",
                extra={"stage": "db", "table": table, "code": error.code, "status_code": response.status_code},
            )
            return WriteResult(written=0, error=error)
        records = (response.json() or {}).get("records") or []
        return WriteResult(written=len(records))

    async def _write(
        self,
        method: str,
        table: str,
        rows: list[dict[str, Any]],
        extra: dict[str, Any] | None = None,
    ) -> WriteResult:
        written = 0
        for i in range(0, len(rows), AIRTABLE_MAX_RECORDS_PER_REQUEST):
            batch = rows[i : i + AIRTABLE_MAX_RECORDS_PER_REQUEST]
            payload: dict[str, Any] = {"records": [{"fields": row} for row in batch], "typecast": True}
            if extra:
                payload.update(extra)
            result = await self._send(method, table, payload)
            if not result.ok:
                return WriteResult(written=written, error=result.error)
            written += result.written
        return WriteResult(written=written)

    async def upsert(
        self, table: str, rows: list[dict[str, Any]], conflict_key: Sequence[str]
    ) -> WriteResult:
        return await self._write(
            "PATCH", table, rows, {"performUpsert": {"fieldsToMergeOn": list(conflict_key)}}
        )

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> WriteResult:
        return await self._write("POST", table, rows)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
