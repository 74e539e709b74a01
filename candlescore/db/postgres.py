from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Sequence
from urllib.parse import urlparse, urlunparse

import psycopg2
from psycopg2 import sql
from psycopg2.extras import execute_values

from candlescore.errors import RunFatalError

from .errors import StoreError, WriteResult, classify_sqlstate

logger = logging.getLogger(__name__)


def _normalize_psycopg2_url(db_url: str) -> str:
    parsed = urlparse(db_url)
    if "+" in parsed.scheme:
        parsed = parsed._replace(scheme=parsed.scheme.split("+", 1)[0])
    return urlunparse(parsed)


def connect(db_url: str):
    return psycopg2.connect(_normalize_psycopg2_url(db_url))


def _columns_for(rows: list[dict[str, Any]]) -> list[str]:
    columns: list[str] = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)
    return columns


def build_upsert_sql(
    schema: str,
    table: str,
    columns: Sequence[str],
    conflict_key: Sequence[str] | None,
) -> sql.Composed:
    target = sql.SQL("INSERT INTO {}.{} ({}) VALUES %s").format(
        sql.Identifier(schema),
        sql.Identifier(table),
        sql.SQL(", ").join(sql.Identifier(c) for c in columns),
    )
    if conflict_key is None:
        return target + sql.SQL(" RETURNING *")

    updates = [c for c in columns if c not in conflict_key]
    if updates:
        action = sql.SQL("DO UPDATE SET {}").format(
            sql.SQL(", ").join(
                sql.SQL("{} = EXCLUDED.{}").format(sql.Identifier(c), sql.Identifier(c)) for c in updates
            )
        )
    else:
        action = sql.SQL("DO NOTHING")
    return target + sql.SQL(" ON CONFLICT ({}) {} RETURNING *").format(
        sql.SQL(", ").join(sql.Identifier(c) for c in conflict_key),
        action,
    )


def _store_error_from(exc: psycopg2.Error) -> StoreError:
    diag = getattr(exc, "diag", None)
    details = getattr(diag, "message_detail", None) if diag is not None else None
    message = (getattr(diag, "message_primary", None) if diag is not None else None) or str(exc).strip()
    return classify_sqlstate(getattr(exc, "pgcode", None), message, details)


class PostgresDestination:
    """
    psycopg2-backed destination holding the run's single shared connection.

    Statements run in a worker thread so the event loop is only suspended at
    the write boundary. Every failed statement is rolled back so the
    connection stays usable for the next fallback attempt or chunk.
    """

    name = "postgres"
    max_rows_per_write: Optional[int] = None

    def __init__(self, db_url: Optional[str], *, schema: str = "public", conn=None) -> None:
        if not db_url and conn is None:
            raise RunFatalError("DATABASE_URL is not set")
        self.db_url = db_url
        self.schema = schema or "public"
        self._conn = conn

    def _connection(self):
        if self._conn is None:
            self._conn = connect(self.db_url)
        return self._conn

    def _check_sync(self) -> None:
        with self._connection().cursor() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()

    async def check(self) -> None:
        try:
            await asyncio.to_thread(self._check_sync)
        except psycopg2.Error as exc:
            raise RunFatalError(f"Database connection failed: {str(exc).strip()}") from exc

    def _write_sync(
        self,
        table: str,
        rows: list[dict[str, Any]],
        conflict_key: Sequence[str] | None,
    ) -> WriteResult:
        if not rows:
            return WriteResult(written=0)
        conn = self._connection()
        columns = _columns_for(rows)
        statement = build_upsert_sql(self.schema, table, columns, conflict_key)
        values = [tuple(row.get(c) for c in columns) for row in rows]
        try:
            with conn.cursor() as cur:
                returned = execute_values(cur, statement, values, page_size=len(values), fetch=True)
            conn.commit()
        except psycopg2.Error as exc:
            conn.rollback()
            error = _store_error_from(exc)
            logger.debug(
                "Postgres write rejected",
                extra={"stage": "db", "table": table, "code": error.code, "rows": len(rows)},
            )
            return WriteResult(written=0, error=error)
        return WriteResult(written=len(returned or []))

    async def upsert(
        self, table: str, rows: list[dict[str, Any]], conflict_key: Sequence[str]
    ) -> WriteResult:
        return await asyncio.to_thread(self._write_sync, table, rows, tuple(conflict_key))

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> WriteResult:
        return await asyncio.to_thread(self._write_sync, table, rows, None)

    async def close(self) -> None:
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await asyncio.to_thread(conn.close)
