from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence

from .errors import WriteResult


class Destination(Protocol):
    """Write capability shared by every backend the upsert pipeline can target."""

    name: str
    max_rows_per_write: Optional[int]

    async def check(self) -> None:
        """Pre-flight connectivity check; raises RunFatalError when unusable."""
        ...

    async def upsert(
        self, table: str, rows: list[dict[str, Any]], conflict_key: Sequence[str]
    ) -> WriteResult:
        ...

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> WriteResult:
        ...

    async def close(self) -> None:
        ...


def parse_conflict_key(value: str | Sequence[str]) -> tuple[str, ...]:
    if isinstance(value, str):
        parts = value.split(",")
    else:
        parts = list(value)
    key = tuple(p.strip() for p in parts if p and p.strip())
    if not key:
        raise ValueError("conflict key must name at least one column")
    return key
