from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

NO_MATCHING_CONSTRAINT_SQLSTATE = "42P10"
UNIQUE_VIOLATION_SQLSTATE = "23505"

_DUP_KEY_RE = re.compile(r"Key \(([^)]*)\)=")


class StoreErrorKind(str, Enum):
    NO_MATCHING_CONSTRAINT = "no_matching_constraint"
    DUPLICATE_KEY = "duplicate_key"
    OTHER = "other"


@dataclass(frozen=True)
class StoreError:
    kind: StoreErrorKind
    message: str
    code: Optional[str] = None
    details: Optional[str] = None
    columns: tuple[str, ...] = ()

    def is_duplicate_on(self, *columns: str) -> bool:
        return self.kind is StoreErrorKind.DUPLICATE_KEY and self.columns == tuple(columns)


@dataclass(frozen=True)
class WriteResult:
    written: int = 0
    error: Optional[StoreError] = field(default=None)

    @property
    def ok(self) -> bool:
        return self.error is None


def duplicate_key_columns(details: str | None) -> tuple[str, ...]:
    """Columns of a Postgres unique-violation detail: `Key (symbol)=(BTC) already exists.`"""
    if not details:
        return ()
    match = _DUP_KEY_RE.search(details)
    if not match:
        return ()
    return tuple(col.strip().strip('"') for col in match.group(1).split(","))


def classify_sqlstate(
    code: str | None,
    message: str,
    details: str | None = None,
) -> StoreError:
    if code == NO_MATCHING_CONSTRAINT_SQLSTATE:
        kind = StoreErrorKind.NO_MATCHING_CONSTRAINT
    elif code == UNIQUE_VIOLATION_SQLSTATE:
        kind = StoreErrorKind.DUPLICATE_KEY
    else:
        kind = StoreErrorKind.OTHER
    columns = duplicate_key_columns(details) if kind is StoreErrorKind.DUPLICATE_KEY else ()
    return StoreError(kind=kind, message=message, code=code, details=details, columns=columns)
