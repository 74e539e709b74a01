from .destination import Destination, parse_conflict_key
from .errors import StoreError, StoreErrorKind, WriteResult
from .upsert import TableTarget, UpsertOutcome, upsert_all

__all__ = [
    "Destination",
    "StoreError",
    "StoreErrorKind",
    "TableTarget",
    "UpsertOutcome",
    "WriteResult",
    "parse_conflict_key",
    "upsert_all",
]
