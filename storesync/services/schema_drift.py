"""
Write Error Classification

Single seam for reading the relational store's error messages. The bridge's
self-healing retry depends on extracting the name of a column the payload
references but the destination table lacks; the message formats of both
Postgres and PostgREST (Supabase REST) are recognized here and nowhere else.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from storesync.exceptions import RowStoreError
from storesync.models.sync_attempt import SyncAttempt

UNDEFINED_COLUMN_CODES = frozenset({"42703", "PGRST204"})
NOT_NULL_VIOLATION_CODES = frozenset({"23502"})

# column "foo" of relation "orders" does not exist / column "foo" does not exist
_PG_UNDEFINED_COLUMN = re.compile(r'column "(?P<column>[^"]+)"(?: of relation "(?P<table>[^"]+)")? does not exist')
# Could not find the 'foo' column of 'orders' in the schema cache
_POSTGREST_UNDEFINED_COLUMN = re.compile(
    r"Could not find the '(?P<column>[^']+)' column of '(?P<table>[^']+)' in the schema cache"
)
# null value in column "name" of relation "products" violates not-null constraint
_PG_NOT_NULL = re.compile(r'null value in column "(?P<column>[^"]+)"(?: of relation "(?P<table>[^"]+)")? violates not-null')


class WriteErrorKind(str, Enum):
    MISSING_COLUMN = "missing_column"
    REQUIRED_FIELD = "required_field"
    OTHER = "other"


@dataclass(frozen=True)
class WriteErrorClass:
    """Classification of one failed write."""

    kind: WriteErrorKind
    column: Optional[str] = None
    table: Optional[str] = None

    @property
    def is_schema_drift(self) -> bool:
        return self.kind == WriteErrorKind.MISSING_COLUMN and self.column is not None


def classify_write_error(error: BaseException) -> WriteErrorClass:
    """
    Classify a failed upsert.

    Args:
        error: RowStoreError from the row store, or any exception whose
            text carries the database message

    Returns:
        WriteErrorClass; kind MISSING_COLUMN carries the missing column name
    """
    code = getattr(error, "code", None) if isinstance(error, RowStoreError) else None
    message = error.message if isinstance(error, RowStoreError) else str(error)

    for pattern in (_POSTGREST_UNDEFINED_COLUMN, _PG_UNDEFINED_COLUMN):
        match = pattern.search(message)
        if match:
            return WriteErrorClass(
                kind=WriteErrorKind.MISSING_COLUMN,
                column=match.group("column"),
                table=match.group("table"),
            )

    match = _PG_NOT_NULL.search(message)
    if match or code in NOT_NULL_VIOLATION_CODES:
        return WriteErrorClass(
            kind=WriteErrorKind.REQUIRED_FIELD,
            column=match.group("column") if match else None,
            table=match.group("table") if match else None,
        )

    if code in UNDEFINED_COLUMN_CODES:
        # Code says undefined column but the message did not name it
        return WriteErrorClass(kind=WriteErrorKind.MISSING_COLUMN)

    return WriteErrorClass(kind=WriteErrorKind.OTHER)


def upsert_with_drift_retry(
    row_store,
    attempt: SyncAttempt,
    id_column: str = "id",
    max_retries: int = 6,
    on_retry: Optional[Callable[[SyncAttempt, WriteErrorClass], None]] = None,
) -> SyncAttempt:
    """
    Upsert one row, removing one missing column per failed try.

    Each retry drops exactly the column the store reported missing, and
    only when the payload actually carries it. The identity column is
    never dropped.

    Args:
        row_store: RowStore to write to
        attempt: SyncAttempt holding table and payload; updated in place
        id_column: Conflict target
        max_retries: Retry ceiling (attempts <= max_retries + 1)
        on_retry: Called after each dropped column

    Returns:
        The attempt, once a write succeeded

    Raises:
        RowStoreError: the last store error, once the change is abandoned
    """
    while True:
        attempt.attempts += 1
        try:
            row_store.upsert(attempt.table, [attempt.payload], id_column=id_column)
            return attempt
        except RowStoreError as e:
            attempt.last_error = e.message
            drift = classify_write_error(e)
            if (
                drift.is_schema_drift
                and drift.column in attempt.payload
                and drift.column != id_column
                and attempt.retries < max_retries
            ):
                attempt.drop_column(drift.column)
                if on_retry is not None:
                    on_retry(attempt, drift)
                continue
            raise
