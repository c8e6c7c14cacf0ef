"""
SyncAttempt
Ephemeral record of mirroring one change into the relational store
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class SyncAttempt:
    """
    One record's write attempts for a single mirrored change.

    Never persisted; lives for the duration of the retry loop and is
    logged when the change is abandoned.
    """

    table: str
    record_id: str
    payload: Dict[str, Any]
    attempts: int = 0
    last_error: Optional[str] = None
    dropped_columns: List[str] = field(default_factory=list)

    @property
    def retries(self) -> int:
        return max(self.attempts - 1, 0)

    def drop_column(self, column: str) -> None:
        """Remove exactly one column from the payload."""
        del self.payload[column]
        self.dropped_columns.append(column)

    def __repr__(self) -> str:
        return (
            f"<SyncAttempt(table='{self.table}', record_id='{self.record_id}', "
            f"attempts={self.attempts}, dropped={self.dropped_columns})>"
        )
