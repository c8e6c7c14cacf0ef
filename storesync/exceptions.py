"""
Sync Exceptions
Error taxonomy shared by the bridge, the backfill and the reconciliation tool
"""

from typing import Optional


class SyncError(Exception):
    """Base class for all synchronization errors."""

    def __init__(self, message: str, table: Optional[str] = None, record_id: Optional[str] = None):
        self.message = message
        self.table = table
        self.record_id = record_id
        super().__init__(message)


class ConfigurationError(SyncError):
    """Missing or malformed connection settings. Fatal at startup."""


class UnknownEntityTypeError(SyncError):
    """No table mapping is registered for the requested entity type."""


class RequiredFieldMissing(SyncError):
    """
    Record lacks a column the destination table declares NOT NULL.

    Raised before any write is attempted; retrying cannot help.
    """

    def __init__(self, table: str, record_id: str, column: str):
        super().__init__(
            f"{table}/{record_id} is missing required column '{column}'",
            table=table,
            record_id=record_id,
        )
        self.column = column


class RowStoreError(SyncError):
    """
    Write or read failure reported by the relational store.

    Carries the driver error code (SQLSTATE or PostgREST code) so that
    callers can classify it without inspecting driver exceptions.
    """

    def __init__(self, message: str, table: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message, table=table)
        self.code = code

    def __repr__(self) -> str:
        return f"<RowStoreError(table={self.table!r}, code={self.code!r}, message={self.message!r})>"


class DocumentStoreError(SyncError):
    """Read or watch failure reported by the document store."""
