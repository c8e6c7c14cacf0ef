"""
Sync Models
"""

from storesync.models.field_values import ChangeEvent, ChangeType, SourceDocument
from storesync.models.reconciliation_report import (
    CorrectionResult,
    DuplicateGroup,
    ReconciliationReport,
    ReconciliationWindow,
)
from storesync.models.sync_attempt import SyncAttempt
from storesync.models.table_mappings import TABLE_MAPPINGS, TableMapping, get_table_mapping

__all__ = [
    "ChangeEvent",
    "ChangeType",
    "SourceDocument",
    "CorrectionResult",
    "DuplicateGroup",
    "ReconciliationReport",
    "ReconciliationWindow",
    "SyncAttempt",
    "TABLE_MAPPINGS",
    "TableMapping",
    "get_table_mapping",
]
