"""
ReconciliationReport
Transient diff of Firestore against Postgres for one time window, keyed by partition (branch)
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from storesync.models.field_values import SourceDocument

UNKNOWN_PARTITION = "Unknown"

SUSPECTED_ORIGINAL = "suspected original"
SUSPECTED_DUPLICATE = "suspected duplicate"


@dataclass(frozen=True)
class ReconciliationWindow:
    """Closed interval [start, end] of timezone-aware datetimes."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("Reconciliation window bounds must be timezone-aware")
        if self.end < self.start:
            raise ValueError("Reconciliation window ends before it starts")

    def __str__(self) -> str:
        return f"{self.start.isoformat()} .. {self.end.isoformat()}"


@dataclass
class StatusMismatch:
    record_id: str
    source_status: Any
    destination_status: Any


@dataclass
class DuplicateMember:
    record_id: str
    timestamp: Optional[datetime]
    label: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DuplicateGroup:
    """Records sharing one fingerprint. Evidence for review, never grounds for deletion."""

    fingerprint: str
    partition: str
    members: List[DuplicateMember] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.members)


@dataclass
class PartitionReport:
    partition: str
    source_count: int = 0
    destination_count: int = 0
    status_mismatches: List[StatusMismatch] = field(default_factory=list)
    missing_in_destination: List[str] = field(default_factory=list)
    ghosts_in_destination: List[str] = field(default_factory=list)
    duplicate_groups: List[DuplicateGroup] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (self.status_mismatches or self.missing_in_destination
                    or self.ghosts_in_destination or self.duplicate_groups)


@dataclass
class ReconciliationReport:
    """
    Result of one analysis run.

    Holds the source documents behind every mismatch and missing record so
    corrections can be written without re-reading Firestore. Never persisted.
    """

    entity_type: str
    window: ReconciliationWindow
    partitions: Dict[str, PartitionReport] = field(default_factory=dict)
    source_documents: Dict[str, SourceDocument] = field(default_factory=dict, repr=False)
    generated_at: Optional[datetime] = None

    def partition(self, name: str) -> PartitionReport:
        if name not in self.partitions:
            self.partitions[name] = PartitionReport(partition=name)
        return self.partitions[name]

    @property
    def mismatch_ids(self) -> List[str]:
        return [m.record_id for p in self.partitions.values() for m in p.status_mismatches]

    @property
    def missing_ids(self) -> List[str]:
        return [rid for p in self.partitions.values() for rid in p.missing_in_destination]

    @property
    def ghost_ids(self) -> List[str]:
        return [rid for p in self.partitions.values() for rid in p.ghosts_in_destination]

    @property
    def duplicate_groups(self) -> List[DuplicateGroup]:
        return [g for p in self.partitions.values() for g in p.duplicate_groups]

    @property
    def needs_correction(self) -> bool:
        return bool(self.mismatch_ids or self.missing_ids or self.ghost_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "window": {"start": self.window.start.isoformat(), "end": self.window.end.isoformat()},
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
            "partitions": {
                name: {
                    "source_count": p.source_count,
                    "destination_count": p.destination_count,
                    "status_mismatches": [
                        {"id": m.record_id, "source": m.source_status, "destination": m.destination_status}
                        for m in p.status_mismatches
                    ],
                    "missing_in_destination": list(p.missing_in_destination),
                    "ghosts_in_destination": list(p.ghosts_in_destination),
                    "duplicate_groups": [
                        {
                            "fingerprint": g.fingerprint,
                            "members": [
                                {
                                    "id": m.record_id,
                                    "label": m.label,
                                    "timestamp": m.timestamp.isoformat() if m.timestamp else None,
                                }
                                for m in g.members
                            ],
                        }
                        for g in p.duplicate_groups
                    ],
                }
                for name, p in sorted(self.partitions.items())
            },
        }


@dataclass
class CorrectionResult:
    """Writes issued by one corrective pass. Partial results are kept; nothing is rolled back."""

    upserted: List[str] = field(default_factory=list)
    upsert_failed: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    delete_failed: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.upserted or self.upsert_failed or self.deleted or self.delete_failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "upserted": len(self.upserted),
            "upsert_failed": list(self.upsert_failed),
            "deleted": len(self.deleted),
            "delete_failed": list(self.delete_failed),
        }

    def __repr__(self) -> str:
        return (
            f"<CorrectionResult(upserted={len(self.upserted)}, upsert_failed={len(self.upsert_failed)}, "
            f"deleted={len(self.deleted)}, delete_failed={len(self.delete_failed)})>"
        )
