"""
ReconciliationService
Diffs Firestore (source of truth) against Postgres for one time window and repairs drift
"""

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog

from storesync.exceptions import RequiredFieldMissing, RowStoreError, SyncError
from storesync.models.field_values import SourceDocument
from storesync.models.reconciliation_report import (
    UNKNOWN_PARTITION,
    CorrectionResult,
    ReconciliationReport,
    ReconciliationWindow,
    StatusMismatch,
)
from storesync.models.sync_attempt import SyncAttempt
from storesync.models.table_mappings import INITIALIZED_SENTINEL_ID, TableMapping, get_table_mapping
from storesync.services.backfill import chunked
from storesync.services.document_store import DocumentStore
from storesync.services.field_mapper import encode_value, map_entity_to_row, validate_required_columns
from storesync.services.fingerprints import find_duplicate_groups
from storesync.services.monitoring.error_tracking import add_breadcrumb
from storesync.services.row_store import RowFilter, RowStore
from storesync.services.schema_drift import upsert_with_drift_retry

logger = structlog.get_logger(__name__)

ALL_PARTITION = "all"


def month_window(year: int, month: int, tz: Optional[str] = None) -> ReconciliationWindow:
    """
    Calendar month in the shop's timezone, as a UTC window.

    month_window(2026, 1) with Asia/Seoul spans
    2025-12-31T15:00:00+00:00 .. 2026-01-31T14:59:59.999999+00:00.
    """
    from zoneinfo import ZoneInfo

    from storesync.config import settings

    if not 1 <= month <= 12:
        raise ValueError(f"month must be 1..12, got {month}")

    zone = ZoneInfo(tz or settings.shop_timezone)
    start = datetime(year, month, 1, tzinfo=zone)
    next_start = datetime(year + month // 12, month % 12 + 1, 1, tzinfo=zone)
    end = next_start - timedelta(microseconds=1)
    return ReconciliationWindow(start.astimezone(timezone.utc), end.astimezone(timezone.utc))


def _partition_name(value: Any) -> str:
    if value is None or value == "":
        return UNKNOWN_PARTITION
    return str(value)


class ReconciliationService:
    """
    Windowed diff engine.

    Classifies every record as exactly one of: status mismatch, missing in
    destination, ghost in destination, or consistent. Corrections upsert
    mismatched and missing records from the source and delete ghosts.
    Fingerprint duplicate groups are reported only.

    Re-running is safe: upserts key on id and ghosts are re-evaluated from
    current state, so a second run over unchanged stores corrects nothing.
    """

    def __init__(
        self,
        document_store: DocumentStore,
        row_store: RowStore,
        page_size: Optional[int] = None,
        ghost_batch_size: Optional[int] = None,
        max_retries: Optional[int] = None,
    ):
        """
        Initialize ReconciliationService.

        Args:
            document_store: Source of truth
            row_store: Store being corrected
            page_size: Destination page size (defaults to settings.reconcile_page_size)
            ghost_batch_size: Ids per delete call (defaults to settings.ghost_delete_batch_size)
            max_retries: Schema-drift retry ceiling for corrective upserts
        """
        from storesync.config import settings

        self.document_store = document_store
        self.row_store = row_store
        self.page_size = page_size or settings.reconcile_page_size
        self.ghost_batch_size = ghost_batch_size or settings.ghost_delete_batch_size
        self.max_retries = settings.schema_drift_max_retries if max_retries is None else max_retries

    def run(
        self,
        window: ReconciliationWindow,
        entity_type: str = "orders",
        apply: bool = True,
    ) -> Tuple[ReconciliationReport, Optional[CorrectionResult]]:
        """
        Analyze, then apply corrections unless apply is False.

        Returns:
            (report, corrections) - corrections is None for a dry run
        """
        report = self.analyze(window, entity_type)
        if not apply:
            logger.info("reconciliation_dry_run", entity_type=entity_type)
            return report, None
        return report, self.apply_corrections(report)

    # --- analysis ---

    def analyze(self, window: ReconciliationWindow, entity_type: str = "orders") -> ReconciliationReport:
        """
        Fetch both stores for the window in full, then classify.

        Raises:
            SyncError: entity type has no date field, or either read fails
        """
        mapping = get_table_mapping(entity_type)
        if mapping.date_field is None:
            raise SyncError(f"{entity_type} has no date field; it cannot be reconciled by window", table=mapping.table)

        log = logger.bind(entity_type=entity_type, window=str(window))
        log.info("reconciliation_started")

        documents = [
            d for d in self.document_store.list_window(mapping.collection, mapping.date_field, window.start, window.end)
            if d.id != INITIALIZED_SENTINEL_ID
        ]
        rows = self.fetch_destination_rows(mapping, window)
        log.info("reconciliation_fetched", source_count=len(documents), destination_count=len(rows))

        source_by_id = {d.id: d for d in documents}
        destination_by_id = {str(row[mapping.id_column]): row for row in rows}

        report = ReconciliationReport(
            entity_type=entity_type,
            window=window,
            generated_at=datetime.now(timezone.utc),
        )
        documents_by_partition: Dict[str, List[SourceDocument]] = defaultdict(list)

        for document in documents:
            partition = self._source_partition(mapping, document)
            part = report.partition(partition)
            part.source_count += 1
            documents_by_partition[partition].append(document)

            row = destination_by_id.get(document.id)
            if row is None:
                part.missing_in_destination.append(document.id)
                report.source_documents[document.id] = document
                continue

            if mapping.status_field is not None:
                source_status = self._source_status(mapping, document)
                destination_status = row.get(mapping.status_column)
                if source_status != destination_status:
                    part.status_mismatches.append(StatusMismatch(document.id, source_status, destination_status))
                    report.source_documents[document.id] = document

        for record_id, row in destination_by_id.items():
            part = report.partition(self._row_partition(mapping, row))
            part.destination_count += 1
            if record_id not in source_by_id:
                part.ghosts_in_destination.append(record_id)

        for partition, partition_documents in documents_by_partition.items():
            report.partition(partition).duplicate_groups = find_duplicate_groups(
                entity_type, partition, partition_documents, timestamp_field=mapping.date_field,
            )

        log.info(
            "reconciliation_analyzed",
            partitions=len(report.partitions),
            status_mismatches=len(report.mismatch_ids),
            missing_in_destination=len(report.missing_ids),
            ghosts_in_destination=len(report.ghost_ids),
            duplicate_groups=len(report.duplicate_groups),
        )
        return report

    def fetch_destination_rows(self, mapping: TableMapping, window: ReconciliationWindow) -> List[Dict[str, Any]]:
        """Page through the destination window until a short page."""
        filters = [
            RowFilter(mapping.date_column, "gte", window.start.astimezone(timezone.utc).isoformat()),
            RowFilter(mapping.date_column, "lte", window.end.astimezone(timezone.utc).isoformat()),
        ]

        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            page = self.row_store.select_page(
                mapping.table,
                filters=filters,
                offset=offset,
                limit=self.page_size,
                order_by=mapping.id_column,
            )
            rows.extend(page)
            if len(page) < self.page_size:
                return rows
            offset += self.page_size

    @staticmethod
    def _source_partition(mapping: TableMapping, document: SourceDocument) -> str:
        if mapping.partition_field is None:
            return ALL_PARTITION
        return _partition_name(document.get(mapping.partition_field))

    @staticmethod
    def _row_partition(mapping: TableMapping, row: Dict[str, Any]) -> str:
        if mapping.partition_field is None:
            return ALL_PARTITION
        return _partition_name(row.get(mapping.partition_column))

    @staticmethod
    def _source_status(mapping: TableMapping, document: SourceDocument) -> Any:
        value = document.fields.get(mapping.status_field)
        return encode_value(value) if value is not None else None

    # --- corrections ---

    def apply_corrections(self, report: ReconciliationReport) -> CorrectionResult:
        """
        Upsert mismatched and missing records from the source; delete ghosts in batches.

        Each failed write is logged and skipped; nothing already written is
        rolled back.
        """
        mapping = get_table_mapping(report.entity_type)
        result = CorrectionResult()
        log = logger.bind(entity_type=report.entity_type, window=str(report.window))

        for record_id in report.mismatch_ids + report.missing_ids:
            document = report.source_documents.get(record_id)
            if document is None:
                log.warning("correction_source_missing", record_id=record_id)
                result.upsert_failed.append(record_id)
                continue
            self._upsert_document(mapping, document, result, log)

        ghost_ids = self._confirm_ghosts(mapping, report.ghost_ids, result, log)
        for batch in chunked(ghost_ids, self.ghost_batch_size):
            try:
                self.row_store.delete_ids(mapping.table, batch, id_column=mapping.id_column)
            except RowStoreError as e:
                result.delete_failed.extend(batch)
                log.error("ghost_delete_failed", table=mapping.table, ids=batch, error=e.message, code=e.code)
                continue
            result.deleted.extend(batch)
            log.info("ghosts_deleted", table=mapping.table, count=len(batch))

        log.info("reconciliation_corrected", **result.to_dict())
        add_breadcrumb("reconciliation", "corrections applied", data=result.to_dict())
        return result

    def _upsert_document(self, mapping: TableMapping, document: SourceDocument, result: CorrectionResult, log) -> None:
        try:
            row = map_entity_to_row(mapping.entity_type, document)
            if mapping.status_column in mapping.allowed_columns:
                # A status removed at the source must clear the stored one
                row.setdefault(mapping.status_column, None)
            validate_required_columns(mapping.entity_type, row)
            upsert_with_drift_retry(
                self.row_store,
                SyncAttempt(table=mapping.table, record_id=document.id, payload=row),
                id_column=mapping.id_column,
                max_retries=self.max_retries,
            )
        except (RequiredFieldMissing, RowStoreError) as e:
            result.upsert_failed.append(document.id)
            log.error("correction_upsert_failed", table=mapping.table, record_id=document.id, error=e.message)
            return
        result.upserted.append(document.id)

    def _confirm_ghosts(self, mapping: TableMapping, ghost_ids: List[str], result: CorrectionResult, log) -> List[str]:
        """
        Point-read each ghost before deleting it.

        A document that exists outside the window (its date changed) is
        re-mirrored instead of deleted; a failed read leaves the row alone.
        """
        confirmed = []
        for record_id in ghost_ids:
            try:
                document = self.document_store.get(mapping.collection, record_id)
            except SyncError as e:
                log.warning("ghost_check_failed", record_id=record_id, error=e.message)
                continue
            if document is None:
                confirmed.append(record_id)
            else:
                log.info("ghost_resolved_from_source", record_id=record_id)
                self._upsert_document(mapping, document, result, log)
        return confirmed


def format_report(report: ReconciliationReport, corrections: Optional[CorrectionResult] = None) -> str:
    """Human-readable per-partition summary for operator output."""
    lines = [
        f"Reconciliation: {report.entity_type} {report.window}",
        f"Partitions: {len(report.partitions)}",
        "",
    ]

    for name in sorted(report.partitions):
        part = report.partitions[name]
        lines.append(f"[{name}]")
        lines.append(f"  source: {part.source_count}, destination: {part.destination_count}")
        if part.status_mismatches:
            lines.append(f"  status mismatches: {len(part.status_mismatches)}")
            for m in part.status_mismatches:
                lines.append(f"    {m.record_id}: source={m.source_status!r} destination={m.destination_status!r}")
        if part.missing_in_destination:
            lines.append(
                f"  missing in destination: {len(part.missing_in_destination)} ids: {', '.join(part.missing_in_destination)}"
            )
        if part.ghosts_in_destination:
            lines.append(
                f"  ghosts in destination: {len(part.ghosts_in_destination)} ids: {', '.join(part.ghosts_in_destination)}"
            )
        if part.duplicate_groups:
            lines.append(f"  probable duplicate groups: {len(part.duplicate_groups)}")
            for group in part.duplicate_groups:
                members = ", ".join(f"{m.record_id} ({m.label})" for m in group.members)
                lines.append(f"    {group.fingerprint}: {members}")
        if part.is_clean:
            lines.append("  consistent")

    if corrections is not None:
        lines.append("")
        lines.append(
            f"Corrections: upserted {len(corrections.upserted)}, deleted {len(corrections.deleted)}, "
            f"upsert failures {len(corrections.upsert_failed)}, delete failures {len(corrections.delete_failed)}"
        )

    return "\n".join(lines)
