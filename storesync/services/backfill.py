"""
Bulk Backfill
Full-collection transfer from Firestore into Postgres: initial migration, and
periodic catch-up for collections the live bridge does not watch.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

import structlog

from storesync.exceptions import RequiredFieldMissing, RowStoreError, SyncError
from storesync.models.sync_attempt import SyncAttempt
from storesync.models.table_mappings import INITIALIZED_SENTINEL_ID, TableMapping, get_table_mapping
from storesync.services.document_store import DocumentStore
from storesync.services.field_mapper import map_entity_to_row, validate_required_columns
from storesync.services.row_store import RowStore
from storesync.services.schema_drift import upsert_with_drift_retry

logger = structlog.get_logger(__name__)


@dataclass
class BackfillProgress:
    """Running totals for one collection, reported after every chunk."""

    collection: str
    total: int
    processed: int = 0
    succeeded: int = 0
    failed: int = 0

    @property
    def percent(self) -> float:
        return round(100.0 * self.processed / self.total, 1) if self.total else 100.0


@dataclass
class CollectionResult:
    entity_type: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    failed_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


ProgressCallback = Callable[[BackfillProgress], None]


def chunked(items: List[Any], size: int) -> Iterable[List[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class BackfillService:
    """
    Chunked upsert of whole collections, falling back to one row at a time
    inside a chunk that fails so a bad record does not block its siblings.
    """

    def __init__(
        self,
        document_store: DocumentStore,
        row_store: RowStore,
        chunk_size: Optional[int] = None,
        max_retries: Optional[int] = None,
    ):
        from storesync.config import settings

        self.document_store = document_store
        self.row_store = row_store
        self.chunk_size = chunk_size or settings.backfill_chunk_size
        self.max_retries = settings.schema_drift_max_retries if max_retries is None else max_retries
        self.logger = logger.bind(service="backfill")

    def run(
        self,
        entity_types: Optional[Iterable[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Dict[str, CollectionResult]:
        """
        Backfill each entity type in turn.

        A collection whose read fails is recorded with its error and the
        run moves on to the next one.

        Args:
            entity_types: Entity types to copy (defaults to settings.backfill_entity_types)
            on_progress: Called with BackfillProgress after each chunk

        Returns:
            Result per entity type
        """
        from storesync.config import settings

        targets = list(entity_types) if entity_types is not None else list(settings.backfill_entity_types)
        self.logger.info("backfill_started", entity_types=targets, chunk_size=self.chunk_size)

        results: Dict[str, CollectionResult] = {}
        for entity_type in targets:
            try:
                results[entity_type] = self.backfill_collection(entity_type, on_progress)
            except SyncError as e:
                self.logger.error("backfill_collection_failed", entity_type=entity_type, error=e.message)
                results[entity_type] = CollectionResult(entity_type=entity_type, error=e.message)

        self.logger.info(
            "backfill_completed",
            succeeded=sum(r.succeeded for r in results.values()),
            failed=sum(r.failed for r in results.values()),
            collections_failed=[name for name, r in results.items() if r.error],
        )
        return results

    def backfill_collection(
        self,
        entity_type: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> CollectionResult:
        mapping = get_table_mapping(entity_type)
        log = self.logger.bind(entity_type=entity_type, table=mapping.table)
        result = CollectionResult(entity_type=entity_type)

        documents = self.document_store.list_all(mapping.collection)
        rows = self._prepare_rows(mapping, documents, result, log)

        result.total = len(rows)
        progress = BackfillProgress(collection=mapping.collection, total=len(rows))
        log.info("backfill_collection_started", documents=len(documents), rows=len(rows))

        for chunk in chunked(rows, self.chunk_size):
            succeeded = self._write_chunk(mapping, chunk, result, log)
            progress.processed += len(chunk)
            progress.succeeded += succeeded
            progress.failed += len(chunk) - succeeded
            if on_progress is not None:
                on_progress(progress)

        result.succeeded = progress.succeeded
        result.failed = progress.failed
        log.info(
            "backfill_collection_completed",
            total=result.total,
            succeeded=result.succeeded,
            failed=result.failed,
            skipped=result.skipped,
        )
        return result

    def _prepare_rows(self, mapping: TableMapping, documents, result: CollectionResult, log) -> List[Dict[str, Any]]:
        # Keyed by identity so one chunk never carries the same id twice (last wins)
        rows: Dict[Any, Dict[str, Any]] = {}
        for document in documents:
            if document.id == INITIALIZED_SENTINEL_ID:
                continue
            row = map_entity_to_row(mapping.entity_type, document)
            try:
                validate_required_columns(mapping.entity_type, row)
            except RequiredFieldMissing as e:
                result.skipped += 1
                log.warning("backfill_row_skipped_required_field", record_id=document.id, column=e.column)
                continue
            rows[row[mapping.id_column]] = row
        return list(rows.values())

    def _write_chunk(self, mapping: TableMapping, chunk: List[Dict[str, Any]], result: CollectionResult, log) -> int:
        try:
            self.row_store.upsert(mapping.table, chunk, id_column=mapping.id_column)
            return len(chunk)
        except RowStoreError as e:
            log.warning("backfill_chunk_failed", size=len(chunk), error=e.message, code=e.code)

        succeeded = 0
        for row in chunk:
            record_id = str(row[mapping.id_column])
            attempt = SyncAttempt(table=mapping.table, record_id=record_id, payload=dict(row))
            try:
                upsert_with_drift_retry(
                    self.row_store,
                    attempt,
                    id_column=mapping.id_column,
                    max_retries=self.max_retries,
                )
            except RowStoreError as e:
                result.failed_ids.append(record_id)
                log.error("backfill_row_failed", record_id=record_id, attempts=attempt.attempts, error=e.message)
                continue
            if attempt.dropped_columns:
                log.warning("backfill_row_columns_dropped", record_id=record_id, dropped_columns=attempt.dropped_columns)
            succeeded += 1
        return succeeded


def format_backfill_results(results: Dict[str, CollectionResult]) -> str:
    lines = []
    for entity_type, result in results.items():
        if result.error:
            lines.append(f"  {entity_type}: FAILED ({result.error})")
        else:
            lines.append(
                f"  {entity_type}: {result.succeeded}/{result.total} rows"
                + (f", {result.failed} failed" if result.failed else "")
                + (f", {result.skipped} skipped" if result.skipped else "")
            )
    return "\n".join(lines)
