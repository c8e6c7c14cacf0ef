"""
Change-Mirror Bridge
Replays Firestore change events into Postgres, one watch per collection.

Per collection:
    idle -> subscribed -> (per change) mapping -> writing -> subscribed
    writing -> retrying -> writing   (destination lacks a payload column)
    subscribed -> stopped            (session teardown)

Each collection's callbacks run to completion, retry loop included, before
the next callback for that collection starts; collections interleave.
"""

import threading
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

import structlog

from storesync.exceptions import RequiredFieldMissing, RowStoreError, SyncError
from storesync.models.field_values import ChangeEvent, ChangeType
from storesync.models.sync_attempt import SyncAttempt
from storesync.models.table_mappings import INITIALIZED_SENTINEL_ID, TableMapping, get_table_mapping
from storesync.services.document_store import DocumentStore, Subscription
from storesync.services.field_mapper import map_entity_to_row, validate_required_columns
from storesync.services.monitoring.error_tracking import add_breadcrumb, capture_sync_failure
from storesync.services.row_store import RowStore
from storesync.services.schema_drift import WriteErrorClass, classify_write_error, upsert_with_drift_retry

logger = structlog.get_logger(__name__)


class CollectionState(str, Enum):
    IDLE = "idle"
    SUBSCRIBED = "subscribed"
    MAPPING = "mapping"
    WRITING = "writing"
    RETRYING = "retrying"
    STOPPED = "stopped"


class MirrorOutcome(str, Enum):
    UPSERTED = "upserted"
    DELETED = "deleted"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class CollectionStats:
    upserted: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
    retries: int = 0
    watch_errors: int = 0
    last_error: Optional[str] = None


class _CollectionWatch:
    """Mutable per-collection bridge state, guarded by its own lock."""

    def __init__(self, mapping: TableMapping):
        self.mapping = mapping
        self.lock = threading.Lock()
        self.state = CollectionState.IDLE
        self.stats = CollectionStats()
        self.subscription: Optional[Subscription] = None


class ChangeMirrorBridge:
    """
    One-way, near-real-time mirror from the document store to the row store.

    Both store handles are created once at process start and passed in, so
    tests substitute in-memory fakes.
    """

    def __init__(
        self,
        document_store: DocumentStore,
        row_store: RowStore,
        entity_types: Optional[Iterable[str]] = None,
        max_retries: Optional[int] = None,
        report_failures: bool = False,
    ):
        """
        Initialize bridge.

        Args:
            document_store: Source of change events
            row_store: Destination of mirrored writes
            entity_types: Entity types to watch (defaults to settings.bridge_collections)
            max_retries: Schema-drift retry ceiling (defaults to settings.schema_drift_max_retries)
            report_failures: Send abandoned changes to Sentry
        """
        from storesync.config import settings

        self.document_store = document_store
        self.row_store = row_store
        self.max_retries = settings.schema_drift_max_retries if max_retries is None else max_retries
        self.report_failures = report_failures

        self._watches: Dict[str, _CollectionWatch] = {
            entity_type: _CollectionWatch(get_table_mapping(entity_type))
            for entity_type in (entity_types if entity_types is not None else settings.bridge_collections)
        }
        self._stopping = threading.Event()
        self._lifecycle_lock = threading.Lock()
        self.session_id: Optional[str] = None
        self.logger = logger.bind(service="change_bridge")

    @property
    def entity_types(self) -> List[str]:
        return list(self._watches)

    @property
    def is_running(self) -> bool:
        return self.session_id is not None and not self._stopping.is_set()

    # --- session lifecycle ---

    def start(self) -> None:
        """
        Activate the bridge: open one watch per configured collection.

        A watch that cannot be opened is logged and left idle; the others
        still start.
        """
        with self._lifecycle_lock:
            if self.is_running:
                self.logger.info("bridge_already_running", session_id=self.session_id)
                return

            self._stopping.clear()
            self.session_id = uuid4().hex
            log = self.logger.bind(session_id=self.session_id)
            log.info("bridge_starting", collections=self.entity_types)

            for entity_type, watch in self._watches.items():
                watch.stats = CollectionStats()
                try:
                    watch.subscription = self.document_store.watch(
                        watch.mapping.collection,
                        self._make_change_handler(entity_type),
                        self._make_error_handler(entity_type),
                    )
                except SyncError as e:
                    watch.state = CollectionState.IDLE
                    watch.stats.last_error = e.message
                    log.error("watch_subscribe_failed", entity_type=entity_type, error=e.message)
                    continue
                watch.state = CollectionState.SUBSCRIBED

            log.info(
                "bridge_started",
                subscribed=sum(1 for w in self._watches.values() if w.state == CollectionState.SUBSCRIBED),
            )
            add_breadcrumb("bridge", "session started", data={"session_id": self.session_id})

    def stop(self) -> None:
        """
        Tear down the session.

        New change events are rejected from this point; a callback already
        running finishes its current write before the collection is marked
        stopped.
        """
        with self._lifecycle_lock:
            if self.session_id is None:
                return
            self._stopping.set()
            log = self.logger.bind(session_id=self.session_id)
            log.info("bridge_stopping")

            for entity_type, watch in self._watches.items():
                if watch.subscription is not None:
                    try:
                        watch.subscription.unsubscribe()
                    except Exception as e:
                        log.warning("watch_unsubscribe_failed", entity_type=entity_type, error=str(e))
                    watch.subscription = None
                # Wait for an in-flight callback on this collection
                with watch.lock:
                    watch.state = CollectionState.STOPPED

            log.info("bridge_stopped", stats=self.status()["collections"])
            add_breadcrumb("bridge", "session stopped", data={"session_id": self.session_id})
            self.session_id = None

    def status(self) -> Dict[str, Any]:
        """Per-collection state and counters."""
        return {
            "running": self.is_running,
            "session_id": self.session_id,
            "collections": {
                entity_type: {"state": watch.state.value, **asdict(watch.stats)}
                for entity_type, watch in self._watches.items()
            },
        }

    def _make_change_handler(self, entity_type: str):
        def _on_changes(collection: str, events: List[ChangeEvent]) -> None:
            self.handle_changes(entity_type, events)
        return _on_changes

    def _make_error_handler(self, entity_type: str):
        def _on_error(collection: str, error: BaseException) -> None:
            self.handle_watch_error(entity_type, error)
        return _on_error

    # --- change handling ---

    def handle_changes(self, entity_type: str, events: List[ChangeEvent]) -> List[MirrorOutcome]:
        """
        Mirror one delivered batch of change events, in delivery order.

        Args:
            entity_type: Watched entity type the events belong to
            events: Change events as delivered by the watch

        Returns:
            Outcome per event (empty when the bridge is tearing down)
        """
        watch = self._watches.get(entity_type)
        if watch is None:
            self.logger.warning("changes_for_unwatched_collection", entity_type=entity_type)
            return []

        with watch.lock:
            if self._stopping.is_set() or watch.state == CollectionState.STOPPED:
                self.logger.debug("changes_dropped_after_teardown", entity_type=entity_type, count=len(events))
                return []

            outcomes = []
            for event in events:
                outcomes.append(self._mirror_change(watch, event))
                watch.state = CollectionState.SUBSCRIBED
            return outcomes

    def handle_watch_error(self, entity_type: str, error: BaseException) -> None:
        """Log a transport-level watch failure. The watch is not reopened here."""
        watch = self._watches.get(entity_type)
        if watch is not None:
            watch.stats.watch_errors += 1
            watch.stats.last_error = str(error)
        self.logger.error(
            "watch_failed",
            entity_type=entity_type,
            session_id=self.session_id,
            error=str(error),
            error_type=type(error).__name__,
        )

    def _mirror_change(self, watch: _CollectionWatch, event: ChangeEvent) -> MirrorOutcome:
        mapping = watch.mapping
        record_id = event.document_id
        log = self.logger.bind(
            session_id=self.session_id,
            entity_type=mapping.entity_type,
            table=mapping.table,
            record_id=record_id,
            change_type=event.change_type.value,
        )

        if record_id == INITIALIZED_SENTINEL_ID:
            log.debug("sentinel_skipped")
            watch.stats.skipped += 1
            return MirrorOutcome.SKIPPED

        try:
            if event.change_type == ChangeType.REMOVED:
                watch.state = CollectionState.WRITING
                self.row_store.delete_ids(mapping.table, [record_id], id_column=mapping.id_column)
                watch.stats.deleted += 1
                log.info("change_deleted")
                return MirrorOutcome.DELETED

            watch.state = CollectionState.MAPPING
            row = map_entity_to_row(mapping.entity_type, event.document)
            validate_required_columns(mapping.entity_type, row)

            attempt = SyncAttempt(table=mapping.table, record_id=record_id, payload=row)
            if self._upsert_with_retry(watch, attempt, log):
                watch.stats.upserted += 1
                return MirrorOutcome.UPSERTED

        except RequiredFieldMissing as e:
            watch.stats.skipped += 1
            log.warning("change_skipped_required_field", column=e.column)
            return MirrorOutcome.SKIPPED
        except RowStoreError as e:
            # Delete path: no retry applies
            watch.stats.last_error = e.message
            log.error("change_failed", error=e.message, code=e.code)
            self._report(e, mapping, record_id)
        except Exception as e:
            watch.stats.last_error = str(e)
            log.error("change_failed_unexpected", error=str(e), error_type=type(e).__name__, exc_info=True)
            self._report(e, mapping, record_id)

        watch.stats.failed += 1
        return MirrorOutcome.FAILED

    def _upsert_with_retry(self, watch: _CollectionWatch, attempt: SyncAttempt, log) -> bool:
        """
        Upsert attempt.payload, dropping one missing column per failed try.

        Returns:
            True when a write succeeded; False once the change is abandoned
        """
        mapping = watch.mapping

        def _on_retry(current: SyncAttempt, drift: WriteErrorClass) -> None:
            watch.state = CollectionState.RETRYING
            watch.stats.retries += 1
            log.warning("schema_drift_column_dropped", column=drift.column, attempt=current.attempts)

        watch.state = CollectionState.WRITING
        try:
            upsert_with_drift_retry(
                self.row_store,
                attempt,
                id_column=mapping.id_column,
                max_retries=self.max_retries,
                on_retry=_on_retry,
            )
        except RowStoreError as e:
            watch.stats.last_error = e.message
            log.error(
                "change_abandoned",
                attempts=attempt.attempts,
                dropped_columns=attempt.dropped_columns,
                error=e.message,
                code=e.code,
                error_kind=classify_write_error(e).kind.value,
            )
            self._report(e, mapping, attempt.record_id)
            return False

        if attempt.dropped_columns:
            log.info("change_upserted_after_drift", attempts=attempt.attempts, dropped_columns=attempt.dropped_columns)
        else:
            log.debug("change_upserted")
        return True

    def _report(self, error: BaseException, mapping: TableMapping, record_id: str) -> None:
        if self.report_failures:
            capture_sync_failure(error, "bridge", mapping.table, record_id)
