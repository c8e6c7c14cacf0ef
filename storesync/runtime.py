"""
Process Runtime
Store handles and services constructed once at process start and passed by reference
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.engine import Engine

from storesync.services.backfill import BackfillService
from storesync.services.change_bridge import ChangeMirrorBridge
from storesync.services.document_store import DocumentStore, build_document_store
from storesync.services.reconciliation import ReconciliationService
from storesync.services.row_store import PostgresRowStore, RowStore

logger = structlog.get_logger(__name__)


@dataclass
class SyncRuntime:
    document_store: DocumentStore
    row_store: RowStore
    bridge: ChangeMirrorBridge
    engine: Optional[Engine] = None

    def backfill_service(self) -> BackfillService:
        return BackfillService(self.document_store, self.row_store)

    def reconciliation_service(self) -> ReconciliationService:
        return ReconciliationService(self.document_store, self.row_store)

    def close(self) -> None:
        self.bridge.stop()
        if self.engine is not None:
            self.engine.dispose()
        logger.info("runtime_closed")


def build_runtime(report_failures: bool = False) -> SyncRuntime:
    """
    Connect both stores from settings.

    Raises:
        ConfigurationError: DATABASE_URL or Firebase credentials missing/invalid
    """
    from storesync.database import create_db_engine

    engine = create_db_engine()
    row_store = PostgresRowStore(engine)
    document_store = build_document_store()
    bridge = ChangeMirrorBridge(document_store, row_store, report_failures=report_failures)

    logger.info("runtime_ready", bridge_collections=bridge.entity_types)
    return SyncRuntime(document_store=document_store, row_store=row_store, bridge=bridge, engine=engine)
