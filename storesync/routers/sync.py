"""
Sync API Router
Bridge session control, manual backfill and manual reconciliation
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from storesync.exceptions import SyncError, UnknownEntityTypeError
from storesync.middleware.correlation_id import get_correlation_id
from storesync.models.reconciliation_report import ReconciliationWindow
from storesync.models.sync_schemas import BackfillRequest, BridgeStatusResponse, ReconcileRequest
from storesync.runtime import SyncRuntime
from storesync.services.reconciliation import format_report, month_window

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/sync", tags=["sync"])


def get_runtime(request: Request) -> SyncRuntime:
    """Runtime built at startup; 503 when the stores are not configured."""
    runtime: Optional[SyncRuntime] = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Stores not configured")
    return runtime


@router.get("/bridge", response_model=BridgeStatusResponse)
def bridge_status(runtime: SyncRuntime = Depends(get_runtime)):
    """Per-collection bridge state and counters"""
    return runtime.bridge.status()


@router.post("/bridge/start", response_model=BridgeStatusResponse)
def start_bridge(runtime: SyncRuntime = Depends(get_runtime)):
    """Activate a bridge session (one watch per configured collection)"""
    runtime.bridge.start()
    return runtime.bridge.status()


@router.post("/bridge/stop", response_model=BridgeStatusResponse)
def stop_bridge(runtime: SyncRuntime = Depends(get_runtime)):
    """End the bridge session; in-flight writes finish, new events are dropped"""
    runtime.bridge.stop()
    return runtime.bridge.status()


@router.post("/backfill")
def trigger_backfill(body: BackfillRequest, runtime: SyncRuntime = Depends(get_runtime)):
    """
    Run a backfill now.

    Blocks until every requested collection is copied. Per-record failures
    are reported in the result, not as an HTTP error.
    """
    results = runtime.backfill_service().run(entity_types=body.entity_types)

    return {
        "status": "completed",
        "results": {name: result.to_dict() for name, result in results.items()},
    }


@router.post("/reconcile")
def trigger_reconciliation(body: ReconcileRequest, runtime: SyncRuntime = Depends(get_runtime)):
    """
    Run reconciliation for one window now.

    Returns:
        dict with the per-partition report, corrections (null on dry run)
        and the printable summary
    """
    try:
        if body.year is not None:
            window = month_window(body.year, body.month)
        else:
            window = ReconciliationWindow(body.start, body.end)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        report, corrections = runtime.reconciliation_service().run(
            window, entity_type=body.entity_type, apply=body.apply
        )
    except UnknownEntityTypeError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except SyncError as e:
        logger.error("manual_reconciliation_error", error=e.message, entity_type=body.entity_type)
        raise HTTPException(status_code=502, detail=e.message)

    return {
        "status": "completed",
        "correlation_id": get_correlation_id(),
        "report": report.to_dict(),
        "corrections": corrections.to_dict() if corrections is not None else None,
        "summary": format_report(report, corrections),
    }
