"""
Sentry Error Tracking
Error reports for abandoned sync writes, tagged with the collection and document involved
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


def init_sentry(with_fastapi: bool = False) -> bool:
    """
    Initialize Sentry SDK.

    If SENTRY_DSN is not configured, logs warning and returns False (disabled).
    This allows graceful degradation in development environments.

    Args:
        with_fastapi: Enable the FastAPI integration (HTTP process only)

    Returns:
        True when Sentry was initialized
    """
    from storesync.config import settings

    if settings.sentry_dsn is None:
        logger.warning("Sentry DSN not configured - error tracking disabled")
        return False

    try:
        import sentry_sdk

        integrations = []
        if with_fastapi:
            from sentry_sdk.integrations.fastapi import FastApiIntegration
            integrations.append(FastApiIntegration())

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.sentry_environment or settings.environment,
            traces_sample_rate=0.1,
            integrations=integrations,
        )

        logger.info(
            "Sentry initialized",
            extra={"environment": settings.sentry_environment or settings.environment}
        )
        return True
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")
        return False


def set_sync_context(
    component: str,
    collection: Optional[str] = None,
    record_id: Optional[str] = None,
) -> None:
    """
    Set Sentry context for the record currently being synchronized.

    Args:
        component: "bridge", "backfill" or "reconciliation"
        collection: Entity type / table being written
        record_id: Document id
    """
    import sentry_sdk

    sentry_sdk.set_context("sync", {
        "component": component,
        "collection": collection or "none",
        "record_id": record_id or "none",
    })
    sentry_sdk.set_tag("component", component)
    if collection:
        sentry_sdk.set_tag("collection", collection)


def capture_sync_failure(
    error: BaseException,
    component: str,
    collection: Optional[str] = None,
    record_id: Optional[str] = None,
) -> None:
    """
    Report an abandoned write to Sentry.

    A no-op when Sentry was never initialized (the SDK drops events
    without a client).
    """
    import sentry_sdk

    with sentry_sdk.new_scope():
        set_sync_context(component, collection, record_id)
        sentry_sdk.capture_exception(error)


def add_breadcrumb(
    category: str,
    message: str,
    level: str = "info",
    data: Optional[dict] = None
) -> None:
    """
    Add breadcrumb to Sentry for the sync trail.

    Args:
        category: Breadcrumb category (e.g., "bridge", "backfill", "reconciliation")
        message: Human-readable message
        level: Severity level ("debug", "info", "warning", "error")
        data: Additional structured data
    """
    import sentry_sdk

    sentry_sdk.add_breadcrumb(
        category=category,
        message=message,
        level=level,
        data=data or {}
    )
