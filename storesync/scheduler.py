"""
APScheduler Background Jobs

Periodic backfill of the collections the live bridge does not watch.
Jobs run via BackgroundScheduler in the FastAPI process.
"""

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from storesync.config import settings
from storesync.middleware.correlation_id import new_correlation_id

logger = structlog.get_logger(__name__)


def run_scheduled_backfill(runtime):
    """
    Wrapper function for the scheduled backfill job.

    Copies settings.backfill_entity_types in full; per-record failures are
    logged by the backfill itself.
    """
    try:
        new_correlation_id("backfill-")
        results = runtime.backfill_service().run()
        logger.info(
            "scheduled_backfill_completed",
            results={name: result.to_dict() for name, result in results.items()},
        )
    except Exception as e:
        logger.error("scheduled_backfill_crashed", error=str(e), exc_info=True)


def start_scheduler(runtime, environment: str = "production") -> BackgroundScheduler:
    """
    Start background scheduler.

    Args:
        runtime: SyncRuntime whose stores the jobs use
        environment: Current environment (skip scheduler in testing)

    Returns:
        BackgroundScheduler instance
    """
    scheduler = BackgroundScheduler(timezone=settings.shop_timezone)

    if environment == "testing":
        logger.info("scheduler_skipped", reason="testing_environment")
        return scheduler

    if settings.backfill_interval_hours <= 0:
        logger.info("scheduler_skipped", reason="backfill_interval_disabled")
        return scheduler

    scheduler.add_job(
        run_scheduled_backfill,
        trigger=IntervalTrigger(hours=settings.backfill_interval_hours),
        args=[runtime],
        id="periodic_backfill",
        name="Periodic Firestore -> Postgres Backfill",
        replace_existing=True,
        max_instances=1,
    )
    logger.info(
        "job_registered",
        job="periodic_backfill",
        interval_hours=settings.backfill_interval_hours,
        entity_types=settings.backfill_entity_types,
    )

    scheduler.start()
    logger.info("scheduler_started", jobs=["periodic_backfill"])

    return scheduler


def stop_scheduler(scheduler: BackgroundScheduler):
    """
    Stop background scheduler gracefully.

    Args:
        scheduler: BackgroundScheduler instance to stop
    """
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")


__all__ = [
    "start_scheduler",
    "stop_scheduler",
    "run_scheduled_backfill",
]
