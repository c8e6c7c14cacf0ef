"""
storesync - Main Application
FastAPI entry point: bridge session control, manual sync triggers, periodic backfill
"""

from fastapi import FastAPI
from fastapi.responses import JSONResponse
import structlog

from storesync.config import settings
from storesync.exceptions import ConfigurationError
from storesync.middleware.correlation_id import CorrelationIdMiddleware
from storesync.routers import sync_router
from storesync.scheduler import start_scheduler, stop_scheduler
from storesync.services.monitoring import init_sentry, setup_logging

setup_logging()
logger = structlog.get_logger(__name__)

# FastAPI App
app = FastAPI(
    title="storesync",
    description="Firestore -> Postgres change mirroring, backfill and reconciliation",
    version="0.1.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None,
)

app.add_middleware(CorrelationIdMiddleware)
app.include_router(sync_router)

app.state.runtime = None
app.state.scheduler = None


@app.on_event("startup")
async def startup_event():
    """Connect both stores, activate the bridge, start the periodic backfill"""
    logger.info("startup", environment=settings.environment)
    sentry_enabled = init_sentry(with_fastapi=True)

    from storesync.runtime import build_runtime

    try:
        runtime = build_runtime(report_failures=sentry_enabled)
    except ConfigurationError as e:
        # API stays up for /health; sync endpoints answer 503
        logger.error("runtime_unavailable", error=e.message)
        return

    app.state.runtime = runtime

    if settings.bridge_enabled and settings.environment != "testing":
        runtime.bridge.start()

    app.state.scheduler = start_scheduler(runtime, settings.environment)


@app.on_event("shutdown")
async def shutdown_event():
    """Application Shutdown"""
    logger.info("shutdown")

    stop_scheduler(app.state.scheduler)
    if app.state.runtime is not None:
        app.state.runtime.close()


@app.get("/")
async def root():
    """Root Endpoint"""
    return {
        "message": "storesync API",
        "version": "0.1.0",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """
    Health Check Endpoint
    Reports whether the stores are connected and the bridge is running
    """
    runtime = app.state.runtime
    scheduler = app.state.scheduler

    health_status = {
        "status": "healthy" if runtime is not None else "degraded",
        "environment": settings.environment,
        "services": {
            "api": "running",
            "stores": "connected" if runtime is not None else "not_configured",
            "bridge": "running" if runtime is not None and runtime.bridge.is_running else "stopped",
            "scheduler": "running" if scheduler is not None and scheduler.running else "stopped",
        }
    }

    return JSONResponse(
        content=health_status,
        status_code=200
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "storesync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development"
    )
