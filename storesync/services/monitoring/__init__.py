"""
Monitoring Module
Exports for structured logging and error tracking
"""

from storesync.services.monitoring.logging import setup_logging, CorrelationJsonFormatter
from storesync.services.monitoring.error_tracking import (
    init_sentry,
    set_sync_context,
    capture_sync_failure,
    add_breadcrumb,
)

__all__ = [
    "setup_logging",
    "CorrelationJsonFormatter",
    "init_sentry",
    "set_sync_context",
    "capture_sync_failure",
    "add_breadcrumb",
]
