"""
Shared start-up for the operator scripts: logging, correlation id, store handles.
"""

import sys

from storesync.exceptions import ConfigurationError
from storesync.middleware.correlation_id import new_correlation_id
from storesync.services.monitoring import init_sentry, setup_logging


def bootstrap(run_name: str, report_failures: bool = False):
    """
    Connect both stores or exit 2.

    Returns:
        SyncRuntime
    """
    setup_logging()
    init_sentry()
    new_correlation_id(f"{run_name}-")

    from storesync.runtime import build_runtime

    print("Initializing store connections...")
    try:
        return build_runtime(report_failures=report_failures)
    except ConfigurationError as e:
        print(f"ERROR: {e.message}")
        print("Set DATABASE_URL and FIREBASE_CREDENTIALS_PATH (or GOOGLE_APPLICATION_CREDENTIALS).")
        sys.exit(2)
