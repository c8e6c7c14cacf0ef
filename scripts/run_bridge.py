#!/usr/bin/env python3
"""
Run the change-mirror bridge as a standalone process.

Run: python scripts/run_bridge.py [--collections orders,customers]

Opens one Firestore watch per collection and mirrors every change into
Postgres until interrupted (SIGINT/SIGTERM), then tears the session down.

Exit codes:
  0 - Stopped cleanly
  2 - Fatal error (configuration, store connection)
"""

import argparse
import signal
import sys
import threading
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

try:
    from scripts._bootstrap import bootstrap
    from storesync.models.table_mappings import TABLE_MAPPINGS
    from storesync.services.change_bridge import ChangeMirrorBridge
except ImportError as e:
    print(f"ERROR: Failed to import required modules: {e}")
    print("Make sure you're running from the project root and dependencies are installed.")
    sys.exit(2)


def main():
    """Bridge worker entry point"""
    parser = argparse.ArgumentParser(description="Mirror Firestore changes into Postgres")
    parser.add_argument("--collections", help="Comma-separated entity types (default: BRIDGE_COLLECTIONS)")
    args = parser.parse_args()

    entity_types = None
    if args.collections:
        entity_types = [name.strip() for name in args.collections.split(",") if name.strip()]
        unknown = [name for name in entity_types if name not in TABLE_MAPPINGS]
        if unknown:
            print(f"ERROR: Unknown entity types: {', '.join(unknown)}")
            sys.exit(2)

    runtime = bootstrap("bridge", report_failures=True)
    if entity_types is not None:
        runtime.bridge = ChangeMirrorBridge(
            runtime.document_store, runtime.row_store, entity_types=entity_types, report_failures=True
        )

    stop_requested = threading.Event()

    def _request_stop(signum, frame):
        print(f"Received signal {signum}, stopping bridge...")
        stop_requested.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    runtime.bridge.start()
    print(f"Bridge running for: {', '.join(runtime.bridge.entity_types)}")

    while not stop_requested.wait(timeout=60):
        status = runtime.bridge.status()
        totals = {
            key: sum(c[key] for c in status["collections"].values())
            for key in ("upserted", "deleted", "skipped", "failed")
        }
        print(f"Bridge alive: {totals}")

    runtime.close()
    print("Bridge stopped")
    sys.exit(0)


if __name__ == "__main__":
    main()
