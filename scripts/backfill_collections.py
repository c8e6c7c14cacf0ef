#!/usr/bin/env python3
"""
Bulk copy Firestore collections into their Postgres tables.

Run: python scripts/backfill_collections.py [--entity-types orders,customers] [--all] [--chunk-size 100]

Chunks are upserted whole; a failing chunk falls back to one row at a time.
Per-record failures are logged and counted, not fatal.

Exit codes:
  0 - Backfill ran to completion (check the summary for per-record failures)
  2 - Fatal error (configuration, store connection, imports)
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

try:
    from scripts._bootstrap import bootstrap
    from storesync.config import settings
    from storesync.models.table_mappings import TABLE_MAPPINGS
    from storesync.services.backfill import BackfillService, format_backfill_results
except ImportError as e:
    print(f"ERROR: Failed to import required modules: {e}")
    print("Make sure you're running from the project root and dependencies are installed.")
    sys.exit(2)


def print_progress(progress):
    print(
        f"  {progress.collection}: {progress.processed}/{progress.total} "
        f"({progress.percent}%) ok={progress.succeeded} failed={progress.failed}"
    )


def main():
    """Backfill script entry point"""
    parser = argparse.ArgumentParser(description="Backfill Firestore collections into Postgres")
    parser.add_argument(
        "--entity-types",
        help="Comma-separated entity types (default: BACKFILL_ENTITY_TYPES setting)"
    )
    parser.add_argument("--all", action="store_true", help="Backfill every registered entity type")
    parser.add_argument("--chunk-size", type=int, default=None, help="Rows per upsert (default: BACKFILL_CHUNK_SIZE)")
    args = parser.parse_args()

    if args.all:
        entity_types = list(TABLE_MAPPINGS)
    elif args.entity_types:
        entity_types = [name.strip() for name in args.entity_types.split(",") if name.strip()]
    else:
        entity_types = list(settings.backfill_entity_types)

    unknown = [name for name in entity_types if name not in TABLE_MAPPINGS]
    if unknown:
        print(f"ERROR: Unknown entity types: {', '.join(unknown)}")
        print(f"Known: {', '.join(TABLE_MAPPINGS)}")
        sys.exit(2)

    runtime = bootstrap("backfill")

    print(f"Backfilling: {', '.join(entity_types)}")
    try:
        service = BackfillService(runtime.document_store, runtime.row_store, chunk_size=args.chunk_size)
        results = service.run(entity_types=entity_types, on_progress=print_progress)
    except Exception as e:
        print(f"ERROR: Backfill failed: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(2)
    finally:
        runtime.close()

    print("")
    print("BACKFILL SUMMARY")
    print("-" * 60)
    print(format_backfill_results(results))
    sys.exit(0)


if __name__ == "__main__":
    main()
