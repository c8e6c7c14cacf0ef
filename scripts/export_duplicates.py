#!/usr/bin/env python3
"""
Export probable duplicate orders for one month to an XLSX workbook for review.

Run: python scripts/export_duplicates.py --month 2026-01 [--output duplicates_2026-01.xlsx]

Read-only: analyzes the window without applying corrections. Within each
duplicate group the earliest record is labelled "suspected original".

Exit codes:
  0 - Workbook written (possibly with no groups)
  2 - Fatal error (configuration, store connection, bad arguments)
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

try:
    from scripts._bootstrap import bootstrap
    from scripts.reconcile_orders import parse_month
    from storesync.exceptions import SyncError
    from storesync.services.duplicate_export import write_duplicate_workbook
    from storesync.services.reconciliation import month_window
except ImportError as e:
    print(f"ERROR: Failed to import required modules: {e}")
    print("Make sure you're running from the project root and dependencies are installed.")
    sys.exit(2)


def main():
    """Duplicate export entry point"""
    parser = argparse.ArgumentParser(description="Export fingerprint duplicate groups to XLSX")
    parser.add_argument("--month", type=parse_month, required=True, help="Calendar month, YYYY-MM (shop timezone)")
    parser.add_argument("--entity-type", default="orders", help="Entity type (default: orders)")
    parser.add_argument("--output", type=Path, default=None, help="Output path (default: <entity-type>_duplicates_<YYYY-MM>.xlsx)")
    args = parser.parse_args()

    year, month = args.month
    output = args.output or Path(f"{args.entity_type}_duplicates_{year}-{month:02d}.xlsx")

    try:
        window = month_window(year, month)
    except ValueError as e:
        print(f"ERROR: {e}")
        sys.exit(2)

    runtime = bootstrap("export-duplicates")
    try:
        report = runtime.reconciliation_service().analyze(window, entity_type=args.entity_type)
    except SyncError as e:
        print(f"ERROR: Analysis failed: {e.message}")
        sys.exit(2)
    finally:
        runtime.close()

    groups = report.duplicate_groups
    if not groups:
        print("No duplicates found for the fingerprint criteria.")

    rows = write_duplicate_workbook(report, output)
    print(f"Identified {rows} records in {len(groups)} duplicate groups.")
    print(f"Workbook written: {output}")
    sys.exit(0)


if __name__ == "__main__":
    main()
