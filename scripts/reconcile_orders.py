#!/usr/bin/env python3
"""
Diff Firestore against Postgres for one month and repair drift.

Run: python scripts/reconcile_orders.py --month 2026-01 [--entity-type orders] [--dry-run] [--json-out report.json]

Classifies every record in the window as status mismatch, missing in
Postgres, or ghost in Postgres; prints a per-branch summary; then upserts
mismatched and missing records and deletes ghosts. Probable duplicate
groups are reported only.

Exit codes:
  0 - Run completed (individual write failures are listed in the summary)
  2 - Fatal error (configuration, store connection, bad arguments)
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

try:
    from scripts._bootstrap import bootstrap
    from storesync.exceptions import SyncError
    from storesync.services.reconciliation import format_report, month_window
except ImportError as e:
    print(f"ERROR: Failed to import required modules: {e}")
    print("Make sure you're running from the project root and dependencies are installed.")
    sys.exit(2)


def parse_month(value: str):
    try:
        year, month = value.split("-", 1)
        return int(year), int(month)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM, got '{value}'")


def main():
    """Reconciliation script entry point"""
    parser = argparse.ArgumentParser(description="Reconcile one month of Firestore and Postgres records")
    parser.add_argument("--month", type=parse_month, required=True, help="Calendar month, YYYY-MM (shop timezone)")
    parser.add_argument("--entity-type", default="orders", help="Windowed entity type (default: orders)")
    parser.add_argument("--timezone", default=None, help="Override SHOP_TIMEZONE for the month boundaries")
    parser.add_argument("--dry-run", action="store_true", help="Analyze only; write nothing")
    parser.add_argument("--json-out", type=Path, default=None, help="Also save the report as JSON")
    args = parser.parse_args()

    year, month = args.month
    try:
        window = month_window(year, month, args.timezone)
    except ValueError as e:
        print(f"ERROR: {e}")
        sys.exit(2)

    runtime = bootstrap("reconcile")
    print(f"Reconciling {args.entity_type} for {year}-{month:02d} ({window})...")
    print("")

    try:
        report, corrections = runtime.reconciliation_service().run(
            window, entity_type=args.entity_type, apply=not args.dry_run
        )
    except SyncError as e:
        print(f"ERROR: Reconciliation failed: {e.message}")
        sys.exit(2)
    finally:
        runtime.close()

    print(format_report(report, corrections))

    if args.json_out is not None:
        payload = {
            "report": report.to_dict(),
            "corrections": corrections.to_dict() if corrections is not None else None,
        }
        try:
            with open(args.json_out, "w") as f:
                json.dump(payload, f, indent=2, default=str, ensure_ascii=False)
            print(f"\nJSON report saved to: {args.json_out}")
        except OSError as e:
            print(f"\nWARNING: Failed to save JSON report: {e}")

    if args.dry_run:
        print("\nDry run: no corrections applied")
    sys.exit(0)


if __name__ == "__main__":
    main()
