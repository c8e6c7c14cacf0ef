"""
Duplicate Review Workbook
Writes a reconciliation report's fingerprint groups to XLSX for human review.

One row per group member, members ordered oldest first; the first is
labelled "suspected original". Nothing here deletes anything: the reviewer
picks ids to remove by hand.
"""

from pathlib import Path
from typing import Union

import structlog
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from storesync.models.reconciliation_report import SUSPECTED_ORIGINAL, ReconciliationReport

logger = structlog.get_logger(__name__)

# (header, width, member detail key or None for computed cells)
COLUMNS = [
    ("Group", 8, None),
    ("Label", 20, None),
    ("Date", 26, None),
    ("Branch", 16, "branch"),
    ("Orderer", 16, "orderer"),
    ("Total", 12, "total"),
    ("First item", 30, "first_item"),
    ("Status", 12, "status"),
    ("Payment status", 14, "payment_status"),
    ("Order number", 18, "order_number"),
    ("Id", 28, None),
    ("Note", 24, None),
]

HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="2F5496", end_color="2F5496", fill_type="solid")
ORIGINAL_FILL = PatternFill(start_color="E2EFDA", end_color="E2EFDA", fill_type="solid")


def write_duplicate_workbook(report: ReconciliationReport, path: Union[str, Path]) -> int:
    """
    Write every duplicate group in the report to an XLSX file.

    Args:
        report: Analyzed reconciliation report
        path: Output file (overwritten)

    Returns:
        Number of member rows written (0 still writes a header-only sheet)
    """
    wb = Workbook()
    ws = wb.active
    ws.title = f"{report.entity_type} duplicates"[:31]

    ws.append([header for header, _, _ in COLUMNS])
    for index, (_, width, _) in enumerate(COLUMNS, start=1):
        cell = ws.cell(row=1, column=index)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        ws.column_dimensions[get_column_letter(index)].width = width
    ws.freeze_panes = "A2"

    written = 0
    for group_number, group in enumerate(report.duplicate_groups, start=1):
        for member in group.members:
            values = []
            for header, _, key in COLUMNS:
                if key is not None:
                    values.append(member.details.get(key))
                elif header == "Group":
                    values.append(group_number)
                elif header == "Label":
                    values.append(member.label)
                elif header == "Date":
                    values.append(member.timestamp.isoformat() if member.timestamp else "")
                elif header == "Id":
                    values.append(member.record_id)
                else:
                    values.append(f"{group.size} records in group ({group.partition})")
            ws.append(values)
            written += 1

            if member.label == SUSPECTED_ORIGINAL:
                for cell in ws[ws.max_row]:
                    cell.fill = ORIGINAL_FILL

    wb.save(str(path))
    logger.info(
        "duplicate_workbook_written",
        path=str(path),
        groups=len(report.duplicate_groups),
        rows=written,
    )
    return written
