"""
Duplicate Fingerprints

A fingerprint is a derived, non-unique key used only to group probable
duplicates inside one partition. Collisions are evidence for a human
reviewer, never proof; nothing is deleted on a fingerprint match.

Canonical definitions, one per entity type:
    orders: YYYY-MM-DD (order date, UTC day) | summary.total | orderer.name
"""

from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from storesync.models.field_values import SourceDocument
from storesync.models.reconciliation_report import (
    SUSPECTED_DUPLICATE,
    SUSPECTED_ORIGINAL,
    DuplicateGroup,
    DuplicateMember,
)

NO_DATE = "no-date"

Fingerprinter = Callable[[SourceDocument], str]


def _nested(document: SourceDocument, field_name: str, key: str) -> Any:
    value = document.get(field_name)
    if isinstance(value, dict):
        return value.get(key)
    return None


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _format_total(total: Any) -> str:
    if total is None:
        return "0"
    # 50000 and 50000.0 must collide
    if isinstance(total, float) and total.is_integer():
        return str(int(total))
    return str(total)


def order_fingerprint(document: SourceDocument) -> str:
    moment = _as_datetime(document.get("orderDate"))
    day = moment.astimezone(timezone.utc).date().isoformat() if moment else NO_DATE
    total = _format_total(_nested(document, "summary", "total"))
    name = (_nested(document, "orderer", "name") or "").strip()
    return f"{day}|{total}|{name}"


def order_details(document: SourceDocument) -> Dict[str, Any]:
    items = document.get("items")
    first_item = items[0].get("name") if isinstance(items, list) and items and isinstance(items[0], dict) else None
    return {
        "branch": document.get("branchName"),
        "orderer": _nested(document, "orderer", "name"),
        "total": _nested(document, "summary", "total"),
        "first_item": first_item,
        "status": document.get("status"),
        "payment_status": _nested(document, "payment", "status"),
        "order_number": document.get("orderNumber"),
    }


FINGERPRINTERS: Dict[str, Fingerprinter] = {
    "orders": order_fingerprint,
}

DETAIL_EXTRACTORS: Dict[str, Callable[[SourceDocument], Dict[str, Any]]] = {
    "orders": order_details,
}


def get_fingerprinter(entity_type: str) -> Optional[Fingerprinter]:
    """Fingerprint function for an entity type, or None when duplicates are not analyzed for it."""
    return FINGERPRINTERS.get(entity_type)


def find_duplicate_groups(
    entity_type: str,
    partition: str,
    documents: Iterable[SourceDocument],
    timestamp_field: Optional[str] = None,
) -> List[DuplicateGroup]:
    """
    Group one partition's documents by fingerprint; keep groups of two or more.

    Members are sorted by timestamp ascending (undated last) and the
    earliest is labelled "suspected original". The label is advisory.
    """
    fingerprint = get_fingerprinter(entity_type)
    if fingerprint is None:
        return []
    details = DETAIL_EXTRACTORS.get(entity_type, lambda document: {})

    buckets: "OrderedDict[str, List[SourceDocument]]" = OrderedDict()
    for document in documents:
        buckets.setdefault(fingerprint(document), []).append(document)

    groups = []
    for key, members in buckets.items():
        if len(members) < 2:
            continue

        dated = [
            (_as_datetime(document.get(timestamp_field)) if timestamp_field else None, document)
            for document in members
        ]
        dated.sort(key=lambda pair: (pair[0] is None, pair[0] or datetime.min.replace(tzinfo=timezone.utc), pair[1].id))

        group = DuplicateGroup(fingerprint=key, partition=partition)
        for index, (moment, document) in enumerate(dated):
            group.members.append(DuplicateMember(
                record_id=document.id,
                timestamp=moment,
                label=SUSPECTED_ORIGINAL if index == 0 else SUSPECTED_DUPLICATE,
                details=details(document),
            ))
        groups.append(group)

    return groups
