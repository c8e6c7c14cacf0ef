"""
Shared fixtures: in-memory document and row stores.

The fakes implement the same interfaces as the Firestore and Postgres
stores, so services receive them through their constructors exactly as
they receive the real clients.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Set

import pytest

os.environ.setdefault("ENVIRONMENT", "testing")

from storesync.exceptions import RowStoreError  # noqa: E402
from storesync.models.field_values import ChangeEvent, ChangeType, SourceDocument  # noqa: E402
from storesync.services.document_store import DocumentStore, Subscription  # noqa: E402
from storesync.services.row_store import RowFilter, RowStore  # noqa: E402


class FakeSubscription(Subscription):
    def __init__(self, store: "FakeDocumentStore", collection: str):
        self.store = store
        self.collection = collection
        self.closed = False

    def unsubscribe(self) -> None:
        self.closed = True
        self.store.handlers.pop(self.collection, None)


class FakeDocumentStore(DocumentStore):
    """Collections of SourceDocuments plus manually fired watch callbacks."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, SourceDocument]] = {}
        self.handlers: Dict[str, tuple] = {}
        self.failing_watches: Set[str] = set()

    def add(self, collection: str, doc_id: str, data: Dict[str, Any]) -> SourceDocument:
        document = SourceDocument.from_raw(doc_id, data)
        self.collections.setdefault(collection, {})[doc_id] = document
        return document

    def watch(self, collection, on_changes, on_error) -> Subscription:
        if collection in self.failing_watches:
            from storesync.exceptions import DocumentStoreError
            raise DocumentStoreError(f"Failed to watch collection '{collection}'", table=collection)
        self.handlers[collection] = (on_changes, on_error)
        return FakeSubscription(self, collection)

    def emit(self, collection: str, *events: ChangeEvent) -> None:
        """Deliver one snapshot batch to the collection's watch, if any."""
        handler = self.handlers.get(collection)
        if handler is not None:
            handler[0](collection, list(events))

    def fail_watch(self, collection: str, error: BaseException) -> None:
        handler = self.handlers.get(collection)
        if handler is not None:
            handler[1](collection, error)

    def get(self, collection, doc_id) -> Optional[SourceDocument]:
        return self.collections.get(collection, {}).get(doc_id)

    def list_all(self, collection) -> List[SourceDocument]:
        return list(self.collections.get(collection, {}).values())

    def list_window(self, collection, field, start, end) -> List[SourceDocument]:
        result = []
        for document in self.collections.get(collection, {}).values():
            value = document.get(field)
            if isinstance(value, datetime) and start <= value <= end:
                result.append(document)
        return result


_COMPARE = {
    "eq": lambda a, b: a == b,
    "gte": lambda a, b: a >= b,
    "lte": lambda a, b: a <= b,
    "gt": lambda a, b: a > b,
    "lt": lambda a, b: a < b,
}


class FakeRowStore(RowStore):
    """
    Dict-backed tables with Postgres-shaped failures.

    schema: table -> known columns; writing any other column raises the
        Postgres "column ... does not exist" error for the first unknown one
    failing_ids: ids whose presence in an upsert makes the whole call fail
    """

    def __init__(self, schema: Optional[Dict[str, Set[str]]] = None):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.schema = schema or {}
        self.failing_ids: Set[str] = set()
        self.failing_delete_ids: Set[str] = set()
        self.upsert_calls: List[Dict[str, Any]] = []
        self.delete_calls: List[Dict[str, Any]] = []
        self.select_calls: List[Dict[str, Any]] = []

    def rows(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self.tables.get(table, {})

    def put(self, table: str, row: Dict[str, Any], id_column: str = "id") -> None:
        self.tables.setdefault(table, {})[row[id_column]] = dict(row)

    def upsert(self, table: str, rows: Sequence[Dict[str, Any]], id_column: str = "id") -> int:
        self.upsert_calls.append({
            "table": table,
            "ids": [row.get(id_column) for row in rows],
            "columns": [sorted(row) for row in rows],
        })

        for row in rows:
            if row.get(id_column) in self.failing_ids:
                raise RowStoreError(f"rejected row {row.get(id_column)}", table=table, code="XX000")

        known = self.schema.get(table)
        if known is not None:
            for row in rows:
                for column in row:
                    if column not in known:
                        raise RowStoreError(
                            f'column "{column}" of relation "{table}" does not exist',
                            table=table,
                            code="42703",
                        )

        target = self.tables.setdefault(table, {})
        for row in rows:
            existing = target.get(row[id_column], {})
            target[row[id_column]] = {**existing, **row}
        return len(rows)

    def delete_ids(self, table: str, ids: Sequence[str], id_column: str = "id") -> int:
        self.delete_calls.append({"table": table, "ids": list(ids)})
        if any(i in self.failing_delete_ids for i in ids):
            raise RowStoreError("delete rejected", table=table, code="XX000")
        target = self.tables.get(table, {})
        removed = 0
        for record_id in ids:
            if target.pop(record_id, None) is not None:
                removed += 1
        return removed

    def select_page(self, table, filters: Sequence[RowFilter] = (), offset=0, limit=1000, order_by="id"):
        self.select_calls.append({"table": table, "offset": offset, "limit": limit})
        matched = []
        for row in self.tables.get(table, {}).values():
            keep = True
            for f in filters:
                value = row.get(f.column)
                if value is None or not _COMPARE[f.op](value, f.value):
                    keep = False
                    break
            if keep:
                matched.append(dict(row))
        matched.sort(key=lambda row: str(row.get(order_by)))
        return matched[offset:offset + limit]


def added(doc_id: str, data: Dict[str, Any]) -> ChangeEvent:
    return ChangeEvent(ChangeType.ADDED, SourceDocument.from_raw(doc_id, data))


def modified(doc_id: str, data: Dict[str, Any]) -> ChangeEvent:
    return ChangeEvent(ChangeType.MODIFIED, SourceDocument.from_raw(doc_id, data))


def removed(doc_id: str) -> ChangeEvent:
    return ChangeEvent(ChangeType.REMOVED, SourceDocument(id=doc_id))


def order_data(branch="Gangnam", total=50000, name="Kim", status="pending", when=None, number="ORD-1", **extra):
    data = {
        "orderNumber": number,
        "status": status,
        "branchName": branch,
        "orderDate": when or datetime(2026, 1, 10, 3, 0, tzinfo=timezone.utc),
        "orderer": {"name": name, "contact": "010-0000-0000"},
        "summary": {"total": total, "subtotal": total},
        "items": [{"name": "Rose bouquet", "quantity": 1}],
    }
    data.update(extra)
    return data


@pytest.fixture
def document_store():
    return FakeDocumentStore()


@pytest.fixture
def row_store():
    return FakeRowStore()
