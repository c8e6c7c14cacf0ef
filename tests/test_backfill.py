"""
Tests for the bulk backfill.
"""

from unittest.mock import MagicMock

import pytest

from storesync.exceptions import DocumentStoreError
from storesync.models.field_values import SourceDocument
from storesync.models.table_mappings import INITIALIZED_SENTINEL_ID
from storesync.services.backfill import (
    BackfillService,
    CollectionResult,
    chunked,
    format_backfill_results,
)
from tests.conftest import FakeRowStore


def _stats(document_store, count):
    for day in range(1, count + 1):
        document_store.add("dailyStats", f"2026-01-{day:02d}", {"totalOrderCount": day, "totalRevenue": day * 1000})


class TestChunked:

    def test_splits_with_short_tail(self):
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]

    def test_empty(self):
        assert list(chunked([], 3)) == []


class TestBackfillService:

    def test_copies_collection_in_chunks(self, document_store, row_store):
        _stats(document_store, 5)
        service = BackfillService(document_store, row_store, chunk_size=2)
        progress = []

        results = service.run(["daily_stats"], on_progress=lambda p: progress.append((p.processed, p.percent)))

        result = results["daily_stats"]
        assert result.total == 5
        assert result.succeeded == 5
        assert result.failed == 0
        assert len(row_store.rows("daily_stats")) == 5
        assert row_store.rows("daily_stats")["2026-01-03"]["total_revenue"] == 3000
        assert [len(call["ids"]) for call in row_store.upsert_calls] == [2, 2, 1]
        assert progress == [(2, 40.0), (4, 80.0), (5, 100.0)]

    def test_default_entity_types_come_from_settings(self, document_store, row_store):
        _stats(document_store, 1)
        results = BackfillService(document_store, row_store).run()

        assert list(results) == ["daily_stats"]

    def test_failing_chunk_falls_back_to_single_rows(self, document_store, row_store):
        _stats(document_store, 4)
        row_store.failing_ids.add("2026-01-02")
        service = BackfillService(document_store, row_store, chunk_size=2)

        result = service.run(["daily_stats"])["daily_stats"]

        assert result.succeeded == 3
        assert result.failed == 1
        assert result.failed_ids == ["2026-01-02"]
        assert set(row_store.rows("daily_stats")) == {"2026-01-01", "2026-01-03", "2026-01-04"}

    def test_single_row_fallback_drops_missing_columns(self, document_store):
        _stats(document_store, 2)
        row_store = FakeRowStore(schema={"daily_stats": {"date", "total_order_count", "extra_data"}})
        service = BackfillService(document_store, row_store, chunk_size=10)

        result = service.run(["daily_stats"])["daily_stats"]

        assert result.succeeded == 2
        assert row_store.rows("daily_stats")["2026-01-02"] == {
            "date": "2026-01-02",
            "total_order_count": 2,
            "extra_data": {},
        }

    def test_sentinel_and_incomplete_rows_are_skipped(self, document_store, row_store):
        document_store.add("products", INITIALIZED_SENTINEL_ID, {"createdAt": None})
        document_store.add("products", "P1", {"name": "Tulip", "price": 3000})
        document_store.add("products", "P2", {"price": 1000})

        result = BackfillService(document_store, row_store).run(["products"])["products"]

        assert result.total == 1
        assert result.skipped == 1
        assert list(row_store.rows("products")) == ["P1"]

    def test_duplicate_ids_collapse_to_last_seen(self, row_store):
        document_store = MagicMock()
        document_store.list_all.return_value = [
            SourceDocument.from_raw("P1", {"name": "Old"}),
            SourceDocument.from_raw("P1", {"name": "New"}),
        ]

        result = BackfillService(document_store, row_store).run(["products"])["products"]

        assert result.total == 1
        assert row_store.upsert_calls[0]["ids"] == ["P1"]
        assert row_store.rows("products")["P1"]["name"] == "New"

    def test_collection_failure_does_not_stop_the_run(self, row_store):
        document_store = MagicMock()
        document_store.list_all.side_effect = [
            DocumentStoreError("Failed to read collection 'dailyStats'", table="dailyStats"),
            [SourceDocument.from_raw("P1", {"name": "Tulip"})],
        ]

        results = BackfillService(document_store, row_store).run(["daily_stats", "products"])

        assert results["daily_stats"].error.startswith("Failed to read")
        assert results["products"].succeeded == 1

    def test_empty_collection(self, document_store, row_store):
        progress = []
        result = BackfillService(document_store, row_store).run(["albums"], on_progress=progress.append)["albums"]

        assert result.total == 0
        assert progress == []
        assert row_store.upsert_calls == []

    def test_rerun_is_idempotent(self, document_store, row_store):
        _stats(document_store, 3)
        service = BackfillService(document_store, row_store)

        service.run(["daily_stats"])
        first = {k: dict(v) for k, v in row_store.rows("daily_stats").items()}
        service.run(["daily_stats"])

        assert row_store.rows("daily_stats") == first


class TestFormatBackfillResults:

    @pytest.mark.parametrize("result,expected", [
        (CollectionResult("orders", total=3, succeeded=3), "  orders: 3/3 rows"),
        (CollectionResult("orders", total=3, succeeded=2, failed=1, skipped=2), "  orders: 2/3 rows, 1 failed, 2 skipped"),
        (CollectionResult("orders", error="boom"), "  orders: FAILED (boom)"),
    ])
    def test_lines(self, result, expected):
        assert format_backfill_results({"orders": result}) == expected
