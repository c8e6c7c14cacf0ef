"""
Tests for ReconciliationService.

Covers:
- month window bounds in the shop timezone
- classification: status mismatch, missing, ghost, consistent
- per-partition counts and duplicate groups
- corrections: upsert, ghost confirmation and batched deletes
- failure isolation and re-run idempotence
"""

from datetime import datetime, timezone

import pytest

from storesync.exceptions import SyncError
from storesync.models.field_values import SourceDocument
from storesync.models.reconciliation_report import ReconciliationWindow
from storesync.services.field_mapper import map_entity_to_row
from storesync.services.reconciliation import ReconciliationService, format_report, month_window
from tests.conftest import order_data

JANUARY = month_window(2026, 1, "Asia/Seoul")


def at(day, hour=3):
    return datetime(2026, 1, day, hour, 0, tzinfo=timezone.utc)


def mirror(row_store, doc_id, data):
    row_store.put("orders", map_entity_to_row("orders", SourceDocument.from_raw(doc_id, data)))


def source(document_store, doc_id, data):
    document_store.add("orders", doc_id, data)
    return data


@pytest.fixture
def service(document_store, row_store):
    return ReconciliationService(document_store, row_store, page_size=1000, ghost_batch_size=200, max_retries=6)


@pytest.fixture
def scenario(document_store, row_store):
    """
    Gangnam, January 2026:
        A1 in source only, B2 in destination only, C3 status differs,
        D4 consistent, E5/E6 probable duplicates (both mirrored).
    Unknown branch: U1 consistent.
    """
    source(document_store, "A1", order_data(name="Park", when=at(3)))

    mirror(row_store, "B2", order_data(name="Choi", when=at(4)))

    c3 = source(document_store, "C3", order_data(name="Jung", when=at(5), status="completed"))
    mirror(row_store, "C3", {**c3, "status": "pending"})

    mirror(row_store, "D4", source(document_store, "D4", order_data(name="Han", when=at(6))))

    mirror(row_store, "E5", source(document_store, "E5", order_data(name="Lee", total=30000, when=at(7, 1))))
    mirror(row_store, "E6", source(document_store, "E6", order_data(name="Lee", total=30000.0, when=at(7, 9))))

    mirror(row_store, "U1", source(document_store, "U1", order_data(branch=None, name="Yoon", when=at(8))))


class TestMonthWindow:

    def test_seoul_january(self):
        assert JANUARY.start == datetime(2025, 12, 31, 15, 0, tzinfo=timezone.utc)
        assert JANUARY.end == datetime(2026, 1, 31, 14, 59, 59, 999999, tzinfo=timezone.utc)

    def test_december_rolls_into_next_year(self):
        window = month_window(2025, 12, "Asia/Seoul")
        assert window.end == datetime(2025, 12, 31, 14, 59, 59, 999999, tzinfo=timezone.utc)

    def test_invalid_month(self):
        with pytest.raises(ValueError):
            month_window(2026, 13)

    def test_window_requires_aware_bounds(self):
        with pytest.raises(ValueError):
            ReconciliationWindow(datetime(2026, 1, 1), datetime(2026, 2, 1))

    def test_window_rejects_reversed_bounds(self):
        with pytest.raises(ValueError):
            ReconciliationWindow(at(5), at(4))


@pytest.mark.usefixtures("scenario")
class TestAnalyze:

    def test_classification(self, service):
        report = service.analyze(JANUARY, "orders")

        assert report.missing_ids == ["A1"]
        assert report.ghost_ids == ["B2"]
        assert report.mismatch_ids == ["C3"]
        mismatch = report.partitions["Gangnam"].status_mismatches[0]
        assert (mismatch.source_status, mismatch.destination_status) == ("completed", "pending")

    def test_classes_are_mutually_exclusive(self, service):
        report = service.analyze(JANUARY, "orders")
        ids = report.missing_ids + report.ghost_ids + report.mismatch_ids

        assert len(ids) == len(set(ids))
        assert "D4" not in ids

    def test_partition_counts(self, service):
        report = service.analyze(JANUARY, "orders")

        gangnam = report.partitions["Gangnam"]
        assert gangnam.source_count == 5
        assert gangnam.destination_count == 5
        unknown = report.partitions["Unknown"]
        assert (unknown.source_count, unknown.destination_count) == (1, 1)
        assert unknown.is_clean

    def test_duplicate_group(self, service):
        report = service.analyze(JANUARY, "orders")

        [group] = report.duplicate_groups
        assert group.fingerprint == "2026-01-07|30000|Lee"
        assert group.partition == "Gangnam"
        assert [(m.record_id, m.label) for m in group.members] == [
            ("E5", "suspected original"),
            ("E6", "suspected duplicate"),
        ]

    def test_records_outside_the_window_are_ignored(self, service, document_store, row_store):
        source(document_store, "F1", order_data(name="Kang", when=datetime(2026, 2, 10, tzinfo=timezone.utc)))
        mirror(row_store, "F2", order_data(name="Kang", when=datetime(2025, 12, 20, tzinfo=timezone.utc)))

        report = service.analyze(JANUARY, "orders")

        assert "F1" not in report.missing_ids
        assert "F2" not in report.ghost_ids

    def test_sentinel_is_ignored(self, service, document_store):
        source(document_store, "_initialized", {"orderDate": at(2)})
        report = service.analyze(JANUARY, "orders")

        assert "_initialized" not in report.missing_ids

    def test_entity_without_date_field(self, service):
        with pytest.raises(SyncError):
            service.analyze(JANUARY, "products")

    def test_dry_run_writes_nothing(self, service, row_store):
        report, corrections = service.run(JANUARY, "orders", apply=False)

        assert corrections is None
        assert report.needs_correction
        assert row_store.upsert_calls == []
        assert row_store.delete_calls == []


@pytest.mark.usefixtures("scenario")
class TestCorrections:

    def test_apply_repairs_drift(self, service, row_store):
        _, corrections = service.run(JANUARY, "orders")

        assert sorted(corrections.upserted) == ["A1", "C3"]
        assert corrections.deleted == ["B2"]
        assert corrections.upsert_failed == []
        assert corrections.delete_failed == []

        rows = row_store.rows("orders")
        assert "A1" in rows
        assert "B2" not in rows
        assert rows["C3"]["status"] == "completed"

    def test_duplicates_are_never_deleted(self, service, row_store):
        service.run(JANUARY, "orders")
        assert {"E5", "E6"} <= set(row_store.rows("orders"))

    def test_second_run_finds_nothing_to_correct(self, service, row_store):
        service.run(JANUARY, "orders")
        calls = (len(row_store.upsert_calls), len(row_store.delete_calls))

        report, corrections = service.run(JANUARY, "orders")

        assert not report.needs_correction
        assert corrections.is_empty
        assert (len(row_store.upsert_calls), len(row_store.delete_calls)) == calls
        assert len(report.duplicate_groups) == 1

    def test_ghost_that_moved_out_of_the_window_is_re_mirrored(self, service, document_store, row_store):
        mirror(row_store, "G7", order_data(name="Seo", when=at(9)))
        source(document_store, "G7", order_data(name="Seo", when=datetime(2026, 2, 3, tzinfo=timezone.utc)))

        _, corrections = service.run(JANUARY, "orders")

        assert "G7" in corrections.upserted
        assert "G7" not in corrections.deleted
        assert row_store.rows("orders")["G7"]["order_date"].startswith("2026-02-03")

    def test_status_removed_at_source_is_cleared_once(self, service, document_store, row_store):
        data = order_data(name="Oh", when=at(11))
        mirror(row_store, "S1", data)
        del data["status"]
        source(document_store, "S1", data)

        first, corrections = service.run(JANUARY, "orders")
        assert [m.record_id for m in first.partitions["Gangnam"].status_mismatches] == ["S1"]
        assert "S1" in corrections.upserted
        assert row_store.rows("orders")["S1"]["status"] is None

        second, corrections = service.run(JANUARY, "orders")
        assert second.mismatch_ids == []
        assert corrections.is_empty

    def test_failed_upsert_is_isolated(self, service, row_store):
        row_store.failing_ids.add("A1")

        _, corrections = service.run(JANUARY, "orders")

        assert corrections.upsert_failed == ["A1"]
        assert corrections.upserted == ["C3"]
        assert corrections.deleted == ["B2"]


class TestPagingAndBatching:

    def test_destination_is_read_page_by_page(self, document_store, row_store):
        for n in range(5):
            mirror(row_store, f"R{n}", source(document_store, f"R{n}", order_data(name=f"N{n}", when=at(10))))
        service = ReconciliationService(document_store, row_store, page_size=2)

        report = service.analyze(JANUARY, "orders")

        assert [call["offset"] for call in row_store.select_calls] == [0, 2, 4]
        assert report.partitions["Gangnam"].destination_count == 5
        assert not report.needs_correction

    def test_ghosts_are_deleted_in_batches(self, document_store, row_store):
        for n in range(5):
            mirror(row_store, f"G{n}", order_data(name=f"N{n}", when=at(11)))
        service = ReconciliationService(document_store, row_store, ghost_batch_size=2)

        _, corrections = service.run(JANUARY, "orders")

        assert [len(call["ids"]) for call in row_store.delete_calls] == [2, 2, 1]
        assert len(corrections.deleted) == 5
        assert row_store.rows("orders") == {}

    def test_failed_delete_batch_does_not_stop_the_rest(self, document_store, row_store):
        for n in range(5):
            mirror(row_store, f"G{n}", order_data(name=f"N{n}", when=at(11)))
        row_store.failing_delete_ids.add("G1")
        service = ReconciliationService(document_store, row_store, ghost_batch_size=2)

        _, corrections = service.run(JANUARY, "orders")

        assert corrections.delete_failed == ["G0", "G1"]
        assert corrections.deleted == ["G2", "G3", "G4"]
        assert set(row_store.rows("orders")) == {"G0", "G1"}


@pytest.mark.usefixtures("scenario")
class TestFormatReport:

    def test_summary_lines(self, service):
        report, corrections = service.run(JANUARY, "orders")
        text = format_report(report, corrections)

        assert "[Gangnam]" in text
        assert "missing in destination: 1 ids: A1" in text
        assert "ghosts in destination: 1 ids: B2" in text
        assert "C3: source='completed' destination='pending'" in text
        assert "E5 (suspected original), E6 (suspected duplicate)" in text
        assert "[Unknown]" in text
        assert "Corrections: upserted 2, deleted 1" in text

    def test_report_to_dict(self, service):
        report = service.analyze(JANUARY, "orders")
        data = report.to_dict()

        assert data["window"]["start"] == "2025-12-31T15:00:00+00:00"
        assert data["partitions"]["Gangnam"]["missing_in_destination"] == ["A1"]
        assert list(data["partitions"]) == ["Gangnam", "Unknown"]

    def test_numeric_partition_values_sort_with_names(self, service, document_store, row_store):
        mirror(row_store, "N1", source(document_store, "N1", order_data(branch=7, name="Ko", when=at(13))))

        report, corrections = service.run(JANUARY, "orders")

        assert list(report.to_dict()["partitions"]) == ["7", "Gangnam", "Unknown"]
        assert "[7]" in format_report(report, corrections)


class TestProbableDuplicates:

    def test_same_day_total_and_name_group_without_deletes(self, service, document_store, row_store):
        mirror(row_store, "K1", source(document_store, "K1", order_data(when=at(12, 2))))
        mirror(row_store, "K2", source(document_store, "K2", order_data(when=at(12, 6), number="ORD-2")))

        report, corrections = service.run(JANUARY, "orders")

        [group] = report.partitions["Gangnam"].duplicate_groups
        assert group.fingerprint == "2026-01-12|50000|Kim"
        assert group.size == 2
        assert corrections.is_empty
        assert row_store.delete_calls == []
        assert set(row_store.rows("orders")) == {"K1", "K2"}
