"""
Tests for duplicate fingerprints and grouping.
"""

from datetime import datetime, timedelta, timezone

from storesync.models.field_values import SourceDocument
from storesync.models.reconciliation_report import SUSPECTED_DUPLICATE, SUSPECTED_ORIGINAL
from storesync.services.fingerprints import find_duplicate_groups, order_details, order_fingerprint
from tests.conftest import order_data

KST = timezone(timedelta(hours=9))


def _order(doc_id, **kwargs):
    return SourceDocument.from_raw(doc_id, order_data(**kwargs))


class TestOrderFingerprint:

    def test_canonical_shape(self):
        assert order_fingerprint(_order("A1")) == "2026-01-10|50000|Kim"

    def test_day_is_taken_in_utc(self):
        # 08:00 on the 11th in Seoul is still the 10th in UTC
        document = _order("A1", when=datetime(2026, 1, 11, 8, 0, tzinfo=KST))
        assert order_fingerprint(document).startswith("2026-01-10|")

    def test_integral_float_total_matches_int(self):
        assert order_fingerprint(_order("A1", total=50000.0)) == order_fingerprint(_order("A2", total=50000))

    def test_name_is_stripped(self):
        assert order_fingerprint(_order("A1", name=" Kim ")) == order_fingerprint(_order("A2", name="Kim"))

    def test_missing_parts(self):
        document = SourceDocument.from_raw("A1", {"status": "pending"})
        assert order_fingerprint(document) == "no-date|0|"

    def test_details(self):
        details = order_details(_order("A1", payment={"status": "paid"}))

        assert details == {
            "branch": "Gangnam",
            "orderer": "Kim",
            "total": 50000,
            "first_item": "Rose bouquet",
            "status": "pending",
            "payment_status": "paid",
            "order_number": "ORD-1",
        }


class TestFindDuplicateGroups:

    def test_groups_of_two_or_more_only(self):
        documents = [
            _order("A1"),
            _order("A2"),
            _order("B1", name="Lee"),
        ]

        groups = find_duplicate_groups("orders", "Gangnam", documents, timestamp_field="orderDate")

        assert len(groups) == 1
        assert groups[0].fingerprint == "2026-01-10|50000|Kim"
        assert groups[0].partition == "Gangnam"
        assert [m.record_id for m in groups[0].members] == ["A1", "A2"]

    def test_earliest_member_is_the_suspected_original(self):
        early = datetime(2026, 1, 10, 1, 0, tzinfo=timezone.utc)
        late = datetime(2026, 1, 10, 5, 0, tzinfo=timezone.utc)
        documents = [_order("Z9", when=late), _order("A1", when=early)]

        group = find_duplicate_groups("orders", "Gangnam", documents, timestamp_field="orderDate")[0]

        assert [m.record_id for m in group.members] == ["A1", "Z9"]
        assert [m.label for m in group.members] == [SUSPECTED_ORIGINAL, SUSPECTED_DUPLICATE]
        assert group.members[0].timestamp == early

    def test_undated_members_sort_last(self):
        documents = [
            SourceDocument.from_raw("U1", {"summary": {"total": 1}, "orderer": {"name": "Kim"}}),
            SourceDocument.from_raw("U2", {"summary": {"total": 1}, "orderer": {"name": "Kim"}}),
        ]

        group = find_duplicate_groups("orders", "all", documents, timestamp_field="orderDate")[0]

        assert [m.record_id for m in group.members] == ["U1", "U2"]
        assert all(m.timestamp is None for m in group.members)

    def test_entity_types_without_fingerprint(self):
        documents = [SourceDocument.from_raw("P1", {"name": "x"}), SourceDocument.from_raw("P2", {"name": "x"})]
        assert find_duplicate_groups("products", "all", documents) == []
