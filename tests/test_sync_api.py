"""
Tests for the sync API endpoints.

The app's startup hook is not run; each test installs a runtime built from
in-memory stores on app.state.
"""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from storesync.main import app
from storesync.runtime import SyncRuntime
from storesync.services.change_bridge import ChangeMirrorBridge
from tests.conftest import order_data


@pytest.fixture
def runtime(document_store, row_store):
    bridge = ChangeMirrorBridge(document_store, row_store, entity_types=["orders"])
    runtime = SyncRuntime(document_store=document_store, row_store=row_store, bridge=bridge)
    app.state.runtime = runtime
    yield runtime
    runtime.close()
    app.state.runtime = None


@pytest.fixture
def client():
    return TestClient(app)


class TestHealth:

    def test_degraded_without_runtime(self, client):
        app.state.runtime = None
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["services"]["stores"] == "not_configured"

    def test_healthy_with_runtime(self, client, runtime):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["services"]["bridge"] == "stopped"

    def test_sync_endpoints_need_runtime(self, client):
        app.state.runtime = None
        assert client.get("/api/v1/sync/bridge").status_code == 503


class TestBridgeEndpoints:

    def test_start_status_stop(self, client, runtime):
        started = client.post("/api/v1/sync/bridge/start").json()
        assert started["running"] is True
        assert started["collections"]["orders"]["state"] == "subscribed"

        status = client.get("/api/v1/sync/bridge").json()
        assert status["session_id"] == started["session_id"]

        stopped = client.post("/api/v1/sync/bridge/stop").json()
        assert stopped["running"] is False
        assert stopped["collections"]["orders"]["state"] == "stopped"


class TestBackfillEndpoint:

    def test_runs_requested_collections(self, client, runtime, document_store, row_store):
        document_store.add("dailyStats", "2026-01-05", {"totalOrderCount": 3})

        response = client.post("/api/v1/sync/backfill", json={"entity_types": ["daily_stats"]})

        assert response.status_code == 200
        result = response.json()["results"]["daily_stats"]
        assert result["succeeded"] == 1
        assert "2026-01-05" in row_store.rows("daily_stats")


class TestReconcileEndpoint:

    def test_month_run_applies_corrections(self, client, runtime, document_store, row_store):
        document_store.add("orders", "A1", order_data())

        response = client.post("/api/v1/sync/reconcile", json={"year": 2026, "month": 1})

        assert response.status_code == 200
        body = response.json()
        assert body["report"]["partitions"]["Gangnam"]["missing_in_destination"] == ["A1"]
        assert body["corrections"]["upserted"] == 1
        assert "A1" in row_store.rows("orders")
        assert "Reconciliation: orders" in body["summary"]

    def test_explicit_range_dry_run(self, client, runtime, document_store, row_store):
        document_store.add("orders", "A1", order_data())

        response = client.post("/api/v1/sync/reconcile", json={
            "start": datetime(2026, 1, 1, tzinfo=timezone.utc).isoformat(),
            "end": datetime(2026, 1, 31, tzinfo=timezone.utc).isoformat(),
            "apply": False,
        })

        assert response.status_code == 200
        assert response.json()["corrections"] is None
        assert row_store.rows("orders") == {}

    def test_window_is_required(self, client, runtime):
        assert client.post("/api/v1/sync/reconcile", json={"entity_type": "orders"}).status_code == 422

    def test_naive_range_is_rejected(self, client, runtime):
        response = client.post("/api/v1/sync/reconcile", json={
            "start": "2026-01-01T00:00:00",
            "end": "2026-01-31T00:00:00",
        })
        assert response.status_code == 422

    def test_unknown_entity_type(self, client, runtime):
        response = client.post("/api/v1/sync/reconcile", json={"entity_type": "invoices", "year": 2026, "month": 1})
        assert response.status_code == 400

    def test_entity_without_date_field(self, client, runtime):
        response = client.post("/api/v1/sync/reconcile", json={"entity_type": "products", "year": 2026, "month": 1})
        assert response.status_code == 502
