"""
HTTP API tests
"""
from datetime import timedelta

import pytest

from app.models import (
    Integration,
    IntegrationType,
    InventoryMovement,
    MovementStatus,
    MovementType,
    SyncLock,
    Tenant,
    UnmappedSku,
    utcnow,
)
from app.services.integration_settings import parse_integration_settings
from conftest import product


@pytest.fixture
def catalog(erp, store_client):
    erp.stock.update({"A": 10, "B": 3})
    store_client.products.update({"A": product("A", 5), "B": product("B", 3)})


class TestPullEndpoints:
    def test_pull_returns_counts(self, api_client, store, integration, link, catalog, store_client):
        response = api_client.post(f"/api/sync/pull/{store.id}/{integration.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["dryRun"] is False
        assert body["result"] == {"success": 1, "failed": 0, "skipped": 1, "errors": []}
        assert store_client.writes == [("A", 10)]

    def test_dry_run_does_not_write(self, api_client, store, integration, link, catalog, store_client):
        response = api_client.post(f"/api/sync/pull/{store.id}/{integration.id}", json={"dryRun": True})

        assert response.json()["dryRun"] is True
        assert store_client.writes == []

    def test_selective_pull(self, api_client, store, integration, link, catalog, store_client):
        response = api_client.post(
            f"/api/sync/pull-selective/{store.id}/{integration.id}", json={"skus": ["A"]}
        )

        assert response.status_code == 200
        assert response.json()["result"]["success"] == 1
        assert store_client.writes == [("A", 10)]

    def test_selective_pull_requires_skus(self, api_client, store, integration, link):
        response = api_client.post(f"/api/sync/pull-selective/{store.id}/{integration.id}", json={"skus": [" "]})

        assert response.status_code == 400

    def test_pull_in_progress_is_conflict(self, api_client, db_session, store, integration, link, catalog):
        db_session.add(SyncLock(
            store_id=store.id, integration_id=integration.id, lock_type="pull",
            process_id="other", expires_at=utcnow() + timedelta(minutes=5),
        ))
        db_session.commit()

        response = api_client.post(f"/api/sync/pull/{store.id}/{integration.id}")

        assert response.status_code == 409

    def test_unreachable_erp_is_bad_gateway(self, api_client, store, integration, link, catalog, erp):
        erp.unavailable = True

        response = api_client.post(f"/api/sync/pull/{store.id}/{integration.id}")

        assert response.status_code == 502

    def test_other_tenant_integration_is_not_found(self, api_client, db_session, store, link, catalog):
        other = Tenant(name="Other")
        db_session.add(other)
        db_session.flush()
        foreign = Integration(tenant_id=other.id, integration_type=IntegrationType.CONTIFICO, name="x", settings={})
        db_session.add(foreign)
        db_session.commit()

        response = api_client.post(f"/api/sync/pull/{store.id}/{foreign.id}")

        assert response.status_code == 404

    def test_logs_after_pull(self, api_client, store, integration, link, catalog):
        api_client.post(f"/api/sync/pull/{store.id}/{integration.id}")

        logs = api_client.get(f"/api/sync/logs/{store.id}", params={"syncType": "pull"}).json()["logs"]
        detail = api_client.get(f"/api/sync/logs/detail/{logs[0]['id']}").json()["log"]

        assert len(logs) == 1
        assert logs[0]["status"] == "success"
        assert {item["sku"] for item in detail["items"]} == {"A", "B"}

    def test_requires_authentication(self, api_client, store, integration, link):
        from app.auth import get_current_user
        from main import app

        app.dependency_overrides.pop(get_current_user)

        response = api_client.post(f"/api/sync/pull/{store.id}/{integration.id}")

        assert response.status_code == 401


class TestStoreEndpoints:
    def test_sync_status(self, api_client, db_session, store, integration, link, catalog):
        api_client.post(f"/api/sync/pull/{store.id}/{integration.id}")

        body = api_client.get(f"/api/stores/{store.id}/products/sync-status").json()

        assert {p["sku"]: p["status"] for p in body["products"]} == {"A": "synced", "B": "synced"}
        assert body["lastSyncAt"] is not None

    def test_sync_status_rejects_unknown_filter(self, api_client, store):
        response = api_client.get(f"/api/stores/{store.id}/products/sync-status", params={"status": "weird"})

        assert response.status_code == 400

    def test_link_lifecycle(self, api_client, store, integration):
        url = f"/api/stores/{store.id}/integrations/{integration.id}"

        created = api_client.post(url, json={"syncConfig": {"pull": {"enabled": True, "interval": "daily"}}})
        duplicate = api_client.post(url, json={})
        updated = api_client.put(url, json={"isActive": False})

        assert created.status_code == 201
        assert created.json()["syncConfig"]["pull"]["interval"] == "daily"
        assert duplicate.status_code == 409
        assert updated.json()["isActive"] is False
        assert api_client.get(url).json()["isActive"] is False

    def test_invalid_sync_config(self, api_client, store, integration, link):
        response = api_client.put(
            f"/api/stores/{store.id}/integrations/{integration.id}",
            json={"syncConfig": {"schedule": {"activeHours": {"start": "9am", "end": "5pm"}}}},
        )

        assert response.status_code == 400


class TestIntegrationEndpoints:
    def test_settings_never_expose_keys(self, api_client, integration):
        body = api_client.get(f"/api/integrations/{integration.id}").json()

        assert body["settings"]["apiKeys"] == {"test": True, "prod": False}
        assert "test-api-key" not in str(body)

    def test_update_settings_keeps_existing_key(self, api_client, db_session, integration):
        response = api_client.put(
            f"/api/integrations/{integration.id}/settings",
            json={"warehousePrimary": "WH-9"},
        )

        assert response.status_code == 200
        db_session.expire_all()
        stored = parse_integration_settings(db_session.get(Integration, integration.id).settings)
        assert stored.api_key == "test-api-key"
        assert stored.warehouse_primary == "WH-9"

    def test_update_settings_requires_key_for_env(self, api_client, integration):
        response = api_client.put(f"/api/integrations/{integration.id}/settings", json={"env": "prod"})

        assert response.status_code == 400

    def test_connection_and_warehouses(self, api_client, integration, erp):
        assert api_client.get(f"/api/integrations/{integration.id}/test-connection").json()["success"] is True
        assert api_client.get(f"/api/integrations/{integration.id}/warehouses").json()["warehouses"][0]["id"] == "WH-1"

    def test_warehouses_when_erp_down(self, api_client, integration, erp):
        erp.unavailable = True

        assert api_client.get(f"/api/integrations/{integration.id}/warehouses").status_code == 502


class TestInventoryEndpoints:
    @pytest.fixture
    def failed_movement(self, db_session, store, integration, link):
        movement = InventoryMovement(
            tenant_id=store.tenant_id, store_id=store.id, integration_id=integration.id, order_id="9",
            sku="A", quantity=1, movement_type=MovementType.EGRESO, event_type="orders/paid",
            status=MovementStatus.FAILED, attempts=3, max_attempts=3, error_message="boom",
        )
        db_session.add(movement)
        db_session.commit()
        return movement

    def test_list_and_stats(self, api_client, failed_movement):
        listing = api_client.get("/api/inventory/movements", params={"status": "failed"}).json()
        stats = api_client.get("/api/inventory/movements/stats").json()["stats"]

        assert [m["id"] for m in listing["movements"]] == [failed_movement.id]
        assert stats["failed"] == 1

    def test_retry_failed_movement(self, api_client, failed_movement):
        response = api_client.post(f"/api/inventory/movements/{failed_movement.id}/retry")

        assert response.status_code == 200
        assert response.json()["movement"]["status"] == "pending"
        assert response.json()["movement"]["attempts"] == 0

    def test_retry_pending_movement_is_rejected(self, api_client, db_session, failed_movement):
        failed_movement.status = MovementStatus.PENDING
        db_session.commit()

        assert api_client.post(f"/api/inventory/movements/{failed_movement.id}/retry").status_code == 400

    def test_retry_unknown_movement(self, api_client):
        assert api_client.post("/api/inventory/movements/missing/retry").status_code == 404

    def test_unmapped_skus(self, api_client, db_session, store):
        row = UnmappedSku(tenant_id=store.tenant_id, store_id=store.id, sku="GHOST", product_name="Ghost")
        db_session.add(row)
        db_session.commit()

        listed = api_client.get("/api/inventory/unmapped-skus").json()
        resolved = api_client.post(f"/api/inventory/unmapped-skus/{row.id}/resolve").json()
        after = api_client.get("/api/inventory/unmapped-skus").json()

        assert listed["total"] == 1
        assert resolved["unmappedSku"]["resolved"] is True
        assert after["total"] == 0


class TestWorkerEndpoints:
    def test_status(self, api_client):
        workers = api_client.get("/api/workers/status").json()["workers"]

        assert set(workers) == {"inventory_push", "scheduled_pull"}

    def test_manual_push_run(self, api_client, monkeypatch):
        from app.workers.scheduler import scheduler

        async def fake_cycle():
            return {"success": True, "message": "Processed 0 movement(s)", "processed": 0}

        monkeypatch.setitem(scheduler.workers["inventory_push"], "func", fake_cycle)

        response = api_client.post("/api/workers/inventory-push/run")

        assert response.status_code == 200
        assert response.json()["result"]["processed"] == 0


def test_health(api_client):
    body = api_client.get("/health").json()

    assert body["db"] == "ok"
    assert body["status"] == "ok"
