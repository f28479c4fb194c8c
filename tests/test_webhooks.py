"""
Order webhook tests: signature checks, line item extraction and the receiving endpoints
"""
import json

import pytest

from app.models import InventoryMovement, MovementType, Store, StoreIntegration, StorePlatform
from app.services.credentials import encrypt_credentials
from app.services.order_webhooks import (
    extract_shopify_line_items,
    extract_woocommerce_line_items,
    shopify_order_id,
    sign_webhook_body,
    verify_webhook_hmac,
    woocommerce_event,
    woocommerce_order_id,
)
from conftest import SHOPIFY_API_SECRET, WOO_WEBHOOK_SECRET

SHOPIFY_ORDER = {
    "id": 820982911946154508,
    "order_number": 1001,
    "name": "#1001",
    "email": "buyer@example.com",
    "line_items": [
        {"sku": "A", "quantity": 2, "name": "Shirt"},
        {"sku": None, "variant_id": 4455, "quantity": 1, "title": "Hat"},
        {"sku": "", "quantity": 1},
    ],
}

WOO_ORDER = {
    "id": 727,
    "number": "727",
    "status": "completed",
    "billing": {"email": "buyer@example.com"},
    "line_items": [{"sku": "A", "quantity": 3, "name": "Shirt"}, {"sku": "", "quantity": 1}],
}


class TestSignatures:
    def test_valid_signature(self):
        body = b'{"id": 1}'
        assert verify_webhook_hmac(body, sign_webhook_body(body, "s3cret"), "s3cret")

    def test_wrong_secret_or_tampered_body(self):
        body = b'{"id": 1}'
        header = sign_webhook_body(body, "s3cret")

        assert not verify_webhook_hmac(body, header, "other")
        assert not verify_webhook_hmac(b'{"id": 2}', header, "s3cret")

    @pytest.mark.parametrize("body,header,secret", [
        (b"{}", None, "s3cret"),
        (b"{}", "abc", None),
        (b"", "abc", "s3cret"),
    ])
    def test_missing_parts_fail(self, body, header, secret):
        assert not verify_webhook_hmac(body, header, secret)


class TestExtraction:
    def test_shopify_order_lines(self):
        items = extract_shopify_line_items("orders/paid", SHOPIFY_ORDER)

        assert items == [
            {"sku": "A", "quantity": 2, "name": "Shirt"},
            {"sku": "4455", "quantity": 1, "name": "Hat"},
        ]

    def test_shopify_refund_lines(self):
        payload = {
            "order_id": 99,
            "refund_line_items": [{"quantity": 1, "line_item": {"sku": "A", "quantity": 2, "name": "Shirt"}}],
        }

        assert extract_shopify_line_items("refunds/create", payload) == [{"sku": "A", "quantity": 1, "name": "Shirt"}]
        assert shopify_order_id(payload) == "99"

    def test_malformed_quantity_drops_the_line(self):
        payload = {"line_items": [{"sku": "A", "quantity": "1.5x"}, {"sku": "B", "quantity": 2}]}

        assert extract_shopify_line_items("orders/paid", payload) == [{"sku": "B", "quantity": 2, "name": None}]

    def test_woocommerce_lines(self):
        assert extract_woocommerce_line_items(WOO_ORDER) == [{"sku": "A", "quantity": 3, "name": "Shirt"}]
        assert woocommerce_order_id(WOO_ORDER) == "727"

    @pytest.mark.parametrize("topic,status,expected", [
        ("order.completed", "processing", "order.completed"),
        ("order.updated", "completed", "order.completed"),
        ("order.updated", "refunded", "order.refunded"),
        ("order.updated", "processing", None),
        ("product.updated", "completed", None),
    ])
    def test_woocommerce_event(self, topic, status, expected):
        assert woocommerce_event(topic, {"status": status}) == expected


def shopify_post(api_client, store, payload, topic="orders/paid", secret=SHOPIFY_API_SECRET, signature=None):
    body = json.dumps(payload).encode()
    headers = {
        "X-Shopify-Topic": topic,
        "X-Shopify-Hmac-Sha256": signature or sign_webhook_body(body, secret),
        "Content-Type": "application/json",
    }
    return api_client.post(f"/api/webhooks/shopify/{store.id}", content=body, headers=headers)


class TestShopifyEndpoint:
    def test_paid_order_queues_egreso_per_line(self, api_client, db_session, store, link):
        response = shopify_post(api_client, store, SHOPIFY_ORDER)

        assert response.status_code == 200
        assert response.json() == {"success": True, "queued": 2, "orderId": "820982911946154508"}
        movements = db_session.query(InventoryMovement).order_by(InventoryMovement.sku).all()
        assert [(m.sku, m.quantity, m.movement_type) for m in movements] == [
            ("4455", 1, MovementType.EGRESO),
            ("A", 2, MovementType.EGRESO),
        ]
        assert movements[1].metadata_["originalEvent"]["shopifyOrderName"] == "#1001"

    def test_redelivery_queues_nothing(self, api_client, db_session, store, link):
        shopify_post(api_client, store, SHOPIFY_ORDER)
        response = shopify_post(api_client, store, SHOPIFY_ORDER)

        assert response.json()["queued"] == 0
        assert db_session.query(InventoryMovement).count() == 2

    def test_cancellation_queues_ingreso(self, api_client, db_session, store, link):
        response = shopify_post(api_client, store, {"id": 5, "line_items": [{"sku": "A", "quantity": 1}]}, topic="orders/cancelled")

        assert response.json()["queued"] == 1
        assert db_session.query(InventoryMovement).one().movement_type == MovementType.INGRESO

    def test_bad_signature_is_rejected(self, api_client, db_session, store, link):
        response = shopify_post(api_client, store, SHOPIFY_ORDER, signature="bm90LXRoZS1zaWduYXR1cmU=")

        assert response.status_code == 401
        assert db_session.query(InventoryMovement).count() == 0

    def test_ignored_topic_is_acknowledged(self, api_client, db_session, store, link):
        response = shopify_post(api_client, store, SHOPIFY_ORDER, topic="orders/create")

        assert response.status_code == 200
        assert response.json() == {"message": "Event not supported, ignored"}
        assert db_session.query(InventoryMovement).count() == 0

    def test_unknown_store(self, api_client, store, link):
        body = b"{}"
        response = api_client.post(
            "/api/webhooks/shopify/missing",
            content=body,
            headers={"X-Shopify-Topic": "orders/paid", "X-Shopify-Hmac-Sha256": sign_webhook_body(body, SHOPIFY_API_SECRET)},
        )

        assert response.status_code == 404

    def test_store_without_erp_link(self, api_client, db_session, store):
        response = shopify_post(api_client, store, SHOPIFY_ORDER)

        assert response.status_code == 400
        assert response.json()["detail"] == "Contífico integration not configured"

    def test_order_without_skus(self, api_client, store, link):
        response = shopify_post(api_client, store, {"id": 7, "line_items": [{"quantity": 1}]})

        assert response.json() == {"message": "No items with SKU found, ignored"}


@pytest.fixture
def woo_store(db_session, tenant, integration):
    store = Store(
        tenant_id=tenant.id,
        platform=StorePlatform.WOOCOMMERCE,
        store_name="Acme Woo",
        store_url="https://woo.acme.test",
        api_credentials=encrypt_credentials({
            "consumerKey": "ck_test", "consumerSecret": "cs_test", "webhookSecret": WOO_WEBHOOK_SECRET,
        }),
    )
    db_session.add(store)
    db_session.flush()
    db_session.add(StoreIntegration(store_id=store.id, integration_id=integration.id, is_active=True, sync_config={}))
    db_session.commit()
    return store


def woo_post(api_client, store, payload, topic="order.completed", secret=WOO_WEBHOOK_SECRET):
    body = json.dumps(payload).encode()
    headers = {"X-WC-Webhook-Topic": topic, "X-WC-Webhook-Signature": sign_webhook_body(body, secret)}
    return api_client.post(f"/api/webhooks/woocommerce/{store.id}", content=body, headers=headers)


class TestWooCommerceEndpoint:
    def test_completed_order_queues_egreso(self, api_client, db_session, woo_store):
        response = woo_post(api_client, woo_store, WOO_ORDER)

        assert response.status_code == 200
        assert response.json() == {"success": True, "queued": 1, "orderId": "727"}
        movement = db_session.query(InventoryMovement).one()
        assert (movement.sku, movement.quantity, movement.event_type) == ("A", 3, "order.completed")

    def test_updated_to_refunded_queues_ingreso(self, api_client, db_session, woo_store):
        response = woo_post(api_client, woo_store, dict(WOO_ORDER, status="refunded"), topic="order.updated")

        assert response.json()["queued"] == 1
        assert db_session.query(InventoryMovement).one().movement_type == MovementType.INGRESO

    def test_status_without_stock_effect_is_ignored(self, api_client, db_session, woo_store):
        response = woo_post(api_client, woo_store, dict(WOO_ORDER, status="processing"), topic="order.updated")

        assert response.json() == {"message": "Event not supported, ignored"}
        assert db_session.query(InventoryMovement).count() == 0

    def test_wrong_secret_is_rejected(self, api_client, woo_store):
        assert woo_post(api_client, woo_store, WOO_ORDER, secret="nope").status_code == 401

    def test_ping_is_acknowledged(self, api_client, woo_store):
        response = api_client.post(f"/api/webhooks/woocommerce/{woo_store.id}", content=b"webhook_id=12")

        assert response.status_code == 200
        assert response.json() == {"message": "Ping acknowledged"}

    def test_shopify_route_does_not_accept_woo_store(self, api_client, woo_store):
        assert shopify_post(api_client, woo_store, SHOPIFY_ORDER).status_code == 404
