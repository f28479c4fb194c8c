"""
Order webhook receivers. Public endpoints (no JWT); every request is signature verified
against the store's secret before anything is queued.
"""
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.models import Integration, IntegrationType, Store, StorePlatform, StoreIntegration
from app.services.credentials import get_store_credentials
from app.services.inventory_push_service import InventoryPushService
from app.services.order_webhooks import (
    SHOPIFY_IGNORED_TOPICS,
    SHOPIFY_TOPICS,
    extract_shopify_line_items,
    extract_woocommerce_line_items,
    shopify_order_id,
    verify_webhook_hmac,
    woocommerce_event,
    woocommerce_order_id,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def _get_store(db: Session, store_id: str, platform: StorePlatform) -> Store:
    store = db.query(Store).filter(Store.id == store_id, Store.platform == platform).first()
    if not store:
        logger.warning("Webhook for unknown %s store %s", platform.value, store_id)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")
    return store


def _contifico_link(db: Session, store: Store) -> StoreIntegration:
    link = db.query(StoreIntegration).join(
        Integration, Integration.id == StoreIntegration.integration_id
    ).filter(
        StoreIntegration.store_id == store.id,
        StoreIntegration.is_active.is_(True),
        Integration.integration_type == IntegrationType.CONTIFICO,
    ).order_by(StoreIntegration.created_at).first()
    if not link:
        logger.error("Webhook for store %s: no Contífico integration linked", store.id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Contífico integration not configured")
    return link


def _parse_json(raw_body: bytes) -> dict:
    try:
        payload = json.loads(raw_body.decode("utf-8")) if raw_body else {}
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("Webhook: invalid JSON %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")
    return payload


@router.post("/shopify/{store_id}")
async def shopify_webhook_receive(
    store_id: str,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Shopify order webhooks. Verify X-Shopify-Hmac-Sha256 with the store's API secret,
    then queue one movement per line item.
    Topics: orders/paid (egreso), orders/cancelled and refunds/create (ingreso).
    """
    raw_body = await request.body()
    topic = (request.headers.get("X-Shopify-Topic") or "").strip()
    logger.info("Shopify webhook %s for store %s", topic, store_id)

    if topic not in SHOPIFY_TOPICS:
        if topic in SHOPIFY_IGNORED_TOPICS:
            logger.info("Shopify webhook %s acknowledged and ignored (stock moves on orders/paid)", topic)
        else:
            logger.warning("Shopify webhook topic %s not recognized, ignoring", topic)
        return {"message": "Event not supported, ignored"}

    store = _get_store(db, store_id, StorePlatform.SHOPIFY)
    secret = (get_store_credentials(store).get("apiSecret") or "").strip()
    if not secret:
        logger.error("Shopify webhook for store %s: API secret not configured", store.id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="API Secret not configured")
    if not verify_webhook_hmac(raw_body, request.headers.get("X-Shopify-Hmac-Sha256"), secret):
        logger.warning("Shopify webhook: HMAC verification failed for store=%s topic=%s", store.id, topic)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    link = _contifico_link(db, store)
    payload = _parse_json(raw_body)
    order_id = shopify_order_id(payload)
    if not order_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Order ID not found in payload")

    line_items = extract_shopify_line_items(topic, payload)
    if not line_items:
        logger.info("Shopify webhook: no items with SKU in order %s", order_id)
        return {"message": "No items with SKU found, ignored"}

    queued = InventoryPushService(db).queue_movements_from_webhook(
        store.id,
        order_id,
        topic,
        line_items,
        metadata={
            "shopifyOrderNumber": payload.get("order_number"),
            "shopifyOrderName": payload.get("name"),
            "customerEmail": payload.get("email"),
        },
        integration_id=link.integration_id,
    )
    logger.info("Shopify webhook: %s movement(s) queued for order %s", queued, order_id)

    return {"success": True, "queued": queued, "orderId": order_id}


@router.post("/woocommerce/{store_id}")
async def woocommerce_webhook_receive(
    store_id: str,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    WooCommerce order webhooks. Verify X-WC-Webhook-Signature with the store's webhook secret,
    then queue one movement per line item.
    Events: order.completed (egreso), order.cancelled and order.refunded (ingreso).
    """
    raw_body = await request.body()
    topic = (request.headers.get("X-WC-Webhook-Topic") or request.headers.get("X-WC-Webhook-Event") or "").strip()
    if not topic:
        # Delivery ping sent when the webhook is created
        logger.info("WooCommerce webhook ping for store %s", store_id)
        return {"message": "Ping acknowledged"}

    store = _get_store(db, store_id, StorePlatform.WOOCOMMERCE)
    secret = (get_store_credentials(store).get("webhookSecret") or "").strip()
    if not secret:
        logger.error("WooCommerce webhook for store %s: webhook secret not configured", store.id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook Secret not configured")
    if not verify_webhook_hmac(raw_body, request.headers.get("X-WC-Webhook-Signature"), secret):
        logger.warning("WooCommerce webhook: signature verification failed for store=%s topic=%s", store.id, topic)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    payload = _parse_json(raw_body)
    event = woocommerce_event(topic, payload)
    if event is None:
        logger.info("WooCommerce webhook %s (status %s) ignored", topic, payload.get("status"))
        return {"message": "Event not supported, ignored"}

    link = _contifico_link(db, store)
    order_id = woocommerce_order_id(payload)
    if not order_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Order ID not found in payload")

    line_items = extract_woocommerce_line_items(payload)
    if not line_items:
        logger.info("WooCommerce webhook: no items with SKU in order %s", order_id)
        return {"message": "No items with SKU found, ignored"}

    queued = InventoryPushService(db).queue_movements_from_webhook(
        store.id,
        order_id,
        event,
        line_items,
        metadata={
            "wooOrderNumber": payload.get("number"),
            "customerEmail": (payload.get("billing") or {}).get("email"),
            "status": payload.get("status"),
        },
        integration_id=link.integration_id,
    )
    logger.info("WooCommerce webhook: %s movement(s) queued for order %s", queued, order_id)

    return {"success": True, "queued": queued, "orderId": order_id}
