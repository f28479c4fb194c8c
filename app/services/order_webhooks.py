"""
Store order webhooks: signature verification and line item extraction.
Shopify and WooCommerce both sign with base64(HMAC-SHA256(raw_body, secret)).
"""
import base64
import hashlib
import hmac
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

SHOPIFY_TOPICS = {"orders/paid", "orders/cancelled", "refunds/create"}
# Stock already moves on orders/paid; these would double count
SHOPIFY_IGNORED_TOPICS = {"orders/create", "orders/updated", "inventory_levels/update"}

WOOCOMMERCE_EVENTS = {"order.completed", "order.cancelled", "order.refunded"}
WOOCOMMERCE_STATUS_EVENTS = {
    "completed": "order.completed",
    "cancelled": "order.cancelled",
    "refunded": "order.refunded",
}


def verify_webhook_hmac(body: bytes, hmac_header: Optional[str], secret: Optional[str]) -> bool:
    """
    Verify a webhook signature header: base64(HMAC-SHA256(raw_body, secret)) == header.
    """
    if not secret or not hmac_header or not body:
        return False
    computed_b64 = sign_webhook_body(body, secret)
    return hmac.compare_digest(computed_b64, hmac_header.strip())


def sign_webhook_body(body: bytes, secret: str) -> str:
    return base64.b64encode(hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()).decode("utf-8")


def _line_item(sku: Any, quantity: Any, name: Optional[str]) -> Optional[dict]:
    sku = str(sku).strip() if sku is not None else ""
    if not sku:
        return None
    try:
        qty = int(quantity or 1)
    except (TypeError, ValueError):
        logger.warning("Invalid quantity %r for SKU %s, skipping line", quantity, sku)
        return None
    return {"sku": sku, "quantity": qty, "name": name}


def extract_shopify_line_items(topic: str, payload: dict) -> list[dict]:
    """
    Order line items as [{sku, quantity, name}]. A line without SKU falls back to its
    variant id; lines with neither are dropped. Refunds carry refund_line_items.
    """
    items = []
    if topic == "refunds/create":
        for refund_line in payload.get("refund_line_items") or []:
            line = refund_line.get("line_item") or {}
            item = _line_item(
                line.get("sku") or line.get("variant_id"),
                refund_line.get("quantity") or line.get("quantity"),
                line.get("name") or line.get("title"),
            )
            if item:
                items.append(item)
        return items
    for line in payload.get("line_items") or []:
        item = _line_item(line.get("sku") or line.get("variant_id"), line.get("quantity"), line.get("name") or line.get("title"))
        if item:
            items.append(item)
    return items


def extract_woocommerce_line_items(payload: dict) -> list[dict]:
    items = []
    for line in payload.get("line_items") or []:
        item = _line_item(line.get("sku"), line.get("quantity"), line.get("name"))
        if item:
            items.append(item)
    return items


def shopify_order_id(payload: dict) -> Optional[str]:
    oid = payload.get("id") or payload.get("order_id")
    return str(oid) if oid is not None else None


def woocommerce_order_id(payload: dict) -> Optional[str]:
    oid = payload.get("id") or payload.get("number")
    return str(oid) if oid is not None else None


def woocommerce_event(topic: Optional[str], payload: dict) -> Optional[str]:
    """
    Map a WooCommerce webhook to a movement event. Explicit order.completed/cancelled/refunded
    topics are used as is; generic order.updated/order.created topics use the order status.
    """
    topic = (topic or "").strip()
    if topic in WOOCOMMERCE_EVENTS:
        return topic
    if topic in ("order.updated", "order.created"):
        return WOOCOMMERCE_STATUS_EVENTS.get((payload.get("status") or "").strip())
    return None
