"""
Persist the store catalog snapshot (StoreProduct) used by the sync status view.
Pulls upsert the catalog they listed; pushes adjust the cached stock optimistically.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.models import StoreProduct, utcnow
from app.services.platform_client import StoreProductRecord

logger = logging.getLogger(__name__)


def persist_catalog_snapshot(
    db: Session,
    store_id: str,
    records: list[StoreProductRecord],
    stock_after: Optional[dict[str, int]] = None,
) -> int:
    """
    Upsert one StoreProduct per SKU. stock_after overrides the listed stock for SKUs the pull wrote.
    Does not commit. Returns number of rows touched.
    """
    stock_after = stock_after or {}
    existing = {p.sku: p for p in db.query(StoreProduct).filter(StoreProduct.store_id == store_id).all()}
    now = utcnow()
    touched = 0
    for record in records:
        if not record.sku:
            continue
        stock = stock_after.get(record.sku, record.stock)
        row = existing.get(record.sku)
        if row is None:
            row = StoreProduct(store_id=store_id, sku=record.sku)
            db.add(row)
            existing[record.sku] = row
        row.platform_product_id = record.product_id
        row.inventory_item_id = record.inventory_item_id or record.variant_id
        row.name = (record.name or record.sku)[:255]
        row.stock_quantity = stock
        row.last_modified_by = "pull"
        row.last_updated = now
        touched += 1
    logger.debug("Catalog snapshot for store %s: %s row(s)", store_id, touched)
    return touched


def apply_stock_delta(db: Session, store_id: str, sku: str, delta: int) -> Optional[StoreProduct]:
    """Adjust cached store stock after a movement is applied. Does not commit."""
    row = db.query(StoreProduct).filter(StoreProduct.store_id == store_id, StoreProduct.sku == sku).first()
    if row is None or row.stock_quantity is None:
        return row
    row.stock_quantity = row.stock_quantity + delta
    row.last_modified_by = "push"
    row.last_updated = utcnow()
    return row
