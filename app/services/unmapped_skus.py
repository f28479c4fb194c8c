"""
Unmapped SKUs: store SKUs the ERP does not know. One row per (store, sku).
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.models import UnmappedSku, utcnow

logger = logging.getLogger(__name__)


def track_unmapped_sku(
    db: Session,
    tenant_id: str,
    store_id: str,
    sku: str,
    product_name: Optional[str] = None,
) -> UnmappedSku:
    """Record a miss: create the row or bump occurrences; a resolved row is reopened. Caller commits."""
    row = db.query(UnmappedSku).filter(UnmappedSku.store_id == store_id, UnmappedSku.sku == sku).first()
    now = utcnow()
    if row is None:
        row = UnmappedSku(
            tenant_id=tenant_id,
            store_id=store_id,
            sku=sku,
            product_name=product_name,
            occurrences=1,
            last_seen_at=now,
            created_at=now,
        )
        db.add(row)
        db.flush()
        logger.info("New unmapped SKU %s for store %s", sku, store_id)
        return row
    row.occurrences = (row.occurrences or 0) + 1
    row.last_seen_at = now
    if product_name and not row.product_name:
        row.product_name = product_name
    if row.resolved:
        row.resolved = False
        row.resolved_at = None
        logger.info("Unmapped SKU %s reopened for store %s", sku, store_id)
    return row


def list_unmapped_skus(db: Session, tenant_id: str, store_id: Optional[str] = None, include_resolved: bool = False) -> list[UnmappedSku]:
    q = db.query(UnmappedSku).filter(UnmappedSku.tenant_id == tenant_id)
    if store_id:
        q = q.filter(UnmappedSku.store_id == store_id)
    if not include_resolved:
        q = q.filter(UnmappedSku.resolved.is_(False))
    return q.order_by(UnmappedSku.last_seen_at.desc()).all()


def resolve_unmapped_sku(db: Session, tenant_id: str, unmapped_id: str) -> Optional[UnmappedSku]:
    row = db.query(UnmappedSku).filter(UnmappedSku.id == unmapped_id, UnmappedSku.tenant_id == tenant_id).first()
    if row is None:
        return None
    row.resolved = True
    row.resolved_at = utcnow()
    db.commit()
    return row


def unresolved_skus(db: Session, store_id: str) -> set[str]:
    rows = db.query(UnmappedSku.sku).filter(UnmappedSku.store_id == store_id, UnmappedSku.resolved.is_(False)).all()
    return {r[0] for r in rows}


def unmapped_sku_to_dict(row: UnmappedSku) -> dict:
    return {
        "id": row.id,
        "storeId": row.store_id,
        "sku": row.sku,
        "productName": row.product_name,
        "occurrences": row.occurrences,
        "lastSeenAt": row.last_seen_at.isoformat() if row.last_seen_at else None,
        "createdAt": row.created_at.isoformat() if row.created_at else None,
        "resolved": bool(row.resolved),
        "resolvedAt": row.resolved_at.isoformat() if row.resolved_at else None,
    }
