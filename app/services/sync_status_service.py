"""
Sync status projection: per-product reconciliation state computed on read from the
catalog snapshot, pull history, movement queue and unmapped SKUs.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.models import (
    InventoryMovement,
    MovementStatus,
    Store,
    StoreProduct,
    SyncItemStatus,
    SyncLog,
    SyncLogItem,
    SyncType,
)
from app.services.unmapped_skus import unresolved_skus

logger = logging.getLogger(__name__)

PENDING = "pending"
SYNCED = "synced"
DIFFERENT = "different"
NOT_IN_CONTIFICO = "not_in_contifico"
ERROR = "error"
STATUSES = (PENDING, SYNCED, DIFFERENT, NOT_IN_CONTIFICO, ERROR)


@dataclass
class Operation:
    kind: str  # "pull" or "movement"
    at: datetime
    failed: bool


def classify(
    unmapped: bool,
    last_pull: Optional[Operation],
    last_movement: Optional[Operation],
    stock_store: Optional[int],
    stock_erp: Optional[int],
) -> str:
    """Pure classification; rules apply in order, first match wins."""
    if unmapped:
        return NOT_IN_CONTIFICO
    ops = [op for op in (last_pull, last_movement) if op is not None]
    if not ops:
        return PENDING
    last = max(ops, key=lambda op: op.at)
    if last.failed:
        return ERROR
    if last.kind == "movement" and (last_pull is None or last.at > last_pull.at):
        return DIFFERENT
    if stock_erp is None:
        return PENDING
    return SYNCED if stock_store == stock_erp else DIFFERENT


def _movement_time(m: InventoryMovement) -> datetime:
    return m.processed_at or m.last_attempt_at or m.created_at


def get_sync_status(
    db: Session,
    store_id: str,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    store = db.query(Store).filter(Store.id == store_id).first()
    products = db.query(StoreProduct).filter(StoreProduct.store_id == store_id).order_by(StoreProduct.sku).all()
    unmapped = unresolved_skus(db, store_id)

    # Newest first, so the first row seen per SKU is the latest one
    last_pull: dict[str, Operation] = {}
    erp_stock: dict[str, int] = {}
    pull_items = (
        db.query(SyncLogItem)
        .join(SyncLog, SyncLog.id == SyncLogItem.sync_log_id)
        .filter(SyncLogItem.store_id == store_id, SyncLog.sync_type == SyncType.PULL)
        .order_by(SyncLogItem.created_at.desc())
        .all()
    )
    for item in pull_items:
        if item.sku not in last_pull:
            last_pull[item.sku] = Operation("pull", item.created_at, item.status == SyncItemStatus.FAILED)
        if item.erp_stock is not None and item.sku not in erp_stock:
            erp_stock[item.sku] = item.erp_stock

    last_movement: dict[str, Operation] = {}
    for m in db.query(InventoryMovement).filter(InventoryMovement.store_id == store_id).all():
        op = Operation("movement", _movement_time(m), m.status == MovementStatus.FAILED)
        current = last_movement.get(m.sku)
        if current is None or op.at > current.at:
            last_movement[m.sku] = op

    needle = (search or "").strip().lower()
    rows = []
    for p in products:
        if needle and needle not in p.sku.lower() and needle not in (p.name or "").lower():
            continue
        pull_op, move_op = last_pull.get(p.sku), last_movement.get(p.sku)
        state = classify(p.sku in unmapped, pull_op, move_op, p.stock_quantity, erp_stock.get(p.sku))
        if status and state != status:
            continue
        ops = [op for op in (pull_op, move_op) if op is not None]
        last_sync = max(ops, key=lambda op: op.at).at if ops else None
        rows.append({
            "sku": p.sku,
            "name": p.name,
            "stockStore": p.stock_quantity,
            "stockContifico": erp_stock.get(p.sku),
            "status": state,
            "lastSync": last_sync.isoformat() if last_sync else None,
        })

    total = len(rows)
    start = (page - 1) * limit
    return {
        "products": rows[start:start + limit],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit) if total else 0,
        },
        "lastSyncAt": store.last_sync_at.isoformat() if store and store.last_sync_at else None,
    }
