"""
Inventory routes: the movement queue (store orders pushed to Contífico) and unmapped SKUs.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.auth import get_current_user
from app.database import get_db
from app.models import MovementStatus, User
from app.services.inventory_push_service import InventoryPushService, movement_to_dict
from app.services.unmapped_skus import list_unmapped_skus, resolve_unmapped_sku, unmapped_sku_to_dict

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/movements")
async def list_movements(
    status: Optional[str] = Query(None),
    sku: Optional[str] = Query(None),
    store_id: Optional[str] = Query(None, alias="storeId"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List queued movements, newest first"""
    if status and status not in {s.value for s in MovementStatus}:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status}")

    return InventoryPushService(db).list_movements(
        current_user.tenant_id,
        status=status,
        sku=sku,
        store_id=store_id,
        page=page,
        limit=limit,
    )


@router.get("/movements/stats")
async def movement_stats(
    store_id: Optional[str] = Query(None, alias="storeId"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Movement counts per status"""
    return {"stats": InventoryPushService(db).movement_stats(current_user.tenant_id, store_id=store_id)}


@router.post("/movements/{movement_id}/retry")
async def retry_movement(
    movement_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Put a failed movement back in the queue with a fresh attempt budget"""
    try:
        movement = InventoryPushService(db).retry(movement_id, current_user.tenant_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if movement is None:
        raise HTTPException(status_code=404, detail="Movement not found")

    return {"message": "Movement queued for retry", "movement": movement_to_dict(movement)}


@router.get("/unmapped-skus")
async def get_unmapped_skus(
    store_id: Optional[str] = Query(None, alias="storeId"),
    include_resolved: bool = Query(False, alias="includeResolved"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Store SKUs that Contífico does not know"""
    rows = list_unmapped_skus(db, current_user.tenant_id, store_id=store_id, include_resolved=include_resolved)

    return {"unmappedSkus": [unmapped_sku_to_dict(row) for row in rows], "total": len(rows)}


@router.post("/unmapped-skus/{unmapped_id}/resolve")
async def resolve_unmapped(
    unmapped_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Mark an unmapped SKU as resolved (it reopens if seen again)"""
    row = resolve_unmapped_sku(db, current_user.tenant_id, unmapped_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Unmapped SKU not found")

    return {"message": "Unmapped SKU resolved", "unmappedSku": unmapped_sku_to_dict(row)}
