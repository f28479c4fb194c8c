"""
Sync routes: manual pulls from Contífico into a store, and sync history.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session, selectinload

from app.auth import get_current_user
from app.database import get_db
from app.http.requests import PullRequest, SelectivePullRequest
from app.models import Store, SyncLog, SyncType, User
from app.services.platform_client import (
    ClientFactory,
    IntegrationUnavailableError,
    SyncConfigurationError,
    SyncInProgressError,
    SyncTargetNotFoundError,
    get_client_factory,
)
from app.services.sync_service import SyncService

logger = logging.getLogger(__name__)
router = APIRouter()


def sync_error_to_http(e: Exception) -> HTTPException:
    """Translate a pull-level domain error into an HTTP error."""
    if isinstance(e, SyncTargetNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, SyncInProgressError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, SyncConfigurationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, IntegrationUnavailableError):
        return HTTPException(status_code=502, detail=f"Integration unavailable: {e}")
    return HTTPException(status_code=500, detail=str(e))


def _log_to_dict(log: SyncLog, include_items: bool = False) -> dict:
    data = {
        "id": log.id,
        "storeId": log.store_id,
        "integrationId": log.integration_id,
        "syncType": log.sync_type.value if log.sync_type else None,
        "status": log.status.value if log.status else None,
        "syncedCount": log.synced_count,
        "errorCount": log.error_count,
        "durationMs": log.duration_ms,
        "details": log.details or {},
        "errorMessage": log.error_message,
        "createdAt": log.created_at.isoformat() if log.created_at else None,
    }
    if include_items:
        data["items"] = [
            {
                "id": item.id,
                "sku": item.sku,
                "productName": item.product_name,
                "status": item.status.value if item.status else None,
                "stockBefore": item.stock_before,
                "stockAfter": item.stock_after,
                "erpStock": item.erp_stock,
                "errorCategory": item.error_category,
                "errorMessage": item.error_message,
                "createdAt": item.created_at.isoformat() if item.created_at else None,
            }
            for item in log.items
        ]
    return data


@router.post("/pull/{store_id}/{integration_id}")
async def pull_stock(
    store_id: str,
    integration_id: str,
    request: Optional[PullRequest] = None,
    db: Session = Depends(get_db),
    clients: ClientFactory = Depends(get_client_factory),
    current_user: User = Depends(get_current_user)
):
    """Pull ERP stock into the store for every SKU in its catalog (optionally limited or dry run)"""
    request = request or PullRequest()
    try:
        result = await SyncService(db, clients).pull(
            store_id,
            integration_id,
            dry_run=request.dry_run,
            limit=request.limit,
            tenant_id=current_user.tenant_id,
        )
    except (SyncTargetNotFoundError, SyncInProgressError, SyncConfigurationError, IntegrationUnavailableError) as e:
        raise sync_error_to_http(e)

    return {"result": result.to_dict(), "dryRun": request.dry_run}


@router.post("/pull-selective/{store_id}/{integration_id}")
async def pull_selective(
    store_id: str,
    integration_id: str,
    request: SelectivePullRequest,
    db: Session = Depends(get_db),
    clients: ClientFactory = Depends(get_client_factory),
    current_user: User = Depends(get_current_user)
):
    """Pull ERP stock for an explicit list of SKUs"""
    try:
        result = await SyncService(db, clients).pull_selective(
            store_id,
            integration_id,
            request.skus,
            dry_run=request.dry_run,
            tenant_id=current_user.tenant_id,
        )
    except (SyncTargetNotFoundError, SyncInProgressError, SyncConfigurationError, IntegrationUnavailableError) as e:
        raise sync_error_to_http(e)

    return {"result": result.to_dict(), "dryRun": request.dry_run}


@router.get("/logs/{store_id}")
async def list_sync_logs(
    store_id: str,
    sync_type: Optional[str] = Query(None, alias="syncType"),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Sync history for a store, newest first"""
    store = db.query(Store).filter(
        Store.id == store_id,
        Store.tenant_id == current_user.tenant_id
    ).first()
    if not store:
        raise HTTPException(status_code=404, detail="Store not found")

    query = db.query(SyncLog).filter(SyncLog.store_id == store_id)
    if sync_type:
        try:
            query = query.filter(SyncLog.sync_type == SyncType(sync_type))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid syncType: {sync_type}")
    logs = query.order_by(SyncLog.created_at.desc()).limit(limit).all()

    return {"logs": [_log_to_dict(log) for log in logs]}


@router.get("/logs/detail/{log_id}")
async def get_sync_log(
    log_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """One sync run with its per-SKU items"""
    log = db.query(SyncLog).options(selectinload(SyncLog.items)).filter(
        SyncLog.id == log_id,
        SyncLog.tenant_id == current_user.tenant_id
    ).first()
    if not log:
        raise HTTPException(status_code=404, detail="Sync log not found")

    return {"log": _log_to_dict(log, include_items=True)}
