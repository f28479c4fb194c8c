"""
Store routes: per-product sync status and store-integration link configuration.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.auth import get_current_user
from app.database import get_db
from app.http.requests import StoreIntegrationCreate, StoreIntegrationUpdate
from app.models import Integration, Store, StoreIntegration, User
from app.services.integration_settings import parse_sync_config
from app.services.platform_client import SyncConfigurationError
from app.services.sync_status_service import STATUSES, get_sync_status

logger = logging.getLogger(__name__)
router = APIRouter()


def _get_store(db: Session, store_id: str, user: User) -> Store:
    store = db.query(Store).filter(
        Store.id == store_id,
        Store.tenant_id == user.tenant_id
    ).first()
    if not store:
        raise HTTPException(status_code=404, detail="Store not found")
    return store


def _get_integration(db: Session, integration_id: str, user: User) -> Integration:
    integration = db.query(Integration).filter(
        Integration.id == integration_id,
        Integration.tenant_id == user.tenant_id
    ).first()
    if not integration:
        raise HTTPException(status_code=404, detail="Integration not found")
    return integration


def _link_to_dict(link: StoreIntegration) -> dict:
    return {
        "id": link.id,
        "storeId": link.store_id,
        "integrationId": link.integration_id,
        "isActive": link.is_active,
        "syncConfig": link.sync_config or {},
        "lastPullAt": link.last_pull_at.isoformat() if link.last_pull_at else None,
        "createdAt": link.created_at.isoformat() if link.created_at else None,
        "updatedAt": link.updated_at.isoformat() if link.updated_at else None,
    }


def _validated_sync_config(data: dict) -> dict:
    try:
        return parse_sync_config(data).to_json()
    except SyncConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{store_id}/products/sync-status")
async def products_sync_status(
    store_id: str,
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Per-product reconciliation state between the store and Contífico"""
    _get_store(db, store_id, current_user)
    if status and status not in STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status filter: {status}")

    return get_sync_status(db, store_id, status=status, search=search, page=page, limit=limit)


@router.get("/{store_id}/integrations/{integration_id}")
async def get_store_integration(
    store_id: str,
    integration_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get the link between a store and an integration"""
    _get_store(db, store_id, current_user)
    _get_integration(db, integration_id, current_user)
    link = db.query(StoreIntegration).filter(
        StoreIntegration.store_id == store_id,
        StoreIntegration.integration_id == integration_id
    ).first()
    if not link:
        raise HTTPException(status_code=404, detail="Store is not linked to this integration")

    return _link_to_dict(link)


@router.post("/{store_id}/integrations/{integration_id}", status_code=201)
async def create_store_integration(
    store_id: str,
    integration_id: str,
    request: Optional[StoreIntegrationCreate] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Link a store to an integration"""
    request = request or StoreIntegrationCreate()
    _get_store(db, store_id, current_user)
    _get_integration(db, integration_id, current_user)
    existing = db.query(StoreIntegration).filter(
        StoreIntegration.store_id == store_id,
        StoreIntegration.integration_id == integration_id
    ).first()
    if existing:
        raise HTTPException(status_code=409, detail="Store is already linked to this integration")

    link = StoreIntegration(
        store_id=store_id,
        integration_id=integration_id,
        is_active=request.is_active,
        sync_config=_validated_sync_config(request.sync_config),
    )
    db.add(link)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Store is already linked to this integration")
    db.refresh(link)
    logger.info("Linked store %s to integration %s", store_id, integration_id)

    return _link_to_dict(link)


@router.put("/{store_id}/integrations/{integration_id}")
async def update_store_integration(
    store_id: str,
    integration_id: str,
    request: StoreIntegrationUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Update the sync configuration or active flag of a link"""
    _get_store(db, store_id, current_user)
    _get_integration(db, integration_id, current_user)
    link = db.query(StoreIntegration).filter(
        StoreIntegration.store_id == store_id,
        StoreIntegration.integration_id == integration_id
    ).first()
    if not link:
        raise HTTPException(status_code=404, detail="Store is not linked to this integration")

    if request.sync_config is not None:
        link.sync_config = _validated_sync_config(request.sync_config)
    if request.is_active is not None:
        link.is_active = request.is_active
    db.commit()
    db.refresh(link)

    return _link_to_dict(link)
