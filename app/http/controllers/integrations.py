"""
Integration routes: ERP connection checks, warehouse listing and settings.
API keys are never returned; responses only report whether a key is set.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.auth import get_current_user
from app.database import get_db
from app.http.requests import IntegrationSettingsUpdate
from app.models import Integration, User
from app.services.integration_settings import (
    dump_integration_settings,
    merge_integration_settings,
    public_integration_settings,
)
from app.services.platform_client import (
    ClientFactory,
    IntegrationUnavailableError,
    SyncConfigurationError,
    get_client_factory,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def _get_integration(db: Session, integration_id: str, user: User) -> Integration:
    integration = db.query(Integration).filter(
        Integration.id == integration_id,
        Integration.tenant_id == user.tenant_id
    ).first()
    if not integration:
        raise HTTPException(status_code=404, detail="Integration not found")
    return integration


def _integration_to_dict(integration: Integration) -> dict:
    return {
        "id": integration.id,
        "type": integration.integration_type.value if integration.integration_type else None,
        "name": integration.name,
        "isActive": integration.is_active,
        "settings": public_integration_settings(integration.settings or {}),
        "createdAt": integration.created_at.isoformat() if integration.created_at else None,
        "updatedAt": integration.updated_at.isoformat() if integration.updated_at else None,
    }


@router.get("")
async def list_integrations(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List the tenant's integrations"""
    integrations = db.query(Integration).filter(
        Integration.tenant_id == current_user.tenant_id
    ).order_by(Integration.created_at).all()

    return {"integrations": [_integration_to_dict(i) for i in integrations]}


@router.get("/{integration_id}")
async def get_integration(
    integration_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return _integration_to_dict(_get_integration(db, integration_id, current_user))


@router.get("/{integration_id}/test-connection")
async def test_connection(
    integration_id: str,
    db: Session = Depends(get_db),
    clients: ClientFactory = Depends(get_client_factory),
    current_user: User = Depends(get_current_user)
):
    """Check that the stored credentials reach the ERP"""
    integration = _get_integration(db, integration_id, current_user)
    try:
        client = clients.erp_client(integration)
    except SyncConfigurationError as e:
        return {"success": False, "error": str(e), "details": {}}

    return await client.test_connection()


@router.get("/{integration_id}/warehouses")
async def list_warehouses(
    integration_id: str,
    db: Session = Depends(get_db),
    clients: ClientFactory = Depends(get_client_factory),
    current_user: User = Depends(get_current_user)
):
    """Warehouses (bodegas) available in the ERP"""
    integration = _get_integration(db, integration_id, current_user)
    try:
        warehouses = await clients.erp_client(integration).list_warehouses()
    except SyncConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except IntegrationUnavailableError as e:
        raise HTTPException(status_code=502, detail=f"Integration unavailable: {e}")

    return {"warehouses": warehouses}


@router.put("/{integration_id}/settings")
async def update_settings(
    integration_id: str,
    request: IntegrationSettingsUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Validate and store integration settings; omitted API keys keep their stored value"""
    integration = _get_integration(db, integration_id, current_user)
    try:
        model = merge_integration_settings(
            integration.settings or {},
            request.model_dump(by_alias=True, exclude_unset=True),
        )
    except SyncConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    integration.settings = dump_integration_settings(model)
    db.commit()
    db.refresh(integration)
    logger.info("Updated settings for integration %s (env=%s)", integration.id, model.env)

    return _integration_to_dict(integration)
