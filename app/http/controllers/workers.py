"""
Background worker status and manual triggers
"""
import logging

from fastapi import APIRouter, Depends

from app.auth import get_current_user
from app.models import User
from app.workers.scheduler import get_workers_status, run_worker_now

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/status")
async def workers_status(
    current_user: User = Depends(get_current_user)
):
    """Scheduling state of every background worker"""
    return {"workers": get_workers_status()}


@router.post("/inventory-push/run")
async def run_inventory_push(
    current_user: User = Depends(get_current_user)
):
    """Drain one batch of the movement queue now"""
    logger.info("Manual inventory push requested by user %s", current_user.id)
    result = await run_worker_now("inventory_push")

    return {"result": result}
