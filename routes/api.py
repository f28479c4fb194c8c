"""
Central API route registration. All HTTP controllers are mounted here with /api prefix.
"""
import logging
from fastapi import FastAPI

from app.http.controllers import (
    integrations,
    inventory,
    stores,
    sync,
    webhooks,
    workers,
)

logger = logging.getLogger(__name__)


def register_routes(app: FastAPI, settings) -> None:
    """Register all API routers. Call from main.py after creating the FastAPI app."""
    app.include_router(sync.router, prefix="/api/sync", tags=["sync"])
    app.include_router(stores.router, prefix="/api/stores", tags=["stores"])
    app.include_router(integrations.router, prefix="/api/integrations", tags=["integrations"])
    app.include_router(inventory.router, prefix="/api/inventory", tags=["inventory"])
    app.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])
    app.include_router(workers.router, prefix="/api/workers", tags=["workers"])
    logger.debug("Registered API routes under %s", settings.API_PREFIX)
