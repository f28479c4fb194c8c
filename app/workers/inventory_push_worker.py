"""
Inventory Push Worker

Runs every PUSH_WORKER_INTERVAL_SEC: recovers movements stuck in "processing",
cleans expired sync locks, then drains one batch of the movement queue into Contífico.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.database import SessionLocal
from app.services.inventory_push_service import InventoryPushService
from app.services.platform_client import ClientFactory
from app.services.sync_locks import clean_expired_locks

logger = logging.getLogger(__name__)


class InventoryPushWorker:
    """Worker that drains the inventory movement queue."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal, client_factory: Optional[ClientFactory] = None):
        self.name = "inventory_push_worker"
        self.interval = settings.PUSH_WORKER_INTERVAL_SEC
        self.session_factory = session_factory
        self.client_factory = client_factory

    def recover(self) -> int:
        """Startup sweep: return abandoned "processing" movements to "pending"."""
        db = self.session_factory()
        try:
            return InventoryPushService(db, self.client_factory).recover_stale()
        finally:
            db.close()

    async def run_cycle(self) -> Dict[str, Any]:
        db = self.session_factory()
        try:
            service = InventoryPushService(db, self.client_factory)
            recovered = service.recover_stale()
            clean_expired_locks(db)
            stats = await service.process_pending_movements(settings.PUSH_BATCH_SIZE)
            return {
                "success": True,
                "message": f"Processed {stats['processed']} movement(s): {stats['successful']} completed, recovered {recovered}",
                "recovered": recovered,
                **stats,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        except Exception as e:
            logger.exception("Inventory push cycle failed: %s", e)
            db.rollback()
            return {
                "success": False,
                "message": f"Worker cycle failed: {str(e)}",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        finally:
            db.close()


async def run_inventory_push_worker() -> Dict[str, Any]:
    """Entry point for the scheduler."""
    return await InventoryPushWorker().run_cycle()
