"""
Scheduled Pull Worker

Runs every SCHEDULER_TICK_SEC (5 minutes, the smallest pull interval). For each active
store-integration link with pull enabled, inside its active hours, and whose interval has
elapsed since its last pull, runs a full pull. Bad outcomes raise a sync_failure notification.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.database import SessionLocal
from app.models import Integration, IntegrationType, Store, StoreIntegration, utcnow
from app.services.integration_settings import is_pull_due, is_within_active_hours, parse_sync_config
from app.services.notifications import create_notification
from app.services.platform_client import ClientFactory, SyncConfigurationError, SyncInProgressError
from app.services.sync_service import SyncService

logger = logging.getLogger(__name__)


class ScheduledPullWorker:
    """Worker that runs pulls for links whose schedule is due."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        client_factory: Optional[ClientFactory] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.name = "scheduled_pull_worker"
        self.interval = settings.SCHEDULER_TICK_SEC
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.clock = clock

    def due_links(self, db: Session, now: datetime) -> list[StoreIntegration]:
        links = (
            db.query(StoreIntegration)
            .join(Integration, Integration.id == StoreIntegration.integration_id)
            .filter(
                StoreIntegration.is_active.is_(True),
                Integration.is_active.is_(True),
                Integration.integration_type == IntegrationType.CONTIFICO,
            )
            .all()
        )
        due = []
        for link in links:
            try:
                config = parse_sync_config(link.sync_config)
            except SyncConfigurationError as e:
                logger.warning("Link %s has invalid sync config: %s", link.id, e)
                continue
            if not config.pull.enabled:
                continue
            if not is_within_active_hours(config, now):
                logger.debug("Link %s outside active hours, skipping", link.id)
                continue
            if not is_pull_due(config, link.last_pull_at, now):
                continue
            due.append(link)
        return due

    async def run_cycle(self) -> Dict[str, Any]:
        db = self.session_factory()
        pulled, failed_links = 0, 0
        try:
            now = self.clock()
            links = self.due_links(db, now)
            logger.info("Scheduled pull: %s link(s) due", len(links))
            for link in links:
                ok = await self._pull_link(db, link)
                pulled += 1
                if not ok:
                    failed_links += 1
            return {
                "success": failed_links == 0,
                "message": f"Ran {pulled} scheduled pull(s), {failed_links} with problems",
                "pulled": pulled,
                "failed": failed_links,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        except Exception as e:
            logger.exception("Scheduled pull cycle failed: %s", e)
            return {
                "success": False,
                "message": f"Worker cycle failed: {str(e)}",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        finally:
            db.close()

    async def _pull_link(self, db: Session, link: StoreIntegration) -> bool:
        store = db.query(Store).filter(Store.id == link.store_id).first()
        if store is None:
            return False
        try:
            result = await SyncService(db, self.client_factory).pull(
                link.store_id, link.integration_id, dry_run=False, limit=settings.SCHEDULED_PULL_LIMIT
            )
        except SyncInProgressError:
            logger.info("Pull already running for store %s, skipping this tick", link.store_id)
            return True
        except Exception as e:
            db.rollback()
            logger.error("Scheduled pull for store %s failed: %s", link.store_id, e)
            create_notification(
                db,
                tenant_id=store.tenant_id,
                store_id=store.id,
                type="sync_failure",
                title="Automatic sync error",
                message=f"The automatic sync failed completely: {e}",
                severity="error",
                data={"syncType": "pull", "error": str(e), "automated": True},
            )
            return False

        logger.info(
            "Scheduled pull store=%s: success=%s failed=%s skipped=%s",
            store.id, result.success, result.failed, result.skipped,
        )
        if result.failed > 0 and result.failed >= result.success:
            create_notification(
                db,
                tenant_id=store.tenant_id,
                store_id=store.id,
                type="sync_failure",
                title="Automatic sync finished with errors",
                message=(
                    f"The automatic sync failed for {result.failed} of "
                    f"{result.failed + result.success} products. Check the sync logs for details."
                ),
                severity="error",
                data={
                    "syncType": "pull",
                    "success": result.success,
                    "failed": result.failed,
                    "skipped": result.skipped,
                    "automated": True,
                },
            )
            return False
        return True


async def run_scheduled_pull_worker() -> Dict[str, Any]:
    """Entry point for the scheduler."""
    return await ScheduledPullWorker().run_cycle()
