"""
Worker Scheduler Configuration

Registers and schedules the background workers: the inventory push drain and the
scheduled ERP pull.
"""

import logging
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional

from app.config import settings
from app.workers.inventory_push_worker import InventoryPushWorker, run_inventory_push_worker
from app.workers.scheduled_pull_worker import run_scheduled_pull_worker

logger = logging.getLogger(__name__)

TICK_SECONDS = 30


class WorkerScheduler:
    """Scheduler for running background workers at specified intervals."""

    def __init__(self):
        self.workers = {
            "inventory_push": {
                "func": run_inventory_push_worker,
                "interval": settings.PUSH_WORKER_INTERVAL_SEC,
                "last_run": None,
                "last_result": None,
                "running": False,
                "enabled": True
            },
            "scheduled_pull": {
                "func": run_scheduled_pull_worker,
                "interval": settings.SCHEDULER_TICK_SEC,
                "last_run": None,
                "last_result": None,
                "running": False,
                "enabled": True
            }
        }
        self.running = False
        self._task: Optional[asyncio.Task] = None

    async def run_worker(self, worker_name: str, worker_config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run a single worker and log results. A worker never overlaps with itself.

        Args:
            worker_name: Name of the worker
            worker_config: Worker configuration

        Returns:
            Worker result
        """
        if worker_config["running"]:
            logger.info(f"Worker {worker_name} still running, skipping this tick")
            return {"success": False, "message": "Worker already running", "skipped": True}

        worker_config["running"] = True
        try:
            logger.info(f"Starting worker: {worker_name}")
            result = await worker_config["func"]()

            if result.get("success", False):
                logger.info(f"Worker {worker_name} completed: {result.get('message', 'No message')}")
            else:
                logger.error(f"Worker {worker_name} failed: {result.get('message', 'Unknown error')}")

            return result

        except Exception as e:
            logger.exception(f"Worker {worker_name} crashed: {e}")
            result = {
                "success": False,
                "message": f"Worker crashed: {str(e)}",
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
            return result
        finally:
            worker_config["running"] = False
            worker_config["last_run"] = datetime.now(timezone.utc)

    async def start_scheduler(self):
        """Start the background worker scheduler."""
        self.running = True
        logger.info("🚀 Worker scheduler started")

        while self.running:
            current_time = datetime.now(timezone.utc)

            for worker_name, worker_config in self.workers.items():
                if not worker_config["enabled"] or worker_config["running"]:
                    continue

                # Check if worker should run
                last_run = worker_config["last_run"]
                interval = worker_config["interval"]

                if last_run is None or (current_time - last_run).total_seconds() >= interval:
                    # Run worker asynchronously
                    asyncio.create_task(
                        self.run_worker(worker_name, worker_config)
                    )

            await asyncio.sleep(TICK_SECONDS)

    def stop_scheduler(self):
        """Stop the background worker scheduler."""
        self.running = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
        logger.info("⏹️ Worker scheduler stopped")

    def get_worker_status(self) -> Dict[str, Any]:
        """Get current status of all workers."""
        status = {}

        for worker_name, worker_config in self.workers.items():
            last_run = worker_config["last_run"]
            next_run = None

            if last_run:
                next_run = last_run + timedelta(seconds=worker_config["interval"])

            status[worker_name] = {
                "enabled": worker_config["enabled"],
                "running": worker_config["running"],
                "last_run": last_run.isoformat() if last_run else None,
                "next_run": next_run.isoformat() if next_run else None,
                "interval_seconds": worker_config["interval"],
                "status": "running" if self.running else "stopped"
            }

        return status


# Global scheduler instance
scheduler = WorkerScheduler()


def start_background_workers():
    """Recover stale movements, then start the background worker scheduler."""
    try:
        recovered = InventoryPushWorker().recover()
        if recovered:
            logger.info(f"Recovered {recovered} stale movement(s) at startup")
    except Exception as e:
        logger.exception(f"Startup recovery sweep failed: {e}")
    try:
        scheduler._task = asyncio.create_task(scheduler.start_scheduler())
        logger.info("✅ Background workers started successfully")
    except Exception as e:
        logger.error(f"❌ Failed to start background workers: {e}")


def stop_background_workers():
    """Stop the background worker scheduler."""
    scheduler.stop_scheduler()


def get_workers_status() -> Dict[str, Any]:
    """Get status of all background workers."""
    return scheduler.get_worker_status()


async def run_worker_now(worker_name: str) -> Dict[str, Any]:
    """Run one registered worker immediately (manual trigger)."""
    if worker_name not in scheduler.workers:
        raise KeyError(worker_name)
    return await scheduler.run_worker(worker_name, scheduler.workers[worker_name])
