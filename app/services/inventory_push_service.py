"""
Push engine: durable queue of stock movements from store orders to the ERP.

Webhooks enqueue one movement per order line (egreso for sales, ingreso for
cancellations/refunds). A worker drains the queue: rows are claimed with
FOR UPDATE SKIP LOCKED, sent to the ERP, and either completed, rescheduled with
exponential backoff, or marked failed. Rows stuck in "processing" after a crash
are swept back to "pending". Movements are never deleted.
"""
import asyncio
import logging
import math
import time
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.config import settings
from app.models import (
    InventoryMovement,
    Integration,
    MovementStatus,
    MovementType,
    Store,
    StoreIntegration,
    SyncItemStatus,
    SyncLog,
    SyncLogItem,
    SyncLogStatus,
    SyncType,
    utcnow,
)
from app.services.platform_client import (
    ClientFactory,
    ErpClient,
    MovementConflictError,
    SkuNotFoundError,
    SyncTargetNotFoundError,
    default_client_factory,
)
from app.services.store_products import apply_stock_delta
from app.services.sync_service import SyncService
from app.services.unmapped_skus import track_unmapped_sku

logger = logging.getLogger(__name__)

EGRESO_EVENTS = {"orders/paid", "order_paid", "order.completed"}
INGRESO_EVENTS = {"orders/cancelled", "order_cancelled", "order.cancelled", "refunds/create", "order_refunded", "order.refunded"}

# One drain per process; other processes are kept apart by SKIP LOCKED.
_drain_lock = asyncio.Lock()


def determine_movement_type(event_type: str) -> MovementType:
    if event_type in EGRESO_EVENTS:
        return MovementType.EGRESO
    if event_type in INGRESO_EVENTS:
        return MovementType.INGRESO
    raise ValueError(f"Unknown event type: {event_type}")


def movement_to_dict(m: InventoryMovement) -> dict:
    return {
        "id": m.id,
        "storeId": m.store_id,
        "integrationId": m.integration_id,
        "orderId": m.order_id,
        "sku": m.sku,
        "quantity": m.quantity,
        "movementType": m.movement_type.value if m.movement_type else None,
        "eventType": m.event_type,
        "status": m.status.value if m.status else None,
        "attempts": m.attempts,
        "maxAttempts": m.max_attempts,
        "lastAttemptAt": m.last_attempt_at.isoformat() if m.last_attempt_at else None,
        "nextAttemptAt": m.next_attempt_at.isoformat() if m.next_attempt_at else None,
        "errorMessage": m.error_message,
        "metadata": m.metadata_ or {},
        "createdAt": m.created_at.isoformat() if m.created_at else None,
        "processedAt": m.processed_at.isoformat() if m.processed_at else None,
    }


class InventoryPushService:
    def __init__(self, db: Session, client_factory: Optional[ClientFactory] = None):
        self.db = db
        self.clients = client_factory or default_client_factory

    # Enqueue

    def _active_link(self, store_id: str, integration_id: Optional[str] = None) -> StoreIntegration:
        q = self.db.query(StoreIntegration).filter(
            StoreIntegration.store_id == store_id,
            StoreIntegration.is_active.is_(True),
        )
        if integration_id:
            q = q.filter(StoreIntegration.integration_id == integration_id)
        link = q.order_by(StoreIntegration.created_at).first()
        if not link:
            raise SyncTargetNotFoundError(f"Store {store_id} has no active integration")
        return link

    def enqueue(
        self,
        store_id: str,
        order_id: Optional[str],
        sku: str,
        quantity: int,
        movement_type: MovementType,
        event_type: str,
        metadata: Optional[dict[str, Any]] = None,
        integration_id: Optional[str] = None,
    ) -> InventoryMovement:
        """Create a pending movement. No deduplication here."""
        if quantity <= 0:
            raise ValueError("Movement quantity must be positive")
        store = self.db.query(Store).filter(Store.id == store_id).first()
        if not store:
            raise SyncTargetNotFoundError(f"Store {store_id} not found")
        link = self._active_link(store_id, integration_id)
        movement = InventoryMovement(
            tenant_id=store.tenant_id,
            store_id=store_id,
            integration_id=link.integration_id,
            order_id=order_id,
            sku=sku,
            quantity=quantity,
            movement_type=movement_type,
            event_type=event_type,
            status=MovementStatus.PENDING,
            attempts=0,
            max_attempts=settings.MOVEMENT_MAX_ATTEMPTS,
            metadata_=metadata or {},
            created_at=utcnow(),
        )
        self.db.add(movement)
        self.db.commit()
        logger.info("Queued %s %s x%s (order %s, %s)", movement_type.value, sku, quantity, order_id, event_type)
        return movement

    def queue_movements_from_webhook(
        self,
        store_id: str,
        order_id: str,
        event_type: str,
        line_items: list[dict],
        metadata: Optional[dict[str, Any]] = None,
        integration_id: Optional[str] = None,
    ) -> int:
        """Enqueue one movement per line item with a SKU, skipping (store, order, sku, type) already queued."""
        movement_type = determine_movement_type(event_type)
        queued = 0
        for item in line_items:
            sku = (item.get("sku") or "").strip()
            if not sku:
                logger.warning("Line item without SKU in order %s, skipping", order_id)
                continue
            try:
                quantity = int(item.get("quantity") or 1)
            except (TypeError, ValueError):
                logger.warning("Invalid quantity %r for SKU %s in order %s, skipping", item.get("quantity"), sku, order_id)
                continue
            if quantity <= 0:
                continue
            duplicate = self.db.query(InventoryMovement.id).filter(
                InventoryMovement.store_id == store_id,
                InventoryMovement.order_id == order_id,
                InventoryMovement.sku == sku,
                InventoryMovement.movement_type == movement_type,
            ).first()
            if duplicate:
                logger.info("Duplicate movement for order %s SKU %s (%s), skipping", order_id, sku, movement_type.value)
                continue
            self.enqueue(
                store_id,
                order_id,
                sku,
                quantity,
                movement_type,
                event_type,
                metadata={"productName": item.get("name"), "originalEvent": metadata or {}},
                integration_id=integration_id,
            )
            queued += 1
        return queued

    # Drain

    def claim_pending(self, batch_size: int = 1, exclude: Optional[set] = None) -> list[InventoryMovement]:
        """Claim due pending movements (oldest first) and mark them processing in one transaction."""
        now = utcnow()
        q = self.db.query(InventoryMovement).filter(
            InventoryMovement.status == MovementStatus.PENDING,
            or_(InventoryMovement.next_attempt_at.is_(None), InventoryMovement.next_attempt_at <= now),
        )
        if exclude:
            q = q.filter(InventoryMovement.id.notin_(exclude))
        rows = (
            q.order_by(InventoryMovement.created_at, InventoryMovement.id)
            .limit(batch_size)
            .with_for_update(skip_locked=True)
            .all()
        )
        for m in rows:
            m.status = MovementStatus.PROCESSING
            m.last_attempt_at = now
        self.db.commit()
        return rows

    async def drain(self, batch_size: Optional[int] = None) -> int:
        """Process up to one batch. Returns how many movements were processed."""
        stats = await self.process_pending_movements(batch_size)
        return stats["processed"]

    async def process_pending_movements(self, batch_size: Optional[int] = None) -> dict[str, int]:
        """
        Drain up to batch_size movements. Rows are claimed one at a time: the only
        processing row this worker holds is the one in flight.
        """
        async with _drain_lock:
            started = time.monotonic()
            limit = batch_size or settings.PUSH_BATCH_SIZE
            erp_cache: dict[str, ErpClient] = {}
            outcomes: list[tuple[InventoryMovement, bool, Optional[str]]] = []
            seen: set = set()
            while len(outcomes) < limit:
                claimed = self.claim_pending(1, exclude=seen)
                if not claimed:
                    break
                movement = claimed[0]
                seen.add(movement.id)
                ok, category = await self._process_movement(movement, erp_cache)
                outcomes.append((movement, ok, category))

            if not outcomes:
                return {"processed": 0, "successful": 0, "failed": 0}
            self._write_push_logs(outcomes, started)
            successful = sum(1 for _, ok, _ in outcomes if ok)
            logger.info("Movements done: %s successful, %s not completed", successful, len(outcomes) - successful)
            return {"processed": len(outcomes), "successful": successful, "failed": len(outcomes) - successful}

    async def _process_movement(
        self, movement: InventoryMovement, erp_cache: dict[str, ErpClient]
    ) -> tuple[bool, Optional[str]]:
        """Apply one movement. Returns (completed, error category)."""
        logger.debug("Processing movement %s: %s x%s (%s)", movement.id, movement.sku, movement.quantity, movement.movement_type.value)
        try:
            integration = self.db.query(Integration).filter(Integration.id == movement.integration_id).first()
            if not integration:
                raise SyncTargetNotFoundError(f"Integration {movement.integration_id} not found")
            link = self._active_link(movement.store_id, movement.integration_id)
            warehouse = SyncService.resolve_warehouse(integration, link)
            if not warehouse:
                raise SyncTargetNotFoundError(
                    f"No warehouse configured for store {movement.store_id}; set one in the Contífico integration"
                )
            erp = erp_cache.get(integration.id)
            if erp is None:
                erp = erp_cache[integration.id] = self.clients.erp_client(integration)

            if movement.movement_type == MovementType.EGRESO:
                if not await erp.check_stock_availability(warehouse, movement.sku, movement.quantity):
                    self._fail_terminal(movement, f"Insufficient stock in Contífico for SKU {movement.sku} (required: {movement.quantity})")
                    return False, "insufficient_stock"

            await erp.send_movement(
                movement.movement_type.value,
                warehouse,
                movement.sku,
                movement.quantity,
                reference=movement.order_id,
                notes=f"Order {movement.order_id} - {movement.event_type}",
            )
        except MovementConflictError:
            logger.info("Movement %s already registered in Contífico (409), marking completed", movement.id)
        except SkuNotFoundError as e:
            name = (movement.metadata_ or {}).get("productName") or f"Product {movement.sku}"
            track_unmapped_sku(self.db, movement.tenant_id, movement.store_id, movement.sku, name)
            self._fail_terminal(movement, str(e))
            return False, "not_found_contifico"
        except Exception as e:
            self._record_failure(movement, str(e))
            return False, "processing_error"

        self._complete(movement)
        await self._refresh_after_push(movement)
        return True, None

    def _complete(self, movement: InventoryMovement) -> None:
        movement.status = MovementStatus.COMPLETED
        movement.processed_at = utcnow()
        movement.next_attempt_at = None
        movement.error_message = None
        delta = -movement.quantity if movement.movement_type == MovementType.EGRESO else movement.quantity
        apply_stock_delta(self.db, movement.store_id, movement.sku, delta)
        self.db.commit()
        logger.info("Movement %s completed", movement.id)

    def _fail_terminal(self, movement: InventoryMovement, message: str) -> None:
        movement.attempts = min((movement.attempts or 0) + 1, movement.max_attempts)
        movement.status = MovementStatus.FAILED
        movement.error_message = message
        movement.next_attempt_at = None
        self.db.commit()
        logger.warning("Movement %s failed: %s", movement.id, message)

    def _record_failure(self, movement: InventoryMovement, message: str) -> None:
        """Retryable failure: back to pending with backoff, or failed once attempts are used up."""
        now = utcnow()
        movement.attempts = (movement.attempts or 0) + 1
        movement.last_attempt_at = now
        movement.error_message = message
        if movement.attempts < movement.max_attempts:
            delay = settings.MOVEMENT_RETRY_BACKOFF_SEC * (2 ** (movement.attempts - 1))
            movement.status = MovementStatus.PENDING
            movement.next_attempt_at = now + timedelta(seconds=delay)
            logger.warning(
                "Movement %s attempt %s/%s failed, retry in %ss: %s",
                movement.id, movement.attempts, movement.max_attempts, delay, message,
            )
        else:
            movement.status = MovementStatus.FAILED
            movement.next_attempt_at = None
            logger.error("Movement %s failed after %s attempts: %s", movement.id, movement.attempts, message)
        self.db.commit()

    async def _refresh_after_push(self, movement: InventoryMovement) -> None:
        """Selective pull so the store reflects the ERP right after a movement. Never affects the movement."""
        if not settings.AUTO_PULL_AFTER_PUSH:
            return
        try:
            await SyncService(self.db, self.clients).pull_selective(movement.store_id, movement.integration_id, [movement.sku])
        except Exception as e:
            self.db.rollback()
            logger.warning("Auto pull after push for %s failed: %s", movement.sku, e)

    def _write_push_logs(self, outcomes: list[tuple[InventoryMovement, bool, Optional[str]]], started: float) -> None:
        by_store: dict[str, list[tuple[InventoryMovement, bool, Optional[str]]]] = {}
        for item in outcomes:
            by_store.setdefault(item[0].store_id, []).append(item)
        duration_ms = int((time.monotonic() - started) * 1000)
        for store_id, items in by_store.items():
            ok = sum(1 for _, success, _ in items if success)
            bad = len(items) - ok
            status = SyncLogStatus.SUCCESS if bad == 0 else (SyncLogStatus.PARTIAL if ok else SyncLogStatus.ERROR)
            log = SyncLog(
                tenant_id=items[0][0].tenant_id,
                store_id=store_id,
                integration_id=items[0][0].integration_id,
                sync_type=SyncType.PUSH,
                status=status,
                synced_count=ok,
                error_count=bad,
                duration_ms=duration_ms,
                details={
                    "totalMovements": len(items),
                    "successful": ok,
                    "failed": bad,
                    "movements": [
                        {"id": m.id, "sku": m.sku, "quantity": m.quantity, "type": m.movement_type.value,
                         "orderId": m.order_id, "success": success}
                        for m, success, _ in items
                    ],
                },
            )
            for m, success, category in items:
                log.items.append(SyncLogItem(
                    store_id=store_id,
                    sku=m.sku,
                    product_name=(m.metadata_ or {}).get("productName") or m.sku,
                    status=SyncItemStatus.SUCCESS if success else SyncItemStatus.FAILED,
                    error_category=category,
                    error_message=None if success else m.error_message,
                ))
            self.db.add(log)
        self.db.commit()

    # Recovery and manual retry

    def recover_stale(self, stale_after_seconds: Optional[int] = None) -> int:
        """Return processing rows abandoned by a crashed worker to pending. Attempts are unchanged."""
        if stale_after_seconds is None:
            stale_after_seconds = settings.MOVEMENT_STALE_AFTER_SEC
        threshold = utcnow() - timedelta(seconds=stale_after_seconds)
        rows = self.db.query(InventoryMovement).filter(
            InventoryMovement.status == MovementStatus.PROCESSING,
            or_(InventoryMovement.last_attempt_at.is_(None), InventoryMovement.last_attempt_at < threshold),
        ).all()
        for m in rows:
            m.status = MovementStatus.PENDING
            m.next_attempt_at = None
        self.db.commit()
        if rows:
            logger.warning("Recovered %s stale processing movement(s)", len(rows))
        return len(rows)

    def retry(self, movement_id: str, tenant_id: str) -> Optional[InventoryMovement]:
        """Manual retry of a failed movement: pending again with a fresh attempt budget."""
        movement = self.db.query(InventoryMovement).filter(
            InventoryMovement.id == movement_id,
            InventoryMovement.tenant_id == tenant_id,
        ).first()
        if movement is None:
            return None
        if movement.status != MovementStatus.FAILED:
            raise ValueError(f"Only failed movements can be retried (status: {movement.status.value})")
        movement.status = MovementStatus.PENDING
        movement.attempts = 0
        movement.error_message = None
        movement.next_attempt_at = None
        self.db.commit()
        logger.info("Movement %s reset for manual retry", movement.id)
        return movement

    # Listing

    def list_movements(
        self,
        tenant_id: str,
        status: Optional[str] = None,
        sku: Optional[str] = None,
        store_id: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> dict:
        q = self.db.query(InventoryMovement).filter(InventoryMovement.tenant_id == tenant_id)
        if store_id:
            q = q.filter(InventoryMovement.store_id == store_id)
        if status:
            q = q.filter(InventoryMovement.status == MovementStatus(status))
        if sku:
            q = q.filter(InventoryMovement.sku.ilike(f"%{sku}%"))
        total = q.count()
        rows = (
            q.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "movements": [movement_to_dict(m) for m in rows],
            "pagination": {"page": page, "limit": limit, "total": total, "totalPages": math.ceil(total / limit) if total else 0},
        }

    def movement_stats(self, tenant_id: str, store_id: Optional[str] = None) -> dict:
        q = self.db.query(InventoryMovement.status, func.count(InventoryMovement.id)).filter(
            InventoryMovement.tenant_id == tenant_id
        )
        if store_id:
            q = q.filter(InventoryMovement.store_id == store_id)
        counts = {s.value: 0 for s in MovementStatus}
        for status, n in q.group_by(InventoryMovement.status).all():
            counts[status.value if hasattr(status, "value") else str(status)] = n
        counts["total"] = sum(counts.values())
        return counts
