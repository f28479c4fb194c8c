"""
Pull engine: copy authoritative ERP stock onto a store, SKU by SKU.

Strategy starts from the store catalog (products that have a SKU), looks each SKU up in the
ERP and writes the ERP stock to the store when it differs. SKUs are processed in batches
with bounded concurrency; each SKU gets exactly one outcome and a failure on one SKU never
stops the others, timeouts included. Only a failed ERP preflight or store catalog listing
aborts the whole pull.
"""
import asyncio
import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.models import (
    Integration,
    Store,
    StoreIntegration,
    SyncItemStatus,
    SyncLog,
    SyncLogItem,
    SyncLogStatus,
    SyncType,
    utcnow,
)
from app.services.integration_settings import parse_integration_settings, parse_sync_config
from app.services.platform_client import (
    ClientFactory,
    ErpClient,
    IntegrationUnavailableError,
    PlatformError,
    SkuNotFoundError,
    StorePlatformClient,
    StoreProductRecord,
    SyncConfigurationError,
    SyncInProgressError,
    SyncTargetNotFoundError,
    default_client_factory,
)
from app.services.store_products import persist_catalog_snapshot
from app.services.sync_locks import LOCK_PULL, acquire_lock, release_lock
from app.services.unmapped_skus import track_unmapped_sku

logger = logging.getLogger(__name__)

# Item error categories
NOT_FOUND_CONTIFICO = "not_found_contifico"
NOT_FOUND_STORE = "not_found_store"
NO_CHANGES = "no_changes"
UPDATE_ERROR = "update_error"
PROCESSING_ERROR = "processing_error"


@dataclass
class SyncResult:
    success: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "failed": self.failed, "skipped": self.skipped, "errors": self.errors}


@dataclass
class ItemOutcome:
    sku: str
    status: SyncItemStatus
    name: Optional[str] = None
    stock_before: Optional[int] = None
    stock_after: Optional[int] = None
    erp_stock: Optional[int] = None
    category: Optional[str] = None
    message: Optional[str] = None
    unmapped: bool = False


def _normalize_skus(skus: Optional[list[str]]) -> Optional[list[str]]:
    if skus is None:
        return None
    seen: dict[str, None] = {}
    for s in skus:
        s = (s or "").strip()
        if s:
            seen.setdefault(s, None)
    return list(seen)


class SyncService:
    """Pull ERP stock into stores. One instance per DB session."""

    def __init__(self, db: Session, client_factory: Optional[ClientFactory] = None):
        self.db = db
        self.clients = client_factory or default_client_factory

    def resolve_target(
        self, store_id: str, integration_id: str, tenant_id: Optional[str] = None
    ) -> tuple[Store, Integration, StoreIntegration]:
        """Store, integration and active link, all in the same tenant."""
        q = self.db.query(Store).filter(Store.id == store_id)
        if tenant_id:
            q = q.filter(Store.tenant_id == tenant_id)
        store = q.first()
        if not store:
            raise SyncTargetNotFoundError(f"Store {store_id} not found")
        integration = self.db.query(Integration).filter(
            Integration.id == integration_id,
            Integration.tenant_id == store.tenant_id,
        ).first()
        if not integration:
            raise SyncTargetNotFoundError(f"Integration {integration_id} not found")
        link = self.db.query(StoreIntegration).filter(
            StoreIntegration.store_id == store.id,
            StoreIntegration.integration_id == integration.id,
            StoreIntegration.is_active.is_(True),
        ).first()
        if not link:
            raise SyncTargetNotFoundError(f"Integration {integration_id} is not linked to store {store_id}")
        if not integration.is_active:
            raise SyncConfigurationError(f"Integration {integration_id} is inactive")
        return store, integration, link

    @staticmethod
    def resolve_warehouse(integration: Integration, link: StoreIntegration) -> Optional[str]:
        """Link pull.warehouse, then integration warehousePrimary; None means global stock."""
        config = parse_sync_config(link.sync_config)
        if config.pull.warehouse:
            return config.pull.warehouse
        return parse_integration_settings(integration.settings or {}).warehouse_primary

    async def pull(
        self,
        store_id: str,
        integration_id: str,
        dry_run: bool = False,
        limit: Optional[int] = None,
        skus: Optional[list[str]] = None,
        tenant_id: Optional[str] = None,
    ) -> SyncResult:
        store, integration, link = self.resolve_target(store_id, integration_id, tenant_id)
        process_id = f"pull-{uuid.uuid4()}"
        if not acquire_lock(self.db, store.id, integration.id, LOCK_PULL, process_id, settings.PULL_LOCK_TTL_SEC):
            raise SyncInProgressError(f"A pull is already running for store {store.id} and integration {integration.id}")
        try:
            return await self._run_pull(store, integration, link, dry_run, limit, _normalize_skus(skus))
        finally:
            release_lock(self.db, store.id, integration.id, LOCK_PULL, process_id)

    async def pull_selective(
        self,
        store_id: str,
        integration_id: str,
        skus: list[str],
        dry_run: bool = False,
        tenant_id: Optional[str] = None,
    ) -> SyncResult:
        return await self.pull(store_id, integration_id, dry_run=dry_run, skus=skus or [], tenant_id=tenant_id)

    async def _run_pull(
        self,
        store: Store,
        integration: Integration,
        link: StoreIntegration,
        dry_run: bool,
        limit: Optional[int],
        skus: Optional[list[str]],
    ) -> SyncResult:
        started = time.monotonic()
        result = SyncResult()
        outcomes: list[ItemOutcome] = []
        warehouse = self.resolve_warehouse(integration, link)
        logger.info(
            "Pull start store=%s integration=%s dry_run=%s limit=%s selective=%s warehouse=%s",
            store.id, integration.id, dry_run, limit, skus is not None, warehouse or "global",
        )

        try:
            erp = self.clients.erp_client(integration)
            store_client = self.clients.store_client(store)

            # Preflight: an unreachable ERP aborts before any SKU is touched
            warehouses = await erp.list_warehouses()
            warehouse_name = next((w["name"] for w in warehouses if str(w.get("id")) == str(warehouse)), warehouse) if warehouse else "Global stock"

            try:
                catalog = await store_client.list_products()
            except IntegrationUnavailableError:
                raise
            except PlatformError as e:
                raise IntegrationUnavailableError(f"Store catalog unavailable: {e}") from e

            by_sku: dict[str, StoreProductRecord] = {}
            for record in catalog:
                by_sku.setdefault(record.sku, record)

            if skus is not None:
                candidates = [by_sku[s] for s in skus if s in by_sku]
                for missing in (s for s in skus if s not in by_sku):
                    outcomes.append(ItemOutcome(
                        sku=missing,
                        status=SyncItemStatus.SKIPPED,
                        category=NOT_FOUND_STORE,
                        message="SKU not found in store",
                    ))
            else:
                candidates = list(by_sku.values())
            if limit:
                candidates = candidates[:limit]

            batch_size = max(1, settings.PULL_BATCH_SIZE)
            total_batches = math.ceil(len(candidates) / batch_size) if candidates else 0
            for i in range(0, len(candidates), batch_size):
                batch = candidates[i:i + batch_size]
                logger.info("Pull batch %s/%s (%s SKU(s))", i // batch_size + 1, total_batches, len(batch))
                batch_results = await asyncio.gather(
                    *(self._pull_one(erp, store_client, record, warehouse, dry_run) for record in batch),
                    return_exceptions=True,
                )
                for record, item in zip(batch, batch_results):
                    if isinstance(item, BaseException):
                        # _pull_one catches Exception, so only errors outside that reach here
                        logger.exception("Unexpected error pulling %s", record.sku, exc_info=item)
                        item = ItemOutcome(
                            sku=record.sku, name=record.name, status=SyncItemStatus.FAILED,
                            stock_before=record.stock, category=PROCESSING_ERROR, message=str(item),
                        )
                    outcomes.append(item)
                if i + batch_size < len(candidates):
                    await asyncio.sleep(settings.PULL_BATCH_PAUSE_SEC)

        except (IntegrationUnavailableError, SyncConfigurationError) as e:
            _tally(result, outcomes)
            logger.error("Pull aborted store=%s integration=%s: %s", store.id, integration.id, e)
            if not dry_run:
                self._write_log(store, integration, SyncLogStatus.ERROR, result, outcomes, started,
                                details={"fatal_error": True, "warehouse_id": warehouse}, error_message=str(e)[:200])
            raise

        _tally(result, outcomes)
        if not dry_run:
            self._persist(store, integration, link, catalog, outcomes, result, started, warehouse, warehouse_name, len(candidates))

        logger.info(
            "Pull done store=%s integration=%s in %.2fs: success=%s failed=%s skipped=%s%s",
            store.id, integration.id, time.monotonic() - started,
            result.success, result.failed, result.skipped, " (dry run)" if dry_run else "",
        )
        return result

    async def _pull_one(
        self,
        erp: ErpClient,
        store_client: StorePlatformClient,
        record: StoreProductRecord,
        warehouse: Optional[str],
        dry_run: bool,
    ) -> ItemOutcome:
        """Classify one SKU. No DB access here; every per-SKU error ends up in the outcome."""
        outcome = ItemOutcome(sku=record.sku, name=record.name, status=SyncItemStatus.SKIPPED,
                              stock_before=record.stock, stock_after=record.stock)
        try:
            erp_stock = math.floor(await erp.get_stock(record.sku, warehouse))
        except SkuNotFoundError:
            logger.debug("SKU %s not found in ERP, skipping", record.sku)
            outcome.category = NOT_FOUND_CONTIFICO
            outcome.message = "Product not found in Contífico"
            outcome.unmapped = True
            return outcome
        except Exception as e:
            logger.warning("ERP lookup failed for %s: %s", record.sku, e)
            outcome.status = SyncItemStatus.FAILED
            outcome.category = PROCESSING_ERROR
            outcome.message = str(e)
            return outcome

        outcome.erp_stock = erp_stock
        if record.stock == erp_stock:
            outcome.category = NO_CHANGES
            outcome.message = "Stock unchanged"
            return outcome

        if not dry_run:
            try:
                await store_client.set_product_stock(record, erp_stock)
            except Exception as e:
                logger.warning("Store update failed for %s: %s", record.sku, e)
                outcome.status = SyncItemStatus.FAILED
                outcome.category = UPDATE_ERROR
                outcome.message = f"Failed to update stock: {e}"
                return outcome
        logger.debug("%s %s: %s -> %s", "Would update" if dry_run else "Updated", record.sku, record.stock, erp_stock)
        outcome.status = SyncItemStatus.SUCCESS
        outcome.stock_after = erp_stock
        return outcome

    def _persist(
        self,
        store: Store,
        integration: Integration,
        link: StoreIntegration,
        catalog: list[StoreProductRecord],
        outcomes: list[ItemOutcome],
        result: SyncResult,
        started: float,
        warehouse: Optional[str],
        warehouse_name: Optional[str],
        processed: int,
    ) -> None:
        details = {
            "integration_id": integration.id,
            "warehouse_id": warehouse,
            "warehouse_name": warehouse_name,
            "total_found_in_store": len(catalog),
            "total_processed": processed,
            "success": result.success,
            "failed": result.failed,
            "skipped": result.skipped,
            "errors": result.errors[:20],
        }
        status = SyncLogStatus.SUCCESS if result.failed == 0 else SyncLogStatus.PARTIAL
        self._write_log(store, integration, status, result, outcomes, started, details=details, commit=False)

        written = {o.sku: o.stock_after for o in outcomes if o.status == SyncItemStatus.SUCCESS}
        persist_catalog_snapshot(self.db, store.id, catalog, written)
        for o in outcomes:
            if o.unmapped:
                track_unmapped_sku(self.db, store.tenant_id, store.id, o.sku, o.name)

        now = utcnow()
        store.last_sync_at = now
        link.last_pull_at = now
        self.db.commit()

    def _write_log(
        self,
        store: Store,
        integration: Integration,
        status: SyncLogStatus,
        result: SyncResult,
        outcomes: list[ItemOutcome],
        started: float,
        details: Optional[dict] = None,
        error_message: Optional[str] = None,
        commit: bool = True,
    ) -> SyncLog:
        log = SyncLog(
            tenant_id=store.tenant_id,
            store_id=store.id,
            integration_id=integration.id,
            sync_type=SyncType.PULL,
            status=status,
            synced_count=result.success,
            error_count=result.failed + (1 if status == SyncLogStatus.ERROR else 0),
            duration_ms=int((time.monotonic() - started) * 1000),
            details=details or {},
            error_message=error_message,
        )
        for o in outcomes:
            log.items.append(SyncLogItem(
                store_id=store.id,
                sku=o.sku,
                product_name=o.name,
                status=o.status,
                stock_before=o.stock_before,
                stock_after=o.stock_after,
                erp_stock=o.erp_stock,
                error_category=o.category,
                error_message=o.message,
            ))
        self.db.add(log)
        if commit:
            self.db.commit()
        return log


def _tally(result: SyncResult, outcomes: list[ItemOutcome]) -> None:
    result.success = result.failed = result.skipped = 0
    result.errors = []
    for o in outcomes:
        if o.status == SyncItemStatus.SUCCESS:
            result.success += 1
        elif o.status == SyncItemStatus.FAILED:
            result.failed += 1
            result.errors.append({"sku": o.sku, "error": o.message or "Unknown error"})
        else:
            result.skipped += 1
