"""
SQLAlchemy models for tenants, stores, ERP integrations and the inventory sync subsystem.
All model and enum definitions live here for simplicity and to avoid circular imports.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Text, Enum as SQLEnum, JSON, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from app.database import Base
import enum
import uuid


def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns store UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid.uuid4())


# Enums
class StorePlatform(str, enum.Enum):
    SHOPIFY = "shopify"
    WOOCOMMERCE = "woocommerce"

class IntegrationType(str, enum.Enum):
    CONTIFICO = "contifico"

class MovementType(str, enum.Enum):
    EGRESO = "egreso"    # stock leaves the ERP warehouse (sale)
    INGRESO = "ingreso"  # stock returns to the ERP warehouse (cancel/refund)

class MovementStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

class SyncType(str, enum.Enum):
    PULL = "pull"
    PUSH = "push"

class SyncLogStatus(str, enum.Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"

class SyncItemStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


# Models
class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    created_at = Column("created_at", DateTime, default=utcnow)

    users = relationship("User", back_populates="tenant")
    stores = relationship("Store", back_populates="tenant")
    integrations = relationship("Integration", back_populates="tenant")

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_uuid)
    tenant_id = Column("tenant_id", String, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    created_at = Column("created_at", DateTime, default=utcnow)

    tenant = relationship("Tenant", back_populates="users")

class Store(Base):
    __tablename__ = "stores"

    id = Column(String, primary_key=True, default=_uuid)
    tenant_id = Column("tenant_id", String, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    platform = Column(SQLEnum(StorePlatform), nullable=False)
    store_name = Column("store_name", String, nullable=False)
    store_url = Column("store_url", String, nullable=False)
    api_credentials = Column("api_credentials", String, nullable=True)  # Encrypted JSON
    last_sync_at = Column("last_sync_at", DateTime, nullable=True)
    created_at = Column("created_at", DateTime, default=utcnow)
    updated_at = Column("updated_at", DateTime, default=utcnow, onupdate=utcnow)

    tenant = relationship("Tenant", back_populates="stores")
    integration_links = relationship("StoreIntegration", back_populates="store", cascade="all, delete-orphan")

class Integration(Base):
    __tablename__ = "integrations"

    id = Column(String, primary_key=True, default=_uuid)
    tenant_id = Column("tenant_id", String, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    integration_type = Column("integration_type", SQLEnum(IntegrationType), nullable=False, default=IntegrationType.CONTIFICO)
    name = Column(String, nullable=False)
    # {"type": "contifico", "env": ..., "api_keys": {"test": <enc>, "prod": <enc>}, "warehouse_primary": ...}
    settings = Column("settings", JSON, nullable=False, default=dict)
    is_active = Column("is_active", Boolean, default=True, nullable=False)
    created_at = Column("created_at", DateTime, default=utcnow)
    updated_at = Column("updated_at", DateTime, default=utcnow, onupdate=utcnow)

    tenant = relationship("Tenant", back_populates="integrations")
    store_links = relationship("StoreIntegration", back_populates="integration", cascade="all, delete-orphan")

class StoreIntegration(Base):
    __tablename__ = "store_integrations"

    id = Column(String, primary_key=True, default=_uuid)
    store_id = Column("store_id", String, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    integration_id = Column("integration_id", String, ForeignKey("integrations.id", ondelete="CASCADE"), nullable=False, index=True)
    is_active = Column("is_active", Boolean, default=True, nullable=False)
    sync_config = Column("sync_config", JSON, nullable=False, default=dict)
    last_pull_at = Column("last_pull_at", DateTime, nullable=True)
    created_at = Column("created_at", DateTime, default=utcnow)
    updated_at = Column("updated_at", DateTime, default=utcnow, onupdate=utcnow)

    store = relationship("Store", back_populates="integration_links")
    integration = relationship("Integration", back_populates="store_links")

    __table_args__ = (
        UniqueConstraint("store_id", "integration_id", name="uq_store_integrations_store_integration"),
    )

class StoreProduct(Base):
    """Last-known store catalog entry per SKU, refreshed by pulls and adjusted by pushes."""
    __tablename__ = "store_products"

    id = Column(String, primary_key=True, default=_uuid)
    store_id = Column("store_id", String, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    platform_product_id = Column("platform_product_id", String, nullable=True)
    inventory_item_id = Column("inventory_item_id", String, nullable=True)
    sku = Column("sku", String, nullable=False, index=True)
    name = Column("name", String, nullable=True)
    stock_quantity = Column("stock_quantity", Integer, nullable=True)
    last_modified_by = Column("last_modified_by", String(20), nullable=True)
    last_updated = Column("last_updated", DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("store_id", "sku", name="uq_store_products_store_sku"),
    )

class InventoryMovement(Base):
    __tablename__ = "inventory_movements_queue"

    id = Column(String, primary_key=True, default=_uuid)
    tenant_id = Column("tenant_id", String, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = Column("store_id", String, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    integration_id = Column("integration_id", String, ForeignKey("integrations.id", ondelete="CASCADE"), nullable=False)
    order_id = Column("order_id", String, nullable=True)
    sku = Column("sku", String, nullable=False)
    quantity = Column("quantity", Integer, nullable=False)
    movement_type = Column("movement_type", SQLEnum(MovementType), nullable=False)
    event_type = Column("event_type", String(50), nullable=False)
    status = Column("status", SQLEnum(MovementStatus), nullable=False, default=MovementStatus.PENDING, index=True)
    attempts = Column("attempts", Integer, nullable=False, default=0)
    max_attempts = Column("max_attempts", Integer, nullable=False, default=3)
    last_attempt_at = Column("last_attempt_at", DateTime, nullable=True)
    next_attempt_at = Column("next_attempt_at", DateTime, nullable=True, index=True)
    error_message = Column("error_message", Text, nullable=True)
    metadata_ = Column("metadata", JSON, nullable=True, default=dict)
    created_at = Column("created_at", DateTime, default=utcnow, index=True)
    processed_at = Column("processed_at", DateTime, nullable=True)

    store = relationship("Store")
    integration = relationship("Integration")

    __table_args__ = (
        Index("idx_inventory_movements_dedup", "store_id", "order_id", "sku", "movement_type"),
    )

class UnmappedSku(Base):
    __tablename__ = "unmapped_skus"

    id = Column(String, primary_key=True, default=_uuid)
    tenant_id = Column("tenant_id", String, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = Column("store_id", String, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    sku = Column("sku", String, nullable=False)
    product_name = Column("product_name", String(500), nullable=True)
    occurrences = Column("occurrences", Integer, nullable=False, default=1)
    last_seen_at = Column("last_seen_at", DateTime, default=utcnow)
    resolved = Column("resolved", Boolean, nullable=False, default=False, index=True)
    resolved_at = Column("resolved_at", DateTime, nullable=True)
    created_at = Column("created_at", DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("store_id", "sku", name="uq_unmapped_skus_store_sku"),
    )

class SyncLog(Base):
    __tablename__ = "sync_logs"

    id = Column(String, primary_key=True, default=_uuid)
    tenant_id = Column("tenant_id", String, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = Column("store_id", String, ForeignKey("stores.id", ondelete="CASCADE"), nullable=True, index=True)
    integration_id = Column("integration_id", String, nullable=True)
    sync_type = Column("sync_type", SQLEnum(SyncType), nullable=False)
    status = Column("status", SQLEnum(SyncLogStatus), nullable=False)
    synced_count = Column("synced_count", Integer, default=0)
    error_count = Column("error_count", Integer, default=0)
    duration_ms = Column("duration_ms", Integer, nullable=True)
    details = Column("details", JSON, nullable=True, default=dict)
    error_message = Column("error_message", Text, nullable=True)
    created_at = Column("created_at", DateTime, default=utcnow, index=True)

    items = relationship("SyncLogItem", back_populates="sync_log", cascade="all, delete-orphan")

class SyncLogItem(Base):
    __tablename__ = "sync_log_items"

    id = Column(String, primary_key=True, default=_uuid)
    sync_log_id = Column("sync_log_id", String, ForeignKey("sync_logs.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = Column("store_id", String, nullable=False)
    sku = Column("sku", String, nullable=False)
    product_name = Column("product_name", String, nullable=True)
    status = Column("status", SQLEnum(SyncItemStatus), nullable=False)
    stock_before = Column("stock_before", Integer, nullable=True)
    stock_after = Column("stock_after", Integer, nullable=True)
    erp_stock = Column("erp_stock", Integer, nullable=True)
    error_category = Column("error_category", String(50), nullable=True)
    error_message = Column("error_message", Text, nullable=True)
    created_at = Column("created_at", DateTime, default=utcnow)

    sync_log = relationship("SyncLog", back_populates="items")

    __table_args__ = (
        Index("idx_sync_log_items_store_sku", "store_id", "sku"),
    )

class SyncLock(Base):
    __tablename__ = "sync_locks"

    id = Column(String, primary_key=True, default=_uuid)
    store_id = Column("store_id", String, nullable=False)
    integration_id = Column("integration_id", String, nullable=False)
    lock_type = Column("lock_type", String(20), nullable=False)
    process_id = Column("process_id", String(100), nullable=True)
    locked_at = Column("locked_at", DateTime, default=utcnow)
    expires_at = Column("expires_at", DateTime, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("store_id", "integration_id", "lock_type", name="uq_sync_locks_store_integration_type"),
    )

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=_uuid)
    tenant_id = Column("tenant_id", String, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = Column("store_id", String, nullable=True)
    type = Column("type", String(50), nullable=False)
    title = Column("title", String, nullable=False)
    message = Column("message", Text, nullable=False)
    severity = Column("severity", String(20), nullable=False, default="info")
    read = Column("read", Boolean, nullable=False, default=False)
    data = Column("data", JSON, nullable=True)
    created_at = Column("created_at", DateTime, default=utcnow)
