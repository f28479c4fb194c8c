"""
Shared fixtures: in-memory SQLite, a seeded tenant with one Shopify store linked to one
Contífico integration, and recording fake ERP/store clients.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BACKGROUND_WORKERS_ENABLED", "false")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-for-the-suite")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")

from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.database import Base
from app.models import (
    Integration,
    IntegrationType,
    Store,
    StoreIntegration,
    StorePlatform,
    Tenant,
    User,
)
from app.services.credentials import encrypt_credentials
from app.services.integration_settings import dump_integration_settings, validate_integration_settings
from app.services.platform_client import (
    ClientFactory,
    ErpClient,
    IntegrationUnavailableError,
    SkuNotFoundError,
    StorePlatformClient,
    StoreProductRecord,
)

SHOPIFY_API_SECRET = "shpss_test_secret"
WOO_WEBHOOK_SECRET = "woo_webhook_secret"


class FakeErpClient(ErpClient):
    """ERP with an in-memory stock table. SKUs missing from `stock` are unknown to the ERP."""

    def __init__(self, stock: Optional[dict] = None):
        self.stock = dict(stock or {})
        self.errors: dict[str, Exception] = {}
        self.movement_errors: dict[str, Exception] = {}
        self.availability_errors: dict[str, Exception] = {}
        self.unavailable = False
        self.warehouses = [{"id": "WH-1", "name": "Main warehouse"}]
        self.stock_calls: list[tuple] = []
        self.movements: list[dict] = []

    async def get_stock(self, sku, warehouse=None):
        self.stock_calls.append((sku, warehouse))
        if self.unavailable:
            raise IntegrationUnavailableError("ERP down")
        if sku in self.errors:
            raise self.errors[sku]
        if sku not in self.stock:
            raise SkuNotFoundError(sku, f"Product with SKU {sku} not found in Contífico")
        return self.stock[sku]

    async def list_warehouses(self):
        if self.unavailable:
            raise IntegrationUnavailableError("ERP down")
        return self.warehouses

    async def test_connection(self):
        if self.unavailable:
            return {"success": False, "error": "ERP down", "details": {}}
        return {"success": True, "details": {"warehouses_count": len(self.warehouses)}}

    async def check_stock_availability(self, warehouse, sku, quantity):
        if sku in self.availability_errors:
            raise self.availability_errors[sku]
        if sku not in self.stock:
            raise SkuNotFoundError(sku)
        return self.stock[sku] >= quantity

    async def send_movement(self, movement_type, warehouse, sku, quantity, reference=None, notes=None):
        if sku in self.movement_errors:
            raise self.movement_errors[sku]
        if sku not in self.stock:
            raise SkuNotFoundError(sku)
        self.movements.append({
            "type": movement_type, "warehouse": warehouse, "sku": sku, "quantity": quantity, "reference": reference,
        })
        self.stock[sku] += quantity if movement_type == "ingreso" else -quantity
        return {"id": f"MOV-{len(self.movements)}"}


class FakeStoreClient(StorePlatformClient):
    """Store catalog in memory; records every stock write."""

    def __init__(self, products: Optional[list] = None):
        self.products = {p.sku: p for p in (products or [])}
        self.write_errors: dict[str, Exception] = {}
        self.writes: list[tuple[str, int]] = []
        self.list_error: Optional[Exception] = None

    async def list_products(self):
        if self.list_error:
            raise self.list_error
        return [
            StoreProductRecord(
                sku=p.sku, name=p.name, product_id=p.product_id, variant_id=p.variant_id,
                inventory_item_id=p.inventory_item_id, stock=p.stock,
            )
            for p in self.products.values()
        ]

    async def get_product_stock(self, sku):
        if sku not in self.products:
            raise SkuNotFoundError(sku)
        return self.products[sku].stock

    async def set_product_stock(self, product, quantity):
        if product.sku in self.write_errors:
            raise self.write_errors[product.sku]
        self.writes.append((product.sku, quantity))
        self.products[product.sku].stock = quantity


class FakeClientFactory(ClientFactory):
    def __init__(self, erp: FakeErpClient, store: FakeStoreClient):
        self.erp = erp
        self.store = store

    def erp_client(self, integration):
        return self.erp

    def store_client(self, store):
        return self.store


def product(sku: str, stock: Optional[int], name: Optional[str] = None) -> StoreProductRecord:
    return StoreProductRecord(
        sku=sku,
        name=name or f"Product {sku}",
        product_id=f"P-{sku}",
        variant_id=f"V-{sku}",
        inventory_item_id=f"I-{sku}",
        stock=stock,
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch):
    monkeypatch.setattr(settings, "PULL_BATCH_PAUSE_SEC", 0)
    monkeypatch.setattr(settings, "AUTO_PULL_AFTER_PUSH", False)
    monkeypatch.setattr(settings, "MOVEMENT_MAX_ATTEMPTS", 3)
    monkeypatch.setattr(settings, "MOVEMENT_RETRY_BACKOFF_SEC", 120)


def contifico_settings(warehouse: Optional[str] = "WH-1") -> dict:
    return dump_integration_settings(validate_integration_settings({
        "type": "contifico",
        "env": "test",
        "apiKeys": {"test": "test-api-key"},
        "warehousePrimary": warehouse,
    }))


@pytest.fixture
def tenant(db_session):
    tenant = Tenant(name="Acme")
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture
def user(db_session, tenant):
    user = User(tenant_id=tenant.id, email="owner@acme.test", name="Owner")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def store(db_session, tenant):
    store = Store(
        tenant_id=tenant.id,
        platform=StorePlatform.SHOPIFY,
        store_name="Acme Shop",
        store_url="acme.myshopify.com",
        api_credentials=encrypt_credentials({"accessToken": "shpat_test", "apiSecret": SHOPIFY_API_SECRET}),
    )
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture
def integration(db_session, tenant):
    integration = Integration(
        tenant_id=tenant.id,
        integration_type=IntegrationType.CONTIFICO,
        name="Contífico",
        settings=contifico_settings(),
        is_active=True,
    )
    db_session.add(integration)
    db_session.commit()
    return integration


@pytest.fixture
def link(db_session, store, integration):
    link = StoreIntegration(
        store_id=store.id,
        integration_id=integration.id,
        is_active=True,
        sync_config={"pull": {"enabled": True, "interval": "hourly"}},
    )
    db_session.add(link)
    db_session.commit()
    return link


@pytest.fixture
def erp():
    return FakeErpClient()


@pytest.fixture
def store_client():
    return FakeStoreClient()


@pytest.fixture
def clients(erp, store_client):
    return FakeClientFactory(erp, store_client)


@pytest.fixture
def api_client(session_factory, clients, user):
    """TestClient with the test database, fake clients and an authenticated user."""
    from fastapi.testclient import TestClient

    from app.auth import get_current_user
    from app.database import get_db
    from app.services.platform_client import get_client_factory
    from main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    def override_current_user():
        db = session_factory()
        try:
            return db.query(User).filter(User.id == user.id).first()
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_client_factory] = lambda: clients
    app.dependency_overrides[get_current_user] = override_current_user
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
