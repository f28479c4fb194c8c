"""
Capability interfaces for the ERP and store platforms, the sync error taxonomy,
and the factory that builds concrete clients from Store/Integration rows.

Engines only talk to ErpClient / StorePlatformClient; they receive a ClientFactory
so tests can hand in fakes.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from app.models import Integration, Store, StorePlatform, IntegrationType

logger = logging.getLogger(__name__)


# Errors
class PlatformError(Exception):
    """Base class for every error raised by an ERP or store platform client."""


class IntegrationUnavailableError(PlatformError):
    """The remote system is unreachable or rejected our credentials. Aborts a pull."""


class SkuNotFoundError(PlatformError):
    def __init__(self, sku: str, message: Optional[str] = None):
        self.sku = sku
        super().__init__(message or f"SKU {sku} not found")


class PlatformAPIError(PlatformError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class MovementConflictError(PlatformAPIError):
    """ERP answered 409: the movement was already registered."""

    def __init__(self, message: str = "Movement already registered"):
        super().__init__(message, status_code=409)


class SyncInProgressError(Exception):
    """A pull for the same (store, integration) is already running."""


class SyncConfigurationError(Exception):
    """Inactive integration, missing credentials, or invalid settings."""


class SyncTargetNotFoundError(SyncConfigurationError):
    """Store, integration or their active link does not exist for the tenant."""


@dataclass
class StoreProductRecord:
    """One sellable unit (product or variant) in a store catalog, keyed by SKU."""
    sku: str
    name: Optional[str] = None
    product_id: Optional[str] = None
    variant_id: Optional[str] = None
    inventory_item_id: Optional[str] = None
    stock: Optional[int] = None
    extra: dict[str, Any] = field(default_factory=dict)


class ErpClient(ABC):
    """Read stock and register movements in the ERP (authoritative for stock)."""

    @abstractmethod
    async def get_stock(self, sku: str, warehouse: Optional[str] = None) -> int:
        """Stock for a SKU, optionally scoped to a warehouse. Raises SkuNotFoundError."""

    @abstractmethod
    async def list_warehouses(self) -> list[dict]:
        """Return [{id, name}]. Raises IntegrationUnavailableError when unreachable."""

    @abstractmethod
    async def test_connection(self) -> dict:
        ...

    @abstractmethod
    async def check_stock_availability(self, warehouse: str, sku: str, quantity: int) -> bool:
        ...

    @abstractmethod
    async def send_movement(
        self,
        movement_type: str,
        warehouse: str,
        sku: str,
        quantity: int,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> dict:
        """Register an egreso/ingreso. Raises SkuNotFoundError, MovementConflictError, PlatformAPIError."""


class StorePlatformClient(ABC):
    """Read the catalog and write stock on a storefront."""

    @abstractmethod
    async def list_products(self) -> list[StoreProductRecord]:
        ...

    @abstractmethod
    async def get_product_stock(self, sku: str) -> int:
        ...

    @abstractmethod
    async def set_product_stock(self, product: StoreProductRecord, quantity: int) -> None:
        ...


class ClientFactory:
    """Builds concrete platform clients from persisted rows."""

    def erp_client(self, integration: Integration) -> ErpClient:
        from app.services.contifico_service import ContificoClient
        from app.services.integration_settings import parse_integration_settings

        itype = getattr(integration.integration_type, "value", integration.integration_type)
        if itype != IntegrationType.CONTIFICO.value:
            raise SyncConfigurationError(f"Unsupported integration type: {itype}")
        return ContificoClient(parse_integration_settings(integration.settings or {}))

    def store_client(self, store: Store) -> StorePlatformClient:
        from app.services.credentials import get_store_credentials
        from app.services.shopify_service import ShopifyClient
        from app.services.woocommerce_service import WooCommerceClient

        creds = get_store_credentials(store)
        platform = getattr(store.platform, "value", store.platform)
        if platform == StorePlatform.SHOPIFY.value:
            token = (creds.get("accessToken") or creds.get("access_token") or "").strip()
            if not token:
                raise SyncConfigurationError(f"Store {store.id} has no Shopify access token")
            return ShopifyClient(store.store_url, token)
        if platform == StorePlatform.WOOCOMMERCE.value:
            key = (creds.get("consumerKey") or creds.get("consumer_key") or "").strip()
            secret = (creds.get("consumerSecret") or creds.get("consumer_secret") or "").strip()
            if not key or not secret:
                raise SyncConfigurationError(f"Store {store.id} has no WooCommerce API keys")
            return WooCommerceClient(store.store_url, key, secret)
        raise SyncConfigurationError(f"Unsupported store platform: {platform}")


default_client_factory = ClientFactory()


def get_client_factory() -> ClientFactory:
    """FastAPI dependency; overridden in tests."""
    return default_client_factory
