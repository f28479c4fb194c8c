"""
WooCommerce REST API (wc/v3) client. Basic auth with consumer key/secret.
Simple products and variations each count as one SKU; stock is written with manage_stock=true.
"""
import re
import logging
from typing import Optional

import httpx

from app.config import settings
from app.services.http_client import TRANSPORT_ERRORS, get_with_retry, send_no_retry
from app.services.platform_client import (
    IntegrationUnavailableError,
    PlatformAPIError,
    SkuNotFoundError,
    StorePlatformClient,
    StoreProductRecord,
)

logger = logging.getLogger(__name__)

PER_PAGE = 100


def _api_base(store_url: str) -> str:
    url = store_url.strip().rstrip("/")
    if not re.match(r"^https?://", url):
        url = f"https://{url}"
    return f"{url}/wp-json/wc/v3"


class WooCommerceClient(StorePlatformClient):
    def __init__(self, store_url: str, consumer_key: str, consumer_secret: str, timeout: Optional[float] = None):
        self.base = _api_base(store_url)
        self.auth = (consumer_key, consumer_secret)
        self.timeout = timeout or settings.HTTP_TIMEOUT_SEC

    def _raise_for(self, method: str, path: str, response: httpx.Response) -> None:
        if response.status_code in (401, 403):
            raise IntegrationUnavailableError(f"WooCommerce rejected the API keys ({response.status_code})")
        if response.status_code >= 400:
            logger.warning("WooCommerce %s %s -> %s %s", method, path, response.status_code, (response.text or "")[:200])
            raise PlatformAPIError(f"WooCommerce {method} {path} failed: {response.status_code}", response.status_code)

    async def _get(self, path: str, params: Optional[dict] = None) -> list | dict:
        try:
            response = await get_with_retry(f"{self.base}{path}", params=params, auth=self.auth, timeout=self.timeout)
        except TRANSPORT_ERRORS as e:
            raise IntegrationUnavailableError(f"WooCommerce unreachable: {e}") from e
        self._raise_for("GET", path, response)
        return response.json()

    async def _variations(self, product: dict) -> list[StoreProductRecord]:
        out: list[StoreProductRecord] = []
        page = 1
        while True:
            rows = await self._get(f"/products/{product['id']}/variations", params={"per_page": PER_PAGE, "page": page})
            for v in rows or []:
                sku = (v.get("sku") or "").strip()
                if not sku:
                    continue
                out.append(StoreProductRecord(
                    sku=sku,
                    name=f"{product.get('name')} - {sku}",
                    product_id=str(product["id"]),
                    variant_id=str(v.get("id")),
                    stock=int(v.get("stock_quantity") or 0),
                ))
            if len(rows or []) < PER_PAGE:
                return out
            page += 1

    async def list_products(self) -> list[StoreProductRecord]:
        records: list[StoreProductRecord] = []
        page = 1
        while True:
            products = await self._get("/products", params={"per_page": PER_PAGE, "page": page, "status": "publish"})
            for p in products or []:
                if p.get("type") == "variable":
                    try:
                        records.extend(await self._variations(p))
                    except PlatformAPIError as e:
                        logger.warning("WooCommerce variations for product %s failed: %s", p.get("id"), e)
                    continue
                sku = (p.get("sku") or "").strip()
                if sku:
                    records.append(StoreProductRecord(
                        sku=sku,
                        name=p.get("name"),
                        product_id=str(p.get("id")),
                        stock=int(p.get("stock_quantity") or 0),
                    ))
            logger.debug("WooCommerce products page %s processed (total with SKU: %s)", page, len(records))
            if len(products or []) < PER_PAGE:
                break
            page += 1
        logger.info("WooCommerce products: got %s SKU(s)", len(records))
        return records

    async def get_product_stock(self, sku: str) -> int:
        rows = await self._get("/products", params={"sku": sku})
        if not rows:
            raise SkuNotFoundError(sku, f"SKU {sku} not found in WooCommerce")
        return int(rows[0].get("stock_quantity") or 0)

    async def set_product_stock(self, product: StoreProductRecord, quantity: int) -> None:
        if product.variant_id and product.variant_id != product.product_id:
            path = f"/products/{product.product_id}/variations/{product.variant_id}"
        else:
            path = f"/products/{product.product_id}"
        try:
            response = await send_no_retry(
                "PUT",
                f"{self.base}{path}",
                json={"manage_stock": True, "stock_quantity": int(quantity)},
                auth=self.auth,
                timeout=self.timeout,
            )
        except TRANSPORT_ERRORS as e:
            raise IntegrationUnavailableError(f"WooCommerce unreachable: {e}") from e
        self._raise_for("PUT", path, response)
        logger.debug("WooCommerce stock for %s set to %s", product.sku, quantity)
