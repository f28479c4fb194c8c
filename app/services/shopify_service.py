"""
Shopify Admin API client - authenticated requests.
Uses API version 2024-01 (stable). Never expose access_token to frontend.
Supports cursor pagination (Link header) so we fetch all products, not just first 250.
Stock is written with inventory_levels/set.json at the item's location.
"""
import re
import logging
from typing import Any, Optional

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

# Use 2024-01 (stable). 2026-01 can be unstable and cause inventory issues.
SHOPIFY_API_VERSION = "2024-01"
PAGE_LIMIT = 250
logger = logging.getLogger(__name__)


def _parse_link_next(link_header: Optional[str]) -> Optional[str]:
    """Parse Link header; return URL for rel=next if present. Shopify uses cursor pagination."""
    if not link_header:
        return None
    # Format: <url>; rel=next, <url>; rel=previous
    for part in link_header.split(","):
        part = part.strip()
        if 'rel="next"' in part.lower() or "rel=next" in part.lower():
            match = re.search(r"<([^>]+)>", part)
            if match:
                return match.group(1).strip()
    return None


def _log_shopify_response(method: str, url: str, status: int, body_preview: str = "") -> None:
    """Log every Shopify API call for debugging. No sensitive data."""
    if status >= 400:
        logger.warning("Shopify API %s %s -> %s %s", method, url, status, body_preview[:200] if body_preview else "")
    else:
        logger.debug("Shopify API %s %s -> %s", method, url, status)


def _shop_domain(store_url: str) -> str:
    shop = store_url.lower().strip()
    shop = re.sub(r"^https?://", "", shop).rstrip("/")
    if not shop.endswith(".myshopify.com"):
        shop = f"{shop}.myshopify.com" if "." not in shop else shop
    return shop


def _base_url(store_url: str) -> str:
    return f"https://{_shop_domain(store_url)}/admin/api/{SHOPIFY_API_VERSION}"


def _headers(access_token: str) -> dict:
    return {
        "X-Shopify-Access-Token": access_token,
        "Content-Type": "application/json",
    }


def _variant_name(product: dict, variant: dict) -> str:
    title = (product.get("title") or "").strip()
    vtitle = (variant.get("title") or "").strip()
    if vtitle and vtitle != "Default Title":
        return f"{title} - {vtitle}"
    return title


def records_from_products(products: list[dict]) -> list[StoreProductRecord]:
    """Flatten products into one record per variant that has a SKU."""
    out: list[StoreProductRecord] = []
    for p in products or []:
        if not isinstance(p, dict):
            continue
        for v in p.get("variants") or []:
            if not isinstance(v, dict):
                continue
            sku = (v.get("sku") or "").strip()
            if not sku:
                continue
            out.append(StoreProductRecord(
                sku=sku,
                name=_variant_name(p, v),
                product_id=str(p.get("id")) if p.get("id") is not None else None,
                variant_id=str(v.get("id")) if v.get("id") is not None else None,
                inventory_item_id=str(v.get("inventory_item_id")) if v.get("inventory_item_id") is not None else None,
                stock=int(v.get("inventory_quantity") or 0),
            ))
    return out


class ShopifyClient(StorePlatformClient):
    def __init__(self, store_url: str, access_token: str, timeout: Optional[float] = None):
        self.base = _base_url(store_url)
        self.access_token = access_token
        self.timeout = timeout or settings.HTTP_TIMEOUT_SEC
        self._primary_location_id: Optional[str] = None

    def _raise_for(self, method: str, url: str, response: httpx.Response) -> None:
        body = response.text[:300] if response.text else ""
        _log_shopify_response(method, url, response.status_code, body)
        if response.status_code in (401, 403):
            raise IntegrationUnavailableError(f"Shopify rejected the access token ({response.status_code})")
        if response.status_code >= 400:
            raise PlatformAPIError(f"Shopify {method} failed: {response.status_code} {body[:200]}", response.status_code)

    async def _get(self, url: str, params: Optional[dict] = None) -> httpx.Response:
        try:
            response = await get_with_retry(url, params=params, headers=_headers(self.access_token), timeout=self.timeout)
        except TRANSPORT_ERRORS as e:
            raise IntegrationUnavailableError(f"Shopify unreachable: {e}") from e
        self._raise_for("GET", url, response)
        return response

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        url = f"{self.base}{path}"
        try:
            response = await send_no_retry("POST", url, json=payload, headers=_headers(self.access_token), timeout=self.timeout)
        except TRANSPORT_ERRORS as e:
            raise IntegrationUnavailableError(f"Shopify unreachable: {e}") from e
        return response

    async def get_products_all_pages(self) -> list[dict]:
        """
        Fetch all products using cursor pagination (Link header).
        Stops when response has no rel=next or fewer than PAGE_LIMIT items.
        """
        url = f"{self.base}/products.json"
        params: dict = {"limit": PAGE_LIMIT}
        all_products: list[dict] = []
        page = 0
        while True:
            page += 1
            response = await self._get(url, params=params)
            products = response.json().get("products") or []
            all_products.extend(products)
            logger.debug("Shopify products page %s: got %s (total so far: %s)", page, len(products), len(all_products))
            if len(products) < PAGE_LIMIT:
                break
            next_url = _parse_link_next(response.headers.get("link"))
            if not next_url:
                break
            url = next_url
            params = {}  # page_info URL already has params; do not add extra
        logger.info("Shopify products: got %s product(s) across %s page(s)", len(all_products), page)
        return all_products

    async def list_products(self) -> list[StoreProductRecord]:
        return records_from_products(await self.get_products_all_pages())

    async def get_product_stock(self, sku: str) -> int:
        for record in await self.list_products():
            if record.sku == sku:
                return record.stock or 0
        raise SkuNotFoundError(sku, f"SKU {sku} not found in Shopify")

    async def _location_for(self, inventory_item_id: str) -> str:
        """Location of an existing inventory level, else the shop's primary location (connected first)."""
        response = await self._get(f"{self.base}/inventory_levels.json", params={"inventory_item_ids": inventory_item_id})
        levels = response.json().get("inventory_levels") or []
        if levels and levels[0].get("location_id") is not None:
            return str(levels[0]["location_id"])

        if not self._primary_location_id:
            shop = (await self._get(f"{self.base}/shop.json")).json().get("shop") or {}
            if not shop.get("primary_location_id"):
                raise PlatformAPIError("Could not resolve a Shopify location for inventory updates")
            self._primary_location_id = str(shop["primary_location_id"])
        location_id = self._primary_location_id

        response = await self._post("/inventory_levels/connect.json", {
            "location_id": int(location_id),
            "inventory_item_id": int(inventory_item_id),
        })
        # 422 means the item is already connected to this location
        if response.status_code >= 400 and response.status_code != 422:
            self._raise_for("POST", "/inventory_levels/connect.json", response)
        return location_id

    async def set_product_stock(self, product: StoreProductRecord, quantity: int) -> None:
        if not product.inventory_item_id:
            raise PlatformAPIError(f"SKU {product.sku} has no inventory item in Shopify")
        location_id = await self._location_for(product.inventory_item_id)
        payload: dict[str, Any] = {
            "location_id": int(location_id),
            "inventory_item_id": int(product.inventory_item_id),
            "available": int(quantity),
        }
        response = await self._post("/inventory_levels/set.json", payload)
        self._raise_for("POST", "/inventory_levels/set.json", response)
        logger.debug("Shopify stock for %s set to %s at location %s", product.sku, quantity, location_id)
