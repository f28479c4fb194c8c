"""
Contífico ERP client. Contífico is authoritative for stock.

Endpoints (API v1, Authorization header carries the raw API key):
- GET  /sistema/api/v1/producto/?codigo=<sku>   product lookup by SKU
- GET  /sistema/api/v1/producto/<id>/stock/     stock per warehouse (bodega)
- GET  /sistema/api/v1/bodega/                  warehouses
- POST /sistema/api/v1/movimiento/              egreso/ingreso movements
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from app.config import settings
from app.services.http_client import TRANSPORT_ERRORS, get_with_retry, send_no_retry
from app.services.integration_settings import ContificoSettings
from app.services.platform_client import (
    ErpClient,
    IntegrationUnavailableError,
    MovementConflictError,
    PlatformAPIError,
    SkuNotFoundError,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/sistema/api/v1"


def _to_int(value: Any) -> int:
    """Contífico returns quantities as strings or floats; stock is whole units (floor)."""
    try:
        return int(float(value or 0))
    except (TypeError, ValueError):
        return 0


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return (response.text or "")[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("mensaje") or body.get("message") or body.get("error") or body)[:200]
    return str(body)[:200]


class ContificoClient(ErpClient):
    def __init__(self, config: ContificoSettings, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.config = config
        self.base_url = (base_url or settings.CONTIFICO_API_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SEC

    def _headers(self) -> dict:
        return {"Authorization": self.config.api_key, "Content-Type": "application/json"}

    def _check(self, method: str, path: str, response: httpx.Response) -> None:
        if response.status_code in (401, 403):
            raise IntegrationUnavailableError(f"Contífico rejected the API key ({self.config.env})")
        if response.status_code >= 500:
            logger.warning("Contífico %s %s -> %s", method, path, response.status_code)
        if response.status_code >= 400:
            raise PlatformAPIError(
                f"Contífico {method} {path} failed: {_error_message(response)}",
                status_code=response.status_code,
            )

    async def _get(self, path: str, params: Optional[dict] = None) -> Any:
        url = f"{self.base_url}{API_PREFIX}{path}"
        try:
            response = await get_with_retry(url, params=params, headers=self._headers(), timeout=self.timeout)
        except TRANSPORT_ERRORS as e:
            raise IntegrationUnavailableError(f"Contífico unreachable: {e}") from e
        self._check("GET", path, response)
        return response.json()

    async def _find_product(self, sku: str) -> dict:
        data = await self._get("/producto/", params={"codigo": sku})
        if not isinstance(data, list) or not data:
            raise SkuNotFoundError(sku, f"Product with SKU {sku} not found in Contífico")
        exact = next((p for p in data if str(p.get("codigo", "")).strip() == sku), None)
        return exact or data[0]

    async def get_stock(self, sku: str, warehouse: Optional[str] = None) -> int:
        product = await self._find_product(sku)
        if not warehouse:
            return _to_int(product.get("cantidad_stock"))
        rows = await self._get(f"/producto/{product.get('id')}/stock/")
        if not isinstance(rows, list):
            raise PlatformAPIError(f"Unexpected stock payload for SKU {sku}")
        for row in rows:
            if str(row.get("bodega_id")) == str(warehouse):
                return _to_int(row.get("cantidad"))
        return 0

    async def list_warehouses(self) -> list[dict]:
        try:
            data = await self._get("/bodega/")
        except PlatformAPIError as e:
            raise IntegrationUnavailableError(str(e)) from e
        if not isinstance(data, list):
            raise IntegrationUnavailableError("Invalid warehouses response from Contífico")
        return [{"id": str(w.get("id")), "name": w.get("nombre") or w.get("codigo") or str(w.get("id"))} for w in data]

    async def test_connection(self) -> dict:
        try:
            warehouses = await self.list_warehouses()
        except IntegrationUnavailableError as e:
            logger.warning("Contífico connection test failed (%s): %s", self.config.env, e)
            return {"success": False, "error": str(e), "details": {"environment": self.config.env}}
        return {
            "success": True,
            "details": {
                "environment": self.config.env,
                "warehouses_count": len(warehouses),
                "warehouses": warehouses,
                "primary_warehouse": self.config.warehouse_primary,
            },
        }

    async def check_stock_availability(self, warehouse: str, sku: str, quantity: int) -> bool:
        available = await self.get_stock(sku, warehouse)
        logger.debug("Contífico stock for %s in %s: %s (required %s)", sku, warehouse, available, quantity)
        return available >= quantity

    async def send_movement(
        self,
        movement_type: str,
        warehouse: str,
        sku: str,
        quantity: int,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> dict:
        product = await self._find_product(sku)
        now = datetime.now(timezone.utc)
        label = "Egreso" if movement_type == "egreso" else "Ingreso"
        payload = {
            "tipo": movement_type,
            "bodega_id": warehouse,
            "fecha": now.isoformat(),
            "referencia": reference or f"ECOM-{int(now.timestamp() * 1000)}",
            "observaciones": notes or f"{label} from e-commerce store - SKU: {sku}",
            "detalles": [
                {
                    "producto_id": product.get("id"),
                    "cantidad": quantity,
                    "descripcion": f"{label} automático - SKU: {sku}",
                }
            ],
        }
        path = "/movimiento/"
        try:
            response = await send_no_retry(
                "POST", f"{self.base_url}{API_PREFIX}{path}", json=payload, headers=self._headers(), timeout=self.timeout
            )
        except TRANSPORT_ERRORS as e:
            raise IntegrationUnavailableError(f"Contífico unreachable: {e}") from e
        if response.status_code == 409:
            raise MovementConflictError(f"Movement for {sku} ({reference}) already registered")
        self._check("POST", path, response)
        logger.info("Contífico %s registered for %s x%s in %s", movement_type, sku, quantity, warehouse)
        try:
            return response.json()
        except ValueError:
            return {}
