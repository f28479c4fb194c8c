"""
Shared HTTP client with timeouts and optional retries for external APIs.
Used by the Contífico, Shopify and WooCommerce clients so no call can hang a sync.
"""
import asyncio
import logging
from typing import Any, Optional

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = settings.HTTP_TIMEOUT_SEC
DEFAULT_RETRIES = 2
RETRY_BACKOFF_BASE = 1.0  # seconds

# Network failures that mean "the remote side is unreachable", not "the request was rejected".
TRANSPORT_ERRORS = (httpx.ConnectError, httpx.ReadTimeout, httpx.ConnectTimeout, httpx.RemoteProtocolError)


async def _sleep_backoff(attempt: int) -> None:
    if attempt <= 0:
        return
    delay = RETRY_BACKOFF_BASE * (2 ** (attempt - 1))
    await asyncio.sleep(min(delay, 10.0))


async def request_with_retry(
    method: str,
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    max_retries: int = DEFAULT_RETRIES,
    retry_on: tuple[int, ...] = (502, 503, 504),
    **kwargs: Any,
) -> httpx.Response:
    """
    Perform HTTP request with timeout and optional retries for server/network errors.
    Retries only on retry_on status codes and on connection errors.
    """
    last_exc: Optional[Exception] = None
    resp: Optional[httpx.Response] = None
    for attempt in range(max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.request(method, url, **kwargs)
            if attempt < max_retries and resp.status_code in retry_on:
                logger.debug("HTTP %s %s -> %s, retrying", method, url, resp.status_code)
                await _sleep_backoff(attempt + 1)
                continue
            return resp
        except TRANSPORT_ERRORS as e:
            last_exc = e
            if attempt < max_retries:
                logger.warning("HTTP %s %s attempt %s failed: %s", method, url, attempt + 1, e)
                await _sleep_backoff(attempt + 1)
            else:
                raise
    if last_exc:
        raise last_exc
    return resp  # type: ignore


async def get_with_retry(
    url: str,
    *,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    auth: Optional[tuple[str, str]] = None,
    timeout: float = DEFAULT_TIMEOUT,
    max_retries: int = DEFAULT_RETRIES,
) -> httpx.Response:
    """GET with retries on 5xx and connection errors."""
    kwargs: dict[str, Any] = {"params": params, "headers": headers}
    if auth:
        kwargs["auth"] = auth
    return await request_with_retry("GET", url, timeout=timeout, max_retries=max_retries, **kwargs)


async def send_no_retry(
    method: str,
    url: str,
    *,
    json: Optional[dict] = None,
    headers: Optional[dict] = None,
    auth: Optional[tuple[str, str]] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> httpx.Response:
    """POST/PUT with no retries (non-idempotent). Single attempt with timeout."""
    async with httpx.AsyncClient(timeout=timeout) as client:
        if auth:
            return await client.request(method, url, json=json or {}, headers=headers or {}, auth=auth)
        return await client.request(method, url, json=json or {}, headers=headers or {})
