# loyalty_points/services/shopify_client.py

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from loyalty_points.services.errors import ShopifyAPIError

log = logging.getLogger("loyalty.shopify")


class ShopifyClient:
    """
    Async Shopify Admin REST client.

    Design goals:
    - Simple, explicit REST usage (no SDK)
    - Every call carries a network timeout
    - Centralized rate-limit handling (429 + Retry-After)
    - Shopify-version pinned
    - Non-idempotent calls (POST) are not retried on transport errors,
      so a timed-out create never produces a duplicate price rule.
    """

    API_VERSION = "2023-10"
    TIMEOUT_SECONDS = 20.0
    MAX_RETRIES = 3
    RETRY_BACKOFF_SECONDS = 1.5

    IDEMPOTENT_METHODS = ("GET", "PUT", "DELETE")

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        *,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not shop_domain or not access_token:
            raise ValueError("ShopifyClient requires shop_domain and access_token")

        self.shop_domain = shop_domain.lower().strip()
        self.access_token = access_token.strip()
        self.api_version = api_version or self.API_VERSION
        self.base_url = f"https://{self.shop_domain}/admin/api/{self.api_version}"

        self.headers = {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        self._client = httpx.AsyncClient(
            headers=self.headers,
            timeout=timeout or self.TIMEOUT_SECONDS,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ---------------------------------------------------------
    # Low-level request handler
    # ---------------------------------------------------------
    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Dict[str, Any], Dict[str, str]]:
        """
        Performs a REST request with retry + rate-limit awareness.
        Returns (json_payload, response_headers).
        """
        url = f"{self.base_url}{path}"
        retry_transport_errors = method in self.IDEMPOTENT_METHODS

        last_error: Optional[Exception] = None
        last_status: Optional[int] = None

        for attempt in range(1, self.MAX_RETRIES + 1):
            try:
                response = await self._client.request(method, url, params=params, json=json)
            except httpx.TransportError as e:
                last_error = e
                log.warning(f"[SHOPIFY] {method} {path} transport error (attempt {attempt}): {e!r}")
                if retry_transport_errors and attempt < self.MAX_RETRIES:
                    await asyncio.sleep(self.RETRY_BACKOFF_SECONDS * attempt)
                    continue
                break

            last_status = response.status_code

            # Shopify rate-limit handling (REST)
            if response.status_code == 429:
                retry_after = response.headers.get("Retry-After")
                sleep_for = float(retry_after) if retry_after else self.RETRY_BACKOFF_SECONDS
                log.warning(f"[SHOPIFY] {method} {path} rate limited, sleeping {sleep_for}s")
                last_error = ShopifyAPIError("rate limited", 429)
                if attempt < self.MAX_RETRIES:
                    await asyncio.sleep(sleep_for)
                    continue
                break

            if response.status_code >= 500 and retry_transport_errors and attempt < self.MAX_RETRIES:
                last_error = ShopifyAPIError(f"server error {response.status_code}", response.status_code)
                await asyncio.sleep(self.RETRY_BACKOFF_SECONDS * attempt)
                continue

            if response.status_code >= 400:
                raise ShopifyAPIError(
                    f"Shopify {method} {path} failed: {response.status_code} {response.text[:300]}",
                    response.status_code,
                )

            if response.content:
                return response.json(), dict(response.headers)
            return {}, dict(response.headers)

        raise ShopifyAPIError(f"Shopify API request failed after retries: {last_error!r}", last_status)

    # ---------------------------------------------------------
    # Public REST helpers
    # ---------------------------------------------------------
    async def get(
        self,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Dict[str, Any], Dict[str, str]]:
        return await self._request("GET", path, params=params)

    async def post(
        self,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Dict[str, Any], Dict[str, str]]:
        return await self._request("POST", path, json=json)

    async def put(
        self,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Dict[str, Any], Dict[str, str]]:
        return await self._request("PUT", path, json=json)

    async def delete(
        self,
        path: str,
    ) -> Tuple[Dict[str, Any], Dict[str, str]]:
        return await self._request("DELETE", path)
