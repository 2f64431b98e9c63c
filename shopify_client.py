#!/usr/bin/env python3
"""
Shopify Admin REST client — the one call the product API needs.

    PUT https://{store}/admin/api/2023-07/products/{id}.json
    X-Shopify-Access-Token: {token}
    {"product": {"id": ..., "tags": "working"}}

Non-2xx responses and transport errors raise errors.UpstreamFailure.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp

from errors import UpstreamFailure

logger = logging.getLogger("statusbot.shopify")

API_VERSION = "2023-07"
REQUEST_TIMEOUT_SEC = 15


class ShopifyClient:
    def __init__(self, store: str, access_token: str,
                 session: Optional[aiohttp.ClientSession] = None):
        self._store = store.strip().replace("https://", "").replace("http://", "").rstrip("/")
        self._token = access_token
        self._session = session
        self._owns_session = session is None

    def product_url(self, product_id: str) -> str:
        return f"https://{self._store}/admin/api/{API_VERSION}/products/{product_id}.json"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SEC)
            )
            self._owns_session = True
        return self._session

    async def update_product_tag(self, product_id: str, tag: str) -> dict:
        """Replace the product's tags with `tag`. Returns Shopify's JSON body."""
        url = self.product_url(product_id)
        payload = {"product": {"id": product_id, "tags": tag}}
        headers = {
            "X-Shopify-Access-Token": self._token,
            "Content-Type": "application/json",
        }
        try:
            async with self._get_session().put(url, json=payload, headers=headers) as resp:
                if not 200 <= resp.status < 300:
                    text = await resp.text()
                    logger.error("Failed to update product %s: HTTP %d %s",
                                 product_id, resp.status, text[:200])
                    raise UpstreamFailure(
                        f"Shopify returned HTTP {resp.status}",
                        status_code=resp.status, endpoint=url,
                    )
                data = await resp.json(content_type=None)
                logger.info("Updated product %s with tag %r: HTTP %d",
                            product_id, tag, resp.status)
                return data or {}
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("Failed to update product %s: %s", product_id, exc)
            raise UpstreamFailure(str(exc), endpoint=url) from exc

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
