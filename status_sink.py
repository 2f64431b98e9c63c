#!/usr/bin/env python3
"""
Update Sink — pushes a channel status change to the product API.

    POST {PRODUCT_API_ENDPOINT}
    Authorization: Bearer {API_SECRET}
    {"tag": "working", "title": "🟢 order-status", "productId": "8012345678"}

The sink never raises.  Every push returns a PushResult so the reconciler
decides what a failure means for its cache (retry next cycle vs. drop).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import aiohttp

logger = logging.getLogger("statusbot.sink")

PUSH_TIMEOUT_SEC = 15


class PushResult(str, Enum):
    SENT    = "sent"
    SKIPPED = "skipped"     # placeholder product id, nothing to update
    FAILED  = "failed"


@dataclass(frozen=True)
class StatusUpdate:
    tag:        str
    title:      str
    product_id: str

    def to_payload(self) -> dict:
        return {"tag": self.tag, "title": self.title, "productId": self.product_id}


class StatusSink:
    """
    aiohttp client for the product API.

    The session is created lazily on first push and owned by the sink;
    call `close()` on shutdown.  A session passed in by the caller is
    borrowed and left open.
    """

    def __init__(
        self,
        endpoint: str,
        api_secret: str,
        default_product_id: str = "unknown",
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._endpoint = endpoint
        self._api_secret = api_secret
        self._placeholder_ids = frozenset({default_product_id, "unknown"})
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=PUSH_TIMEOUT_SEC)
            )
            self._owns_session = True
        return self._session

    async def push(self, update: StatusUpdate) -> PushResult:
        if update.product_id in self._placeholder_ids:
            logger.warning("Skipping update for %r because productId %r is invalid.",
                           update.title, update.product_id)
            return PushResult.SKIPPED

        headers = {"Authorization": f"Bearer {self._api_secret}"}
        try:
            session = self._get_session()
            async with session.post(self._endpoint, json=update.to_payload(),
                                    headers=headers) as resp:
                body = await resp.text()
                if 200 <= resp.status < 300:
                    logger.info("Product %s updated to %r: HTTP %d",
                                update.product_id, update.tag, resp.status)
                    return PushResult.SENT
                logger.error("Error updating product %s: HTTP %d %s",
                             update.product_id, resp.status, body[:200])
                return PushResult.FAILED
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("Error updating product %s: %s", update.product_id, exc)
            return PushResult.FAILED

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
