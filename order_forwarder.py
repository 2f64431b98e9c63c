#!/usr/bin/env python3
"""
Order Forwarder — hands a paid checkout to the order-automation webhook.

Payload (Zapier "catch hook"):

    {
      "email": "buyer@example.com",
      "stripe_session_id": "cs_test_...",
      "shop_id": "hellservices.shop",
      "line_items": [
        {"title": ..., "quantity": 2, "original_price": "10.00",
         "final_price": "8.00", "variant_id": ...}
      ],
      "currency": "USD",
      "final_price": "20.00",
      "discount": "5.00",
      "payment_status": "paid"
    }

Cart prices and Stripe amounts are minor units; the payload carries
major-unit strings with two decimals.  Delivery is retried RETRY_MAX times
with exponential back-off (2s, 4s, 8s).  Failures are logged, never raised.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional

import aiohttp

from discount import LineItem, allocate_discount, cart_subtotal, to_major

logger = logging.getLogger("statusbot.forwarder")

RETRY_MAX: int = 3
REQUEST_TIMEOUT_SEC = 15
DEFAULT_EMAIL = "customer@example.com"
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def session_email(session: dict) -> str:
    details = session.get("customer_details") or {}
    return details.get("email") or DEFAULT_EMAIL


def _line_item(item: dict) -> LineItem:
    return LineItem(unit_price=int(item.get("price") or 0),
                    quantity=int(item.get("quantity") or 1))


def build_order_payload(
    session: dict,
    cart: dict,
    shop_id: str,
    default_variant_id: str = "default_variant",
) -> Optional[dict]:
    """
    Build the automation payload for a completed session.

    Returns None (and logs why) when the cart has no items or the buyer's
    email is not a plausible address.
    """
    items = cart.get("items") or []
    if not items:
        logger.error("No items found in cart data for session %s", session.get("id"))
        return None

    email = session_email(session)
    if not EMAIL_RE.match(email):
        logger.error("Invalid email address %r for session %s", email, session.get("id"))
        return None

    line_items = [_line_item(item) for item in items]
    subtotal = session.get("amount_subtotal")
    if subtotal is None:
        subtotal = cart_subtotal(line_items)
    amount_total = session.get("amount_total")
    if amount_total is None:
        amount_total = subtotal

    allocation = allocate_discount(subtotal, amount_total, line_items)

    return {
        "email":             email,
        "stripe_session_id": session.get("id"),
        "shop_id":           shop_id,
        "line_items": [
            {
                "title":          item.get("title") or "Product",
                "quantity":       line.item.quantity,
                "original_price": to_major(line.item.unit_price),
                "final_price":    to_major(line.final_unit_price),
                "variant_id":     item.get("variant_id") or default_variant_id,
            }
            for item, line in zip(items, allocation.lines)
        ],
        "currency":       "USD",
        "final_price":    to_major(amount_total),
        "discount":       to_major(allocation.discount),
        "payment_status": "paid",
    }


async def forward_order(
    url: str,
    payload: dict,
    session: Optional[aiohttp.ClientSession] = None,
    retries: int = RETRY_MAX,
    base_delay: float = 1.0,
) -> bool:
    """
    POST `payload` to `url`.  Retries transport errors and 5xx / 429 replies
    with back-off base_delay * 2**attempt.  Returns True on a 2xx.
    """
    owns_session = session is None
    if owns_session:
        session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SEC)
        )
    sid = payload.get("stripe_session_id")
    try:
        for attempt in range(retries + 1):
            try:
                async with session.post(url, json=payload) as resp:
                    if 200 <= resp.status < 300:
                        logger.info("Order %s sent to automation: HTTP %d", sid, resp.status)
                        return True
                    body = (await resp.text())[:200]
                    if resp.status < 500 and resp.status != 429:
                        logger.error("Automation rejected order %s: HTTP %d %s",
                                     sid, resp.status, body)
                        return False
                    reason = f"HTTP {resp.status} {body}"
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                reason = str(exc) or type(exc).__name__

            if attempt >= retries:
                logger.error("Error sending order %s to automation after %d attempts: %s",
                             sid, attempt + 1, reason)
                return False
            delay = base_delay * 2 ** (attempt + 1)
            logger.warning("Automation retry %d/%d for %s (backoff %.0fs): %s",
                           attempt + 1, retries, sid, delay, reason)
            await asyncio.sleep(delay)
        return False
    finally:
        if owns_session:
            await session.close()


class OrderForwarder:
    """Bound to one webhook URL; a None URL disables forwarding."""

    def __init__(self, url: Optional[str], default_variant_id: str = "default_variant"):
        self.url = url
        self.default_variant_id = default_variant_id

    async def __call__(self, session: dict, cart: dict, shop_id: str) -> bool:
        if not self.url:
            logger.info("ZAPIER_WEBHOOK_URL not set — order %s not forwarded",
                        session.get("id"))
            return False
        payload = build_order_payload(session, cart, shop_id, self.default_variant_id)
        if payload is None:
            return False
        logger.debug("Order payload for %s: %s", session.get("id"), payload)
        return await forward_order(self.url, payload)
