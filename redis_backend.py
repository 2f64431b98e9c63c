#!/usr/bin/env python3
"""
Redis Backend — checkout store for multi-instance deployments.

Drop-in replacement for SQLiteCheckoutStore.  Activate via the environment:

    CHECKOUT_DB_BACKEND=redis
    REDIS_URL=redis://localhost:6379/0

Or at runtime:
    from checkout_db import set_store
    from redis_backend import RedisCheckoutStore
    set_store(RedisCheckoutStore(url="redis://localhost:6379/0"))

Key design:
  - Namespace prefix  "checkout:"  prevents collisions with other apps
  - Carts and shop tokens use SET NX EX, so uniqueness and expiry are
    enforced by Redis itself
  - Orders are hashes written in one WATCH/MULTI transaction that first
    checks the key, so an order is stored whole or not at all and a second
    insert for the same session raises DuplicateOrderError
  - shopifyOrderId is attached inside a WATCH/MULTI transaction so an order
    deleted concurrently is never resurrected as a partial hash

Dependencies:  pip install redis
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Optional

import redis as _redis
from redis import ConnectionPool

from checkout_db import (
    CART_TTL_SEC,
    TOKEN_TTL_SEC,
    AbstractCheckoutStore,
    now_iso,
)
from errors import DuplicateOrderError, StorageUnavailable

logger = logging.getLogger("statusbot.redis")


# ─── Key schema ───────────────────────────────────────────────────────────────
#
#  checkout:cart:{cart_key}        → JSON string  (cart data, EX=CART_TTL_SEC)
#  checkout:shop_token:{token}     → string       (shop id, EX=TOKEN_TTL_SEC)
#  checkout:order:{session_id}     → hash         (all order fields)


class RedisCheckoutStore(AbstractCheckoutStore):
    """
    Redis implementation of AbstractCheckoutStore.

    checkout_api.py calls get_store().save_cart(...) without knowing which
    backend is active.
    """

    NAMESPACE = "checkout:"

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        max_connections: int = 50,
        socket_timeout: float = 5.0,
    ):
        self.pool = ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            socket_timeout=socket_timeout,
            decode_responses=True,  # strings, not bytes
        )
        self.client = _redis.Redis(connection_pool=self.pool)

    # ─── Internal helpers ──────────────────────────────────────────────────

    def _k(self, category: str, *parts: str) -> str:
        """Build a namespaced Redis key."""
        return self.NAMESPACE + category + (":" + ":".join(str(p) for p in parts) if parts else "")

    @contextmanager
    def _guard(self, what: str):
        try:
            yield
        except _redis.RedisError as exc:
            logger.error("Redis %s failed: %s", what, exc)
            raise StorageUnavailable(f"{what} failed", detail=str(exc)) from exc

    # ─── Carts ─────────────────────────────────────────────────────────────

    def save_cart(self, cart_key: str, cart: dict) -> None:
        with self._guard("save cart"):
            created = self.client.set(
                self._k("cart", cart_key), json.dumps(cart), nx=True, ex=CART_TTL_SEC,
            )
        if not created:
            raise StorageUnavailable("cart key collision", detail=cart_key)

    def get_cart(self, cart_key: str) -> Optional[dict]:
        with self._guard("get cart"):
            raw = self.client.get(self._k("cart", cart_key))
        return json.loads(raw) if raw else None

    def delete_cart(self, cart_key: str) -> None:
        with self._guard("delete cart"):
            self.client.delete(self._k("cart", cart_key))

    # ─── Shop tokens ───────────────────────────────────────────────────────

    def save_shop_token(self, token: str, shop_id: str) -> None:
        with self._guard("save shop token"):
            created = self.client.set(
                self._k("shop_token", token), shop_id, nx=True, ex=TOKEN_TTL_SEC,
            )
        if not created:
            raise StorageUnavailable("shop token collision", detail=token)

    def get_shop_for_token(self, token: str) -> Optional[str]:
        with self._guard("get shop token"):
            return self.client.get(self._k("shop_token", token))

    # ─── Orders ────────────────────────────────────────────────────────────

    def create_order(self, order: dict) -> dict:
        stored = {**order, "shopifyOrderId": order.get("shopifyOrderId"),
                  "createdAt": order.get("createdAt") or now_iso()}
        key = self._k("order", stored["sessionId"])
        with self._guard("create order"):
            with self.client.pipeline() as pipe:
                while True:
                    try:
                        pipe.watch(key)
                        if pipe.exists(key):
                            pipe.unwatch()
                            raise DuplicateOrderError(stored["sessionId"])
                        # all fields land in one EXEC or not at all
                        pipe.multi()
                        pipe.hset(key, mapping=self._serialise_order(stored))
                        pipe.execute()
                        return stored
                    except _redis.WatchError:
                        logger.debug("Order %s claimed concurrently, re-checking",
                                     stored["sessionId"])
                        continue

    def get_order(self, session_id: str) -> Optional[dict]:
        with self._guard("get order"):
            data = self.client.hgetall(self._k("order", session_id))
        if not data:
            return None
        return self._deserialise_order(data)

    def attach_shopify_order_id(self, session_id: str,
                                shopify_order_id: str) -> Optional[dict]:
        key = self._k("order", session_id)
        with self._guard("update order"):
            with self.client.pipeline() as pipe:
                while True:
                    try:
                        pipe.watch(key)
                        if not pipe.exists(key):
                            pipe.unwatch()
                            return None
                        pipe.multi()
                        pipe.hset(key, "shopifyOrderId", shopify_order_id)
                        pipe.hgetall(key)
                        _, data = pipe.execute()
                        return self._deserialise_order(data)
                    except _redis.WatchError:
                        logger.debug("Order %s changed during update, retrying", session_id)
                        continue

    @staticmethod
    def _serialise_order(order: dict) -> dict:
        return {
            "sessionId":      order["sessionId"],
            "email":          order["email"],
            "line_items":     json.dumps(order["line_items"]),
            "currency":       order["currency"],
            "fulfillment":    json.dumps(order.get("fulfillment") or {}),
            "shopifyOrderId": order.get("shopifyOrderId") or "",
            "shopId":         order["shopId"],
            "createdAt":      order["createdAt"],
        }

    @staticmethod
    def _deserialise_order(data: dict) -> dict:
        result = dict(data)
        for field in ("line_items", "fulfillment"):
            if result.get(field):
                result[field] = json.loads(result[field])
        result.setdefault("fulfillment", {})
        result["shopifyOrderId"] = result.get("shopifyOrderId") or None
        return result

    # ─── Lifecycle ─────────────────────────────────────────────────────────

    def close(self) -> None:
        """Drain active connections back to the pool, then disconnect."""
        try:
            self.client.close()
            self.pool.disconnect()
        except _redis.RedisError as exc:
            logger.warning("Redis close failed: %s", exc)
