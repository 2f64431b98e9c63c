#!/usr/bin/env python3
"""
Checkout Store — carts, orders and shop tokens for the checkout API.

Defines AbstractCheckoutStore so checkout_api.py is decoupled from the
database.  SQLite is the default; Redis is a config switch:

    CHECKOUT_DB_BACKEND=redis REDIS_URL=redis://localhost:6379/0

or at runtime:

    from checkout_db import set_store
    from redis_backend import RedisCheckoutStore
    set_store(RedisCheckoutStore(url="redis://localhost:6379/0"))

Lifecycle guarantees (owned by the backend, not the API layer):
  - cart        unique cart_key, expires after CART_TTL_SEC
  - shop token  unique token, expires after TOKEN_TTL_SEC
  - order       unique session_id (DuplicateOrderError on a second insert),
                no expiry; shopifyOrderId attached by a single-row update

Orders are returned as dicts with the public field names:
  sessionId, email, line_items, currency, fulfillment, shopifyOrderId,
  shopId, createdAt
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from errors import DuplicateOrderError, StorageUnavailable

logger = logging.getLogger("statusbot.checkout_db")

CART_TTL_SEC = 3600
TOKEN_TTL_SEC = 3600


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ─── Abstract Interface ───────────────────────────────────────────────────────

class AbstractCheckoutStore(ABC):

    # ── Carts ─────────────────────────────────────────────────────────────────

    @abstractmethod
    def save_cart(self, cart_key: str, cart: dict) -> None:
        """Store a cart under a unique key. Expires after CART_TTL_SEC."""
        ...

    @abstractmethod
    def get_cart(self, cart_key: str) -> Optional[dict]:
        """Return the cart data, or None when missing or expired."""
        ...

    @abstractmethod
    def delete_cart(self, cart_key: str) -> None:
        ...

    # ── Shop tokens ───────────────────────────────────────────────────────────

    @abstractmethod
    def save_shop_token(self, token: str, shop_id: str) -> None:
        """Associate a checkout token with a shop. Expires after TOKEN_TTL_SEC."""
        ...

    @abstractmethod
    def get_shop_for_token(self, token: str) -> Optional[str]:
        ...

    # ── Orders ────────────────────────────────────────────────────────────────

    @abstractmethod
    def create_order(self, order: dict) -> dict:
        """
        Insert an order.  `order["sessionId"]` is the unique key; a second
        insert for the same session raises DuplicateOrderError.
        Returns the stored order (with createdAt).
        """
        ...

    @abstractmethod
    def get_order(self, session_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def attach_shopify_order_id(self, session_id: str,
                                shopify_order_id: str) -> Optional[dict]:
        """Set shopifyOrderId on an order. Returns the updated order or None."""
        ...

    def close(self) -> None:
        """Release connections. Default: nothing to release."""


# ─── SQLite Backend ───────────────────────────────────────────────────────────

class SQLiteCheckoutStore(AbstractCheckoutStore):
    """
    Default backend — stdlib sqlite3.

    TTLs are enforced on read (rows older than the TTL are invisible) and
    expired rows are purged whenever a new cart or token is written.
    """

    def __init__(self, db_path: Path = Path("checkout.db")):
        self._db_path = Path(db_path)
        self._init_db()

    def _conn(self) -> sqlite3.Connection:
        try:
            if self._db_path.parent != Path("."):
                self._db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self._db_path), timeout=5.0)
        except (sqlite3.Error, OSError) as exc:
            raise StorageUnavailable("checkout database unavailable", detail=str(exc)) from exc
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS carts (
                    cart_key    TEXT PRIMARY KEY,
                    cart_data   TEXT NOT NULL,
                    created_at  REAL NOT NULL
                );

                CREATE TABLE IF NOT EXISTS shop_tokens (
                    token       TEXT PRIMARY KEY,
                    shop_id     TEXT NOT NULL,
                    created_at  REAL NOT NULL
                );

                CREATE TABLE IF NOT EXISTS orders (
                    session_id        TEXT PRIMARY KEY,
                    email             TEXT NOT NULL,
                    line_items        TEXT NOT NULL,
                    currency          TEXT NOT NULL,
                    fulfillment       TEXT,
                    shopify_order_id  TEXT,
                    shop_id           TEXT NOT NULL,
                    created_at        TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_carts_created
                    ON carts (created_at);
                CREATE INDEX IF NOT EXISTS idx_tokens_created
                    ON shop_tokens (created_at);
            """)

    def _run(self, what: str, fn):
        try:
            with self._conn() as conn:
                return fn(conn)
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"{what} failed", detail=str(exc)) from exc

    def _purge_expired(self, conn: sqlite3.Connection) -> None:
        now = time.time()
        conn.execute("DELETE FROM carts WHERE created_at < ?", (now - CART_TTL_SEC,))
        conn.execute("DELETE FROM shop_tokens WHERE created_at < ?", (now - TOKEN_TTL_SEC,))

    # ── Carts ─────────────────────────────────────────────────────────────────

    def save_cart(self, cart_key: str, cart: dict) -> None:
        def _save(conn):
            self._purge_expired(conn)
            conn.execute(
                "INSERT INTO carts (cart_key, cart_data, created_at) VALUES (?,?,?)",
                (cart_key, json.dumps(cart), time.time()),
            )
        try:
            self._run("save cart", _save)
        except sqlite3.IntegrityError as exc:
            raise StorageUnavailable("cart key collision", detail=str(exc)) from exc

    def get_cart(self, cart_key: str) -> Optional[dict]:
        cutoff = time.time() - CART_TTL_SEC
        row = self._run("get cart", lambda conn: conn.execute(
            "SELECT cart_data FROM carts WHERE cart_key = ? AND created_at >= ?",
            (cart_key, cutoff),
        ).fetchone())
        return json.loads(row["cart_data"]) if row else None

    def delete_cart(self, cart_key: str) -> None:
        self._run("delete cart", lambda conn: conn.execute(
            "DELETE FROM carts WHERE cart_key = ?", (cart_key,)
        ))

    # ── Shop tokens ───────────────────────────────────────────────────────────

    def save_shop_token(self, token: str, shop_id: str) -> None:
        def _save(conn):
            self._purge_expired(conn)
            conn.execute(
                "INSERT INTO shop_tokens (token, shop_id, created_at) VALUES (?,?,?)",
                (token, shop_id, time.time()),
            )
        try:
            self._run("save shop token", _save)
        except sqlite3.IntegrityError as exc:
            raise StorageUnavailable("shop token collision", detail=str(exc)) from exc

    def get_shop_for_token(self, token: str) -> Optional[str]:
        cutoff = time.time() - TOKEN_TTL_SEC
        row = self._run("get shop token", lambda conn: conn.execute(
            "SELECT shop_id FROM shop_tokens WHERE token = ? AND created_at >= ?",
            (token, cutoff),
        ).fetchone())
        return row["shop_id"] if row else None

    # ── Orders ────────────────────────────────────────────────────────────────

    def create_order(self, order: dict) -> dict:
        stored = {**order, "shopifyOrderId": order.get("shopifyOrderId"),
                  "createdAt": order.get("createdAt") or now_iso()}
        try:
            self._run("create order", lambda conn: conn.execute(
                """INSERT INTO orders
                    (session_id, email, line_items, currency, fulfillment,
                     shopify_order_id, shop_id, created_at)
                   VALUES (?,?,?,?,?,?,?,?)""",
                (stored["sessionId"], stored["email"],
                 json.dumps(stored["line_items"]), stored["currency"],
                 json.dumps(stored.get("fulfillment") or {}),
                 stored["shopifyOrderId"], stored["shopId"], stored["createdAt"]),
            ))
        except sqlite3.IntegrityError as exc:
            raise DuplicateOrderError(stored["sessionId"]) from exc
        return stored

    def get_order(self, session_id: str) -> Optional[dict]:
        row = self._run("get order", lambda conn: conn.execute(
            "SELECT * FROM orders WHERE session_id = ?", (session_id,)
        ).fetchone())
        return self._row_to_order(row) if row else None

    def attach_shopify_order_id(self, session_id: str,
                                shopify_order_id: str) -> Optional[dict]:
        cur = self._run("update order", lambda conn: conn.execute(
            "UPDATE orders SET shopify_order_id = ? WHERE session_id = ?",
            (shopify_order_id, session_id),
        ))
        if cur.rowcount == 0:
            return None
        return self.get_order(session_id)

    @staticmethod
    def _row_to_order(row: sqlite3.Row) -> dict:
        return {
            "sessionId":      row["session_id"],
            "email":          row["email"],
            "line_items":     json.loads(row["line_items"]),
            "currency":       row["currency"],
            "fulfillment":    json.loads(row["fulfillment"]) if row["fulfillment"] else {},
            "shopifyOrderId": row["shopify_order_id"],
            "shopId":         row["shop_id"],
            "createdAt":      row["created_at"],
        }


# ─── Store Registry ───────────────────────────────────────────────────────────

_store: Optional[AbstractCheckoutStore] = None


def get_store() -> AbstractCheckoutStore:
    global _store
    if _store is None:
        _store = SQLiteCheckoutStore()
    return _store


def set_store(store: AbstractCheckoutStore) -> None:
    """Swap the active store; close() is called on the outgoing one."""
    global _store
    if not isinstance(store, AbstractCheckoutStore):
        raise TypeError(
            f"Store must be an AbstractCheckoutStore subclass, "
            f"got {type(store).__name__}"
        )
    if _store is not None and _store is not store:
        _store.close()
    _store = store


def store_from_settings(settings) -> AbstractCheckoutStore:
    """Build the backend named by CheckoutSettings.db_backend."""
    if settings.db_backend == "redis":
        from redis_backend import RedisCheckoutStore
        return RedisCheckoutStore(url=settings.redis_url)
    return SQLiteCheckoutStore(settings.db_path)
