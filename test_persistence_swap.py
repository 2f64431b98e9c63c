#!/usr/bin/env python3
"""
test_persistence_swap.py — Checkout store swap integration test

Tests:
  1.  SQLite write → read-back
  2.  Live swap from SQLite → RedisCheckoutStore
  3.  Redis is empty after swap (no data migrated — expected)
  4.  Redis write → read-back, duplicate order rejected, Shopify id attached
  5.  Swap back to SQLite → Redis data absent (isolated stores)
  6.  set_store() calls close() on the outgoing store (no leaked connections)
  7.  A failed order insert writes nothing; the retry stores the whole order

Redis tests are SKIPPED automatically when Redis is not reachable.
Run with a live Redis:
    redis-server --daemonize yes
    python3 -m pytest test_persistence_swap.py -v
"""

import unittest.mock as mock
import uuid

import pytest
import redis

import checkout_db
from checkout_db import SQLiteCheckoutStore, get_store, set_store
from errors import DuplicateOrderError, StorageUnavailable
from redis_backend import RedisCheckoutStore

REDIS_URL = "redis://localhost:6379/0"


def _check(label: str, condition: bool, detail: str = "") -> None:
    suffix = f"  ({detail})" if detail else ""
    if not condition:
        raise AssertionError(f"FAILED: {label}{suffix}")


def _redis_reachable(url: str = REDIS_URL) -> bool:
    """Ping Redis — returns False instead of raising if unreachable."""
    try:
        client = redis.from_url(url, socket_timeout=1.0, decode_responses=True)
        client.ping()
        client.close()
        return True
    except (redis.RedisError, OSError):
        return False


needs_redis = pytest.mark.skipif(not _redis_reachable(),
                                 reason=f"Redis not reachable at {REDIS_URL}")


def _order(session_id: str) -> dict:
    return {
        "sessionId": session_id,
        "email": "swap@test.com",
        "line_items": [{"title": "Aimbot", "quantity": 2, "price": "10.00",
                        "variant_id": "default_variant"}],
        "currency": "USD",
        "fulfillment": {},
        "shopId": "hellservices.shop",
    }


@pytest.fixture(autouse=True)
def _fresh_registry(monkeypatch):
    monkeypatch.setattr(checkout_db, "_store", None)


# ─── Test 1: SQLite write → read-back ────────────────────────────────────────

def test_sqlite_write_read(tmp_path):
    set_store(SQLiteCheckoutStore(tmp_path / "swap.db"))
    db = get_store()

    key = uuid.uuid4().hex[:16]
    db.save_cart(key, {"items": [{"price": 1000, "quantity": 2}], "currency": "USD"})
    _check("cart read back", db.get_cart(key)["currency"] == "USD")

    sid = f"cs_swap_{uuid.uuid4().hex[:8]}"
    db.create_order(_order(sid))
    _check("order read back", db.get_order(sid)["email"] == "swap@test.com")


# ─── Tests 2–7: Redis ────────────────────────────────────────────────────────

@needs_redis
def test_redis_swap(tmp_path):
    sqlite_db = SQLiteCheckoutStore(tmp_path / "swap.db")
    set_store(sqlite_db)
    sqlite_sid = f"cs_sqlite_{uuid.uuid4().hex[:8]}"
    sqlite_db.create_order(_order(sqlite_sid))

    # [2] swap
    redis_db = RedisCheckoutStore(url=REDIS_URL)
    set_store(redis_db)
    db = get_store()
    _check("get_store() returns RedisCheckoutStore", type(db).__name__ == "RedisCheckoutStore")

    # [3] isolation
    _check("SQLite order absent in Redis", db.get_order(sqlite_sid) is None, sqlite_sid)

    # [4] write → read-back
    key = uuid.uuid4().hex[:16]
    db.save_cart(key, {"items": [{"price": 500, "quantity": 1}], "currency": "USD"})
    _check("Redis cart read back", db.get_cart(key)["items"][0]["price"] == 500)
    ttl = redis_db.client.ttl(redis_db._k("cart", key))
    _check("Redis cart carries a TTL", 0 < ttl <= checkout_db.CART_TTL_SEC, str(ttl))
    with pytest.raises(StorageUnavailable):
        db.save_cart(key, {"items": []})
    db.delete_cart(key)
    _check("Redis cart deleted", db.get_cart(key) is None)

    token = uuid.uuid4().hex
    db.save_shop_token(token, "shop-two.myshopify.com")
    _check("Redis token resolves", db.get_shop_for_token(token) == "shop-two.myshopify.com")

    sid = f"cs_redis_{uuid.uuid4().hex[:8]}"
    db.create_order(_order(sid))
    got = db.get_order(sid)
    _check("Redis order read back", got["line_items"][0]["quantity"] == 2, str(got))
    _check("Redis order has no Shopify id", got["shopifyOrderId"] is None)
    with pytest.raises(DuplicateOrderError):
        db.create_order(_order(sid))

    updated = db.attach_shopify_order_id(sid, "5550002")
    _check("Redis Shopify id attached", updated["shopifyOrderId"] == "5550002", str(updated))
    _check("Redis unknown order → None", db.attach_shopify_order_id("cs_nope_x", "1") is None)
    _check("no partial hash created", db.get_order("cs_nope_x") is None)

    # [5] + [6] swap back, outgoing store closed
    with mock.patch.object(redis_db, "close", wraps=redis_db.close) as closed:
        set_store(SQLiteCheckoutStore(tmp_path / "swap2.db"))
    _check("close() called on Redis store", closed.called)
    _check("Redis order absent in new SQLite", get_store().get_order(sid) is None)

    cleanup = redis.from_url(REDIS_URL)
    cleanup.delete(redis_db._k("order", sid), redis_db._k("shop_token", token))
    cleanup.close()


def test_redis_order_insert_is_one_transaction():
    store = RedisCheckoutStore(url="redis://localhost:1/0", socket_timeout=0.2)
    with mock.patch.object(store.client, "pipeline") as pipeline, \
         mock.patch.object(store.client, "hsetnx") as hsetnx, \
         mock.patch.object(store.client, "hset") as hset:
        pipe = pipeline.return_value.__enter__.return_value
        pipe.exists.return_value = 0
        pipe.execute.side_effect = redis.ConnectionError("connection reset")
        with pytest.raises(StorageUnavailable):
            store.create_order(_order("cs_partial"))

    _check("fields queued inside MULTI", pipe.multi.called and pipe.hset.called)
    fields = pipe.hset.call_args.kwargs["mapping"]
    _check("whole order in one write", fields["email"] == "swap@test.com"
           and "line_items" in fields, str(fields))
    _check("no write outside the transaction", not hsetnx.called and not hset.called)


@needs_redis
def test_redis_failed_insert_leaves_no_partial_order():
    store = RedisCheckoutStore(url=REDIS_URL)
    sid = f"cs_fail_{uuid.uuid4().hex[:8]}"
    with mock.patch("redis.client.Pipeline.execute",
                    side_effect=redis.ConnectionError("connection reset")):
        with pytest.raises(StorageUnavailable):
            store.create_order(_order(sid))
    _check("nothing stored after failed insert", store.get_order(sid) is None)

    store.create_order(_order(sid))
    got = store.get_order(sid)
    _check("retry stores the full order", got["email"] == "swap@test.com"
           and got["line_items"][0]["title"] == "Aimbot", str(got))

    store.client.delete(store._k("order", sid))
    store.close()


def test_redis_errors_become_storage_unavailable():
    store = RedisCheckoutStore(url="redis://localhost:1/0", socket_timeout=0.2)
    with mock.patch.object(store.client, "get",
                           side_effect=redis.ConnectionError("connection refused")):
        with pytest.raises(StorageUnavailable) as exc_info:
            store.get_cart("anything")
    _check("detail kept for the log", "refused" in exc_info.value.detail)


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
