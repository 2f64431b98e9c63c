#!/usr/bin/env python3
"""
test_order_forwarder.py — automation payload + delivery with back-off

Tests:
  1. Payload       — prices in major units, discount spread over lines
  2. Fallbacks     — subtotal from cart, default variant, default email
  3. Rejections    — empty cart, invalid email → no payload
  4. Delivery      — 2xx first try; 5xx retried then succeeds; 4xx not retried;
                     gives up after RETRY_MAX retries without raising
  5. Disabled      — no webhook URL → nothing sent

Run:
    python3 -m pytest test_order_forwarder.py -v
"""

import asyncio
import unittest.mock as mock

import aiohttp
import pytest

from order_forwarder import OrderForwarder, build_order_payload, forward_order


def _check(label: str, condition: bool, detail: str = "") -> None:
    suffix = f"  ({detail})" if detail else ""
    if not condition:
        raise AssertionError(f"FAILED: {label}{suffix}")


SESSION = {
    "id": "cs_test_123",
    "amount_subtotal": 2500,
    "amount_total": 2000,
    "customer_details": {"email": "buyer@example.com"},
}
CART = {
    "items": [
        {"title": "Aimbot", "price": 1000, "quantity": 2, "variant_id": 42},
        {"title": "ESP", "price": 500, "quantity": 1},
    ],
}


# ─── Test 1–3: Payload ────────────────────────────────────────────────────────

def test_payload_shape():
    p = build_order_payload(SESSION, CART, "hellservices.shop", "default_variant")
    _check("email", p["email"] == "buyer@example.com")
    _check("session id", p["stripe_session_id"] == "cs_test_123")
    _check("shop", p["shop_id"] == "hellservices.shop")
    _check("totals", (p["final_price"], p["discount"]) == ("20.00", "5.00"), str(p))
    _check("fixed fields", (p["currency"], p["payment_status"]) == ("USD", "paid"))

    first, second = p["line_items"]
    _check("line 1", first == {"title": "Aimbot", "quantity": 2, "original_price": "10.00",
                               "final_price": "8.00", "variant_id": 42}, str(first))
    _check("line 2", second == {"title": "ESP", "quantity": 1, "original_price": "5.00",
                                "final_price": "4.00", "variant_id": "default_variant"},
           str(second))


def test_subtotal_from_cart_when_session_lacks_it():
    session = {"id": "cs_1", "amount_total": 2000}
    p = build_order_payload(session, CART, "shop", "v")
    _check("discount derived from cart subtotal", p["discount"] == "5.00", p["discount"])


def test_default_email():
    session = {"id": "cs_1", "amount_subtotal": 500, "amount_total": 500}
    p = build_order_payload(session, {"items": [{"price": 500}]}, "shop")
    _check("default email", p["email"] == "customer@example.com")
    _check("default title", p["line_items"][0]["title"] == "Product")
    _check("no discount", p["discount"] == "0.00")


def test_empty_cart_rejected():
    _check("no items → None", build_order_payload(SESSION, {"items": []}, "shop") is None)


@pytest.mark.parametrize("email", ["not-an-email", "a b@c.d", "x@y"])
def test_invalid_email_rejected(email):
    session = {**SESSION, "customer_details": {"email": email}}
    _check(f"{email!r} → None", build_order_payload(session, CART, "shop") is None)


# ─── Test 4: Delivery ─────────────────────────────────────────────────────────

def _session(*steps):
    """Each step is an HTTP status or an exception, consumed per POST."""
    session = mock.MagicMock()
    session.closed = False
    calls = []

    def post(url, json=None):
        step = steps[len(calls)]
        calls.append(json)
        if isinstance(step, BaseException):
            raise step
        resp = mock.MagicMock()
        resp.status = step
        resp.text = mock.AsyncMock(return_value="")
        cm = mock.MagicMock()
        cm.__aenter__.return_value = resp
        return cm

    session.post.side_effect = post
    return session, calls


def _forward(session, retries=3):
    with mock.patch("order_forwarder.asyncio.sleep", new=mock.AsyncMock()) as sleep:
        ok = asyncio.run(forward_order("https://hooks.example/catch", {"stripe_session_id": "cs"},
                                       session=session, retries=retries))
    return ok, sleep


def test_delivered_first_try():
    session, calls = _session(200)
    ok, sleep = _forward(session)
    _check("delivered", ok and len(calls) == 1)
    _check("no back-off", not sleep.called)


def test_retries_5xx_then_succeeds():
    session, calls = _session(502, aiohttp.ClientConnectionError("reset"), 200)
    ok, sleep = _forward(session)
    _check("delivered on third attempt", ok and len(calls) == 3, str(len(calls)))
    delays = [c.args[0] for c in sleep.await_args_list]
    _check("exponential back-off", delays == [2.0, 4.0], str(delays))


def test_4xx_not_retried():
    session, calls = _session(400)
    ok, _ = _forward(session)
    _check("gave up immediately", not ok and len(calls) == 1)


def test_gives_up_after_retries():
    session, calls = _session(500, 500, 500, 500)
    ok, sleep = _forward(session, retries=3)
    _check("four attempts", len(calls) == 4, str(len(calls)))
    _check("not delivered, no exception", ok is False)
    _check("three back-offs", sleep.await_count == 3)


# ─── Test 5: Disabled ─────────────────────────────────────────────────────────

def test_forwarder_without_url_sends_nothing():
    forwarder = OrderForwarder(None)
    with mock.patch("order_forwarder.forward_order", new=mock.AsyncMock()) as fwd:
        ok = asyncio.run(forwarder(SESSION, CART, "shop"))
    _check("not sent", ok is False and not fwd.called)


def test_forwarder_posts_payload():
    forwarder = OrderForwarder("https://hooks.example/catch", "dv")
    with mock.patch("order_forwarder.forward_order",
                    new=mock.AsyncMock(return_value=True)) as fwd:
        ok = asyncio.run(forwarder(SESSION, CART, "shop"))
    url, payload = fwd.await_args.args
    _check("sent", ok and url == "https://hooks.example/catch")
    _check("default variant applied", payload["line_items"][1]["variant_id"] == "dv")


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
