#!/usr/bin/env python3
"""
Checkout API — Shopify cart → Stripe Checkout → order automation.

Endpoints
─────────
  GET  /                              health check
  POST /register-shop                 issue a checkout token bound to a shop
  POST /create-checkout-session       cart.js JSON → {url}
  POST /webhook                       Stripe events (signed)
  GET  /order-details?session_id=     stored order
  POST /update-order                  {sessionId, shopifyOrderId}

Flow:
  storefront ──cart──► create-checkout-session ──► Stripe Checkout
  Stripe ──checkout.session.completed──► webhook ──► order row ──► automation
  automation ──shopifyOrderId──► update-order

Run:
    python3 checkout_api.py
    uvicorn checkout_api:create_app --factory --port 3000
"""

from __future__ import annotations

import json
import logging
import secrets
import string
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional, Union
from urllib.parse import urlparse

import stripe
from fastapi import BackgroundTasks, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field, StrictStr
from starlette.concurrency import run_in_threadpool

from checkout_db import AbstractCheckoutStore, store_from_settings
from discount import to_major
from errors import (
    DuplicateOrderError,
    InvalidInput,
    NotFound,
    StorageUnavailable,
    UpstreamFailure,
    install_error_handlers,
)
from order_forwarder import OrderForwarder, session_email
from settings import CheckoutSettings, setup_logging

logger = logging.getLogger("statusbot.checkout")

CART_KEY_LENGTH = 16
_CART_KEY_ALPHABET = string.ascii_letters + string.digits

ForwardFn = Callable[[dict, dict, str], Awaitable[bool]]


# ─── Request models ───────────────────────────────────────────────────────────

class CartItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    title:      Optional[str] = None
    price:      int = Field(ge=0)           # minor units, as in Shopify /cart.js
    quantity:   int = Field(default=1, ge=1)
    variant_id: Optional[Union[StrictStr, int]] = None


class Cart(BaseModel):
    model_config = ConfigDict(extra="allow")

    items:          list[CartItem] = Field(default_factory=list)
    currency:       Optional[str] = None
    total_discount: int = Field(default=0, ge=0)
    attributes:     Optional[dict] = None
    checkout_token: Optional[str] = None


class RegisterShop(BaseModel):
    shop_id:        Optional[str] = None
    checkout_token: Optional[str] = None


class OrderUpdate(BaseModel):
    sessionId:      Optional[StrictStr] = None
    shopifyOrderId: Optional[Union[StrictStr, int]] = None


# ─── Helpers ──────────────────────────────────────────────────────────────────

def new_cart_key() -> str:
    return "".join(secrets.choice(_CART_KEY_ALPHABET) for _ in range(CART_KEY_LENGTH))


def new_shop_token() -> str:
    """32 hex characters."""
    return secrets.token_hex(16)


def _hostname(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    return urlparse(url).hostname


async def resolve_shop_id(
    request: Request,
    store: AbstractCheckoutStore,
    default_shop_id: str,
    checkout_token: Optional[str] = None,
) -> str:
    """
    checkout token → X-Shop-ID header → Referer host → Origin host → default.
    """
    if checkout_token:
        try:
            shop_id = await run_in_threadpool(store.get_shop_for_token, checkout_token)
        except StorageUnavailable as exc:
            logger.warning("Shop token lookup failed, falling back to headers: %s", exc.detail)
            shop_id = None
        if shop_id:
            logger.info("Found shop %s using token %s", shop_id, checkout_token)
            return shop_id

    header_shop = request.headers.get("x-shop-id", "").strip()
    if header_shop:
        logger.info("Using shop ID from X-Shop-ID header: %s", header_shop)
        return header_shop

    for name in ("referer", "origin"):
        host = _hostname(request.headers.get(name))
        if host:
            logger.info("Extracted shop ID from %s: %s", name, host)
            return host

    logger.info("Using default shop ID: %s", default_shop_id)
    return default_shop_id


def stripe_line_items(cart: Cart) -> list[dict]:
    return [
        {
            "price_data": {
                "currency": "usd",
                "product_data": {"name": item.title or "Product"},
                "unit_amount": item.price,
            },
            "quantity": item.quantity,
        }
        for item in cart.items
    ]


def order_summary(session: dict, cart: dict, shop_id: str, default_variant_id: str) -> dict:
    """The stored order for a completed session."""
    return {
        "sessionId": session["id"],
        "email":     session_email(session),
        "line_items": [
            {
                "title":      item.get("title") or "Product",
                "quantity":   item.get("quantity") or 1,
                "price":      to_major(item.get("price") or 0),
                "variant_id": item.get("variant_id") or default_variant_id,
            }
            for item in cart.get("items") or []
        ],
        "currency":    "USD",
        "fulfillment": cart.get("attributes") or {},
        "shopId":      shop_id,
    }


# ─── App factory ──────────────────────────────────────────────────────────────

def create_app(
    settings: Optional[CheckoutSettings] = None,
    store: Optional[AbstractCheckoutStore] = None,
    forwarder: Optional[ForwardFn] = None,
) -> FastAPI:
    settings = settings or CheckoutSettings.from_env()
    store = store or store_from_settings(settings)
    forwarder = forwarder or OrderForwarder(settings.zapier_webhook_url,
                                            settings.default_variant_id)
    stripe.api_key = settings.stripe_secret_key

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        store.close()

    app = FastAPI(
        title="Stripe Checkout Service",
        description="Shopify cart → Stripe Checkout → order automation",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "X-Shop-ID"],
    )
    install_error_handlers(app)

    @app.get("/", response_class=PlainTextResponse)
    def health():
        return "Stripe Checkout Service is running."

    @app.post("/register-shop")
    async def register_shop(request: Request, body: Optional[RegisterShop] = None):
        body = body or RegisterShop()
        shop_id = (body.shop_id or "").strip() or await resolve_shop_id(
            request, store, settings.default_shop_id, body.checkout_token)
        token = new_shop_token()
        await run_in_threadpool(store.save_shop_token, token, shop_id)
        logger.info("Registered shop %s with token %s", shop_id, token)
        return {"token": token}

    @app.post("/create-checkout-session")
    async def create_checkout_session(request: Request, cart: Cart):
        shop_id = await resolve_shop_id(request, store, settings.default_shop_id,
                                        cart.checkout_token)
        logger.info("Using shop ID for checkout: %s", shop_id)

        if not cart.items or not cart.currency:
            raise InvalidInput("Cart is empty, invalid, or missing currency")
        if cart.currency.strip().lower() != "usd":
            raise InvalidInput("Currency must be USD")

        cart_key = new_cart_key()
        await run_in_threadpool(store.save_cart, cart_key,
                                cart.model_dump(exclude={"checkout_token"}))

        line_items = stripe_line_items(cart)
        params = {
            "payment_method_types": ["card"],
            "mode": "payment",
            "line_items": line_items,
            "success_url": settings.success_url,
            "cancel_url": settings.cancel_url,
            "metadata": {"cart_key": cart_key, "shop_id": shop_id},
        }
        try:
            if cart.total_discount > 0:
                total = sum(li["price_data"]["unit_amount"] * li["quantity"] for li in line_items)
                coupon = await run_in_threadpool(
                    stripe.Coupon.create,
                    amount_off=min(total, cart.total_discount),
                    currency="usd",
                    duration="once",
                )
                params["discounts"] = [{"coupon": coupon.id}]
            session = await run_in_threadpool(stripe.checkout.Session.create, **params)
        except stripe.StripeError as exc:
            logger.error("Error creating Checkout session for cart %s: %s", cart_key, exc)
            raise UpstreamFailure(str(exc), status_code=getattr(exc, "http_status", 0) or 0,
                                  endpoint="stripe.checkout.Session.create") from exc

        logger.info("Created session %s for cart %s (shop %s)", session.id, cart_key, shop_id)
        return {"url": session.url}

    @app.post("/webhook")
    async def webhook(
        request: Request,
        background: BackgroundTasks,
        stripe_signature: Optional[str] = Header(None),
    ):
        payload = await request.body()
        try:
            stripe.Webhook.construct_event(payload, stripe_signature,
                                           settings.stripe_webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            logger.error("Webhook signature verification failed: %s", exc)
            raise InvalidInput("Webhook signature verification failed") from exc

        # signature checked; the raw body and the constructed event are identical
        event = json.loads(payload)
        if event.get("type") != "checkout.session.completed":
            logger.debug("Ignoring webhook event %s", event.get("type"))
            return {"received": True}

        session = event["data"]["object"]
        metadata = session.get("metadata") or {}
        cart_key = metadata.get("cart_key")
        shop_id = metadata.get("shop_id") or metadata.get("shopId") or "UNKNOWN_SHOP"
        logger.info("Received webhook for session %s (shop %s)", session.get("id"), shop_id)
        if not cart_key or not session.get("id"):
            raise InvalidInput("Unknown cart key")

        if await run_in_threadpool(store.get_order, session["id"]) is not None:
            logger.info("Order for session %s already stored, duplicate delivery", session["id"])
            return {"received": True}

        cart = await run_in_threadpool(store.get_cart, cart_key)
        if cart is None:
            logger.error("Cart data not found for key: %s", cart_key)
            return {"received": True}

        summary = order_summary(session, cart, shop_id, settings.default_variant_id)
        try:
            await run_in_threadpool(store.create_order, summary)
        except DuplicateOrderError:
            logger.info("Order for session %s already stored, duplicate delivery", session["id"])
            return {"received": True}
        logger.info("Order created for session %s", session["id"])
        background.add_task(forwarder, session, cart, shop_id)

        # the order row is the record now; a leftover cart expires on its own
        try:
            await run_in_threadpool(store.delete_cart, cart_key)
        except StorageUnavailable as exc:
            logger.warning("Could not delete cart %s after order %s: %s",
                           cart_key, session["id"], exc.detail)
        return {"received": True}

    @app.get("/order-details")
    async def order_details(session_id: Optional[str] = None):
        if not session_id:
            raise InvalidInput("Missing session_id")
        order = await run_in_threadpool(store.get_order, session_id)
        if order is None:
            raise NotFound("Order not found")
        return order

    @app.post("/update-order")
    async def update_order(body: OrderUpdate):
        if not body.sessionId or body.shopifyOrderId in (None, ""):
            raise InvalidInput("Missing sessionId or shopifyOrderId")
        updated = await run_in_threadpool(store.attach_shopify_order_id,
                                          body.sessionId, str(body.shopifyOrderId))
        if updated is None:
            logger.error("Order not found for sessionId: %s", body.sessionId)
            raise NotFound("Order not found")
        logger.info("Order %s updated with shopifyOrderId %s",
                    body.sessionId, body.shopifyOrderId)
        return updated

    return app


if __name__ == "__main__":
    import uvicorn

    setup_logging("checkout")
    cfg = CheckoutSettings.from_env()
    logger.info("Server is running on port %d", cfg.port)
    uvicorn.run(create_app(cfg), host="0.0.0.0", port=cfg.port)
