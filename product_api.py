#!/usr/bin/env python3
"""
Product API — receives status pushes from the Discord bot and tags the
matching Shopify product.

Endpoints
─────────
  GET  /                          health check
  POST /update-product-tag        {tag, productId}  (bearer auth)
  POST /api/update-product-tag    same, legacy path

Run:
    python3 product_api.py
    uvicorn product_api:create_app --factory --port 3001
"""

from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Union

from fastapi import Depends, FastAPI, Header
from pydantic import BaseModel, StrictStr, field_validator

from errors import InvalidInput, Unauthorized, install_error_handlers
from settings import ProductApiSettings, setup_logging
from shopify_client import ShopifyClient

logger = logging.getLogger("statusbot.product_api")


class TagUpdate(BaseModel):
    tag: StrictStr
    productId: Union[StrictStr, int]
    title: Optional[str] = None

    @field_validator("productId")
    @classmethod
    def _product_id_present(cls, v):
        v = str(v).strip()
        if not v:
            raise ValueError("productId is empty")
        return v


def create_app(
    settings: Optional[ProductApiSettings] = None,
    shopify: Optional[ShopifyClient] = None,
) -> FastAPI:
    settings = settings or ProductApiSettings.from_env()
    shopify = shopify or ShopifyClient(settings.shopify_store, settings.shopify_access_token)
    expected = f"Bearer {settings.api_secret}"

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await shopify.close()

    app = FastAPI(
        title="Product Status API",
        description="Channel status → Shopify product tags",
        version="1.0.0",
        lifespan=lifespan,
    )
    install_error_handlers(app)

    def require_bearer(authorization: Optional[str] = Header(None)) -> None:
        if not authorization or not secrets.compare_digest(
                authorization.encode(), expected.encode()):
            raise Unauthorized("Unauthorized")

    @app.get("/")
    def health():
        return {
            "status": "online",
            "service": "product-api",
            "ts": datetime.now(timezone.utc).isoformat(),
        }

    @app.post("/update-product-tag", dependencies=[Depends(require_bearer)])
    @app.post("/api/update-product-tag", dependencies=[Depends(require_bearer)],
              include_in_schema=False)
    async def update_product_tag(body: TagUpdate):
        if not body.tag.strip():
            raise InvalidInput("Invalid tag or missing product id")
        logger.info("Updating product %s tag to: %s", body.productId, body.tag)
        await shopify.update_product_tag(body.productId, body.tag)
        return {"success": True, "productId": body.productId, "tag": body.tag}

    return app


if __name__ == "__main__":
    import uvicorn

    setup_logging("api")
    cfg = ProductApiSettings.from_env()
    logger.info("API server running on port %d", cfg.port)
    uvicorn.run(create_app(cfg), host="0.0.0.0", port=cfg.port)
