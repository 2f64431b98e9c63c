#!/usr/bin/env python3
"""
settings.py — Environment-driven configuration for every process.

Values come from the process environment, optionally seeded from a `.env`
file in the working directory.  Each process reads only the block it needs:

    BotSettings.from_env()          discord_bot.py
    ProductApiSettings.from_env()   product_api.py
    CheckoutSettings.from_env()     checkout_api.py

Missing required values raise ConfigError at startup instead of failing on
the first request.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from errors import ConfigError

load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}


def _require(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ConfigError(f"{name} is not defined in the environment variables.")
    return value


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


def _int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


# ─── Settings blocks ──────────────────────────────────────────────────────────

@dataclass
class BotSettings:
    discord_token:        str
    product_api_endpoint: str
    api_secret:           str
    default_product_id:   str = "unknown"
    scan_interval:        int = 1800        # seconds between cycles
    retry_failed_pushes:  bool = True
    mapping_db_path:      Path = Path("channelMapping.db")

    @classmethod
    def from_env(cls) -> "BotSettings":
        return cls(
            discord_token        = _require("DISCORD_BOT_TOKEN"),
            product_api_endpoint = _require("PRODUCT_API_ENDPOINT"),
            api_secret           = _require("API_SECRET"),
            default_product_id   = os.getenv("DEFAULT_PRODUCT_ID", "unknown"),
            scan_interval        = _int("SCAN_INTERVAL_SECONDS", 1800),
            retry_failed_pushes  = _flag("STATUS_RETRY_FAILED_PUSHES", True),
            mapping_db_path      = Path(os.getenv("MAPPING_DB_PATH", "channelMapping.db")),
        )


@dataclass
class ProductApiSettings:
    api_secret:           str
    shopify_store:        str
    shopify_access_token: str
    port:                 int = 3001

    @classmethod
    def from_env(cls) -> "ProductApiSettings":
        return cls(
            api_secret           = _require("API_SECRET"),
            shopify_store        = _require("SHOPIFY_STORE"),
            shopify_access_token = _require("SHOPIFY_ACCESS_TOKEN"),
            port                 = _int("PORT", 3001),
        )


@dataclass
class CheckoutSettings:
    stripe_secret_key:     str
    stripe_webhook_secret: str
    success_url:           str = "https://www.example.com/success?session_id={CHECKOUT_SESSION_ID}"
    cancel_url:            str = "https://www.example.com/cancel"
    zapier_webhook_url:    Optional[str] = None
    default_variant_id:    str = "default_variant"
    default_shop_id:       str = "hellservices.shop"
    db_backend:            str = "sqlite"
    db_path:               Path = Path("checkout.db")
    redis_url:             str = "redis://localhost:6379/0"
    port:                  int = 3000

    @classmethod
    def from_env(cls) -> "CheckoutSettings":
        backend = os.getenv("CHECKOUT_DB_BACKEND", "sqlite").strip().lower()
        if backend not in ("sqlite", "redis"):
            raise ConfigError(f"CHECKOUT_DB_BACKEND must be sqlite or redis, got {backend!r}")
        return cls(
            stripe_secret_key     = _require("STRIPE_SECRET_KEY"),
            stripe_webhook_secret = _require("STRIPE_WEBHOOK_SECRET"),
            success_url           = os.getenv("SUCCESS_URL") or cls.success_url,
            cancel_url            = os.getenv("CANCEL_URL") or cls.cancel_url,
            zapier_webhook_url    = os.getenv("ZAPIER_WEBHOOK_URL") or None,
            default_variant_id    = os.getenv("DEFAULT_VARIANT_ID") or cls.default_variant_id,
            default_shop_id       = os.getenv("DEFAULT_SHOP_ID") or cls.default_shop_id,
            db_backend            = backend,
            db_path               = Path(os.getenv("CHECKOUT_DB_PATH", "checkout.db")),
            redis_url             = os.getenv("REDIS_URL", cls.redis_url),
            port                  = _int("PORT", 3000),
        )


# ─── Logging ──────────────────────────────────────────────────────────────────

def setup_logging(tag: str) -> None:
    """
    Configure root logging for one process.

    Console always; LOG_FILE (e.g. api.log) appended to when set.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_file = os.getenv("LOG_FILE", "").strip()
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format=f"%(asctime)s [{tag}] %(levelname)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )
