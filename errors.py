#!/usr/bin/env python3
"""
Error taxonomy shared by the bot, the product API and the checkout API.

Every exception carries the HTTP status it maps to.  The APIs register
`install_error_handlers(app)` so handlers can simply raise; the caller only
ever sees a short generic message for 5xx errors, the detail goes to the log.

    Unauthorized        → 401   missing / wrong bearer credential
    InvalidInput        → 400   malformed body, missing fields, non-USD cart
    NotFound            → 404   no matching order / cart
    StorageUnavailable  → 500   database unreachable or failing
    UpstreamFailure     → 500   Shopify / Stripe / automation call failed
"""

from __future__ import annotations

import logging
from typing import Optional

logger = logging.getLogger("statusbot.errors")


class ServiceError(Exception):
    """Base class — subclasses set `status_code` and a public message."""

    status_code: int = 500
    public_message: str = "Internal Server Error"

    def __init__(self, message: str = "", *, detail: Optional[str] = None):
        super().__init__(message or self.public_message)
        self.detail = detail

    @property
    def client_message(self) -> str:
        # 5xx never leak internals
        if self.status_code >= 500:
            return self.public_message
        return str(self)


class Unauthorized(ServiceError):
    status_code = 401
    public_message = "Unauthorized"


class InvalidInput(ServiceError):
    status_code = 400
    public_message = "Invalid request"


class NotFound(ServiceError):
    status_code = 404
    public_message = "Not found"


class StorageUnavailable(ServiceError):
    """Raised by a store backend when the underlying database fails."""


class UpstreamFailure(ServiceError):
    """Raised when a third-party call (Shopify, Stripe, webhook) fails."""

    def __init__(self, message: str = "", *, status_code: int = 0,
                 endpoint: Optional[str] = None):
        super().__init__(message)
        self.upstream_status = status_code
        self.endpoint = endpoint

    def __repr__(self) -> str:
        return f"UpstreamFailure(status={self.upstream_status}, endpoint={self.endpoint})"


class DuplicateOrderError(Exception):
    """An order with the same session id already exists (uniqueness constraint)."""

    def __init__(self, session_id: str):
        super().__init__(f"order for session {session_id} already exists")
        self.session_id = session_id


class ConfigError(Exception):
    """Required configuration is missing or malformed."""


# ─── FastAPI wiring ───────────────────────────────────────────────────────────

def install_error_handlers(app) -> None:
    """Map ServiceError subclasses and request-validation errors onto JSON responses."""
    from fastapi import Request
    from fastapi.exceptions import RequestValidationError
    from fastapi.responses import JSONResponse

    @app.exception_handler(ServiceError)
    async def _service_error(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s (%s)", request.method, request.url.path,
                         exc, exc.detail or type(exc).__name__)
        else:
            logger.warning("%s %s rejected (%d): %s", request.method,
                           request.url.path, exc.status_code, exc)
        return JSONResponse(status_code=exc.status_code,
                            content={"error": exc.client_message})

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        logger.warning("%s %s invalid body: %s", request.method,
                       request.url.path, exc.errors())
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})
