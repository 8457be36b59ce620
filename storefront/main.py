"""
Off-road parts storefront checkout service – FastAPI entry point.
"""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from storefront.config import get_settings
from storefront.errors import CheckoutError, UpstreamError
from storefront.routers import admin, checkout, orders, webhooks

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s – %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(
    title="Storefront Checkout",
    version="1.0.0",
    description="Stripe / PayPal checkout, order persistence and webhook ingestion.",
)

# ── Middleware ────────────────────────────────────────────────────────────────

class StorefrontCORSMiddleware(CORSMiddleware):
    """Permissive CORS for the storefront; webhook routes answer their own preflight."""

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] == "http" and scope["path"].startswith("/webhooks/"):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


app.add_middleware(
    StorefrontCORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Exception handlers ────────────────────────────────────────────────────────

@app.exception_handler(CheckoutError)
async def _checkout_error(request: Request, exc: CheckoutError):
    if isinstance(exc, UpstreamError):
        logger.error(
            "%s %s: upstream %s error status=%s",
            request.method, request.url.path, exc.provider, exc.status,
        )
    elif exc.status_code >= 500:
        logger.error("%s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(HTTPException)
async def _http_error(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def _request_validation_error(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": f"{location}: {message}" if location else message},
    )


@app.exception_handler(SQLAlchemyError)
async def _database_error(request: Request, exc: SQLAlchemyError):
    logger.error("%s %s: database error: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Database error"})


@app.exception_handler(Exception)
async def _unhandled_error(request: Request, exc: Exception):
    logger.exception("%s %s: unhandled error", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})

# ── Routers ───────────────────────────────────────────────────────────────────

app.include_router(checkout.router)
app.include_router(webhooks.router)
app.include_router(orders.router)
app.include_router(admin.router)


# ── Startup ───────────────────────────────────────────────────────────────────

@app.on_event("startup")
async def _startup() -> None:
    if settings.auto_create_tables:
        await _create_tables()

    if not settings.stripe_secret_key:
        logger.warning("STRIPE_SECRET_KEY not set – Stripe checkout disabled")
    if not settings.stripe_webhook_secret:
        logger.warning("STRIPE_WEBHOOK_SECRET not set – webhooks will be rejected")
    if not settings.paypal_client_id:
        logger.warning("PAYPAL_CLIENT_ID not set – PayPal checkout disabled")
    elif settings.paypal_sandbox:
        logger.info("PayPal running against the sandbox API")
    logger.info("Storefront checkout service ready.")


async def _create_tables() -> None:
    from storefront.database import create_tables

    try:
        await create_tables()
        logger.info("Database tables ensured.")
    except Exception as exc:
        logger.warning("Table creation skipped: %s", exc)
