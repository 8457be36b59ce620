"""
FastAPI dependency utilities: Stripe webhook signature verification, admin token.
"""
from __future__ import annotations

import hmac
import logging

import stripe
from fastapi import Header, HTTPException, Request, status

from storefront.config import get_settings
from storefront.errors import ConfigurationError

logger = logging.getLogger(__name__)
settings = get_settings()


async def verify_stripe_signature(
    request: Request,
    stripe_signature: str | None = Header(default=None),
) -> stripe.Event:
    """
    Verify the Stripe-Signature header against the raw request body.
    Returns the parsed event so routers don't need to re-read the body.
    """
    body = await request.body()

    if not stripe_signature:
        logger.warning("Stripe webhook without signature header rejected")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe-Signature header",
        )

    if not settings.stripe_webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured")
        raise ConfigurationError("Configuration error")

    try:
        return stripe.Webhook.construct_event(
            body, stripe_signature, settings.stripe_webhook_secret
        )
    except stripe.SignatureVerificationError as exc:
        logger.warning("Webhook signature verification failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        )
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Malformed webhook payload",
        )


async def require_admin_token(
    authorization: str | None = Header(default=None),
) -> None:
    """Bearer-token guard for the admin JSON API."""
    if not settings.admin_api_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin API token is not configured",
        )
    if authorization and authorization.startswith("Bearer "):
        token = authorization.removeprefix("Bearer ").strip()
        if hmac.compare_digest(token, settings.admin_api_token):
            return
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing Bearer token",
    )
