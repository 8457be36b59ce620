"""
Stripe webhook receiver.

POST    /webhooks/stripe
OPTIONS /webhooks/stripe
"""
from __future__ import annotations

import logging

import stripe
from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db
from storefront.deps import verify_stripe_signature
from storefront.services import webhook_processor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": (
        "authorization, x-client-info, apikey, content-type, stripe-signature"
    ),
}


@router.options("/stripe")
async def stripe_webhook_preflight() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=CORS_HEADERS)


@router.post("/stripe", response_class=PlainTextResponse)
async def stripe_webhook(
    event: stripe.Event = Depends(verify_stripe_signature),
    db: AsyncSession = Depends(get_db),
) -> PlainTextResponse:
    """
    Receive a Stripe event. Idempotent per event id: redelivery of a handled
    event is a 200 no-op; a 500 asks Stripe to retry.
    """
    result = await webhook_processor.process_event(db, event)
    return PlainTextResponse(
        result.message, status_code=result.status_code, headers=CORS_HEADERS
    )
