"""
Checkout endpoints called by the storefront client.

POST /checkout/stripe/session
POST /checkout/stripe/verify-session
POST /checkout/paypal/orders
POST /checkout/paypal/capture
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db
from storefront.errors import CheckoutError, ConfigurationError, ValidationError
from storefront.models import OrderStatus
from storefront.schemas import (
    FailureResponse,
    PayPalCaptureRequest,
    PayPalCaptureResponse,
    PayPalOrderRequest,
    PayPalOrderResponse,
    ShippingSnapshot,
    StripeSessionRequest,
    StripeSessionResponse,
    VerifiedLineItem,
    VerifySessionRequest,
    VerifySessionResponse,
)
from storefront.services import orders, paypal_client, stripe_gateway, verification
from storefront.services.orders import NewOrderItem, OrderCreate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post("/stripe/session", response_model=StripeSessionResponse)
async def create_stripe_session(payload: StripeSessionRequest) -> StripeSessionResponse:
    defaults = stripe_gateway.default_return_urls()
    urls = stripe_gateway.ReturnUrls(
        success_url=payload.success_url or defaults.success_url,
        cancel_url=payload.cancel_url or defaults.cancel_url,
    )
    result = await stripe_gateway.create_checkout_session(
        payload.cart_items, payload.user_id, urls
    )
    return StripeSessionResponse(
        url=result.url, session_id=result.session_id, is_test_mode=result.is_test_mode
    )


@router.post(
    "/stripe/verify-session",
    response_model=VerifySessionResponse,
    responses={400: {"model": FailureResponse}, 500: {"model": FailureResponse}},
)
async def verify_stripe_session(payload: VerifySessionRequest):
    """
    Confirm a redirect-path checkout with Stripe. Failures come back as
    ``{"success": false, "error": ...}`` so the client can show the message.
    """
    try:
        session = await verification.verify(payload.session_id)
    except CheckoutError as exc:
        logger.warning("Session verification failed for %s: %s", payload.session_id, exc.message)
        status_code = 500 if isinstance(exc, ConfigurationError) else 400
        return JSONResponse(
            status_code=status_code,
            content=FailureResponse(error=exc.message).model_dump(by_alias=True),
        )

    return VerifySessionResponse(
        session_id=session.session_id,
        amount_total=float(session.amount_total),
        customer_email=session.customer_email,
        shipping=ShippingSnapshot(
            name=session.shipping.name,
            email=session.shipping.email or session.customer_email,
            address=session.shipping.address,
            city=session.shipping.city,
            state=session.shipping.state,
            zip_code=session.shipping.zip_code,
            country=session.shipping.country,
        ),
        line_items=[
            VerifiedLineItem(
                product_id=li.product_id,
                name=li.name,
                quantity=li.quantity,
                unit_amount=float(li.unit_amount),
            )
            for li in session.line_items
        ],
        payment_status=session.payment_status,
        payment_intent=session.payment_intent,
        metadata=session.metadata,
    )


@router.post("/paypal/orders", response_model=PayPalOrderResponse)
async def create_paypal_order(payload: PayPalOrderRequest) -> PayPalOrderResponse:
    result = await paypal_client.create_order(payload.cart_items, payload.user_id)
    return PayPalOrderResponse(
        order_id=result.order_id,
        approval_url=result.approval_url,
        is_test_mode=result.is_test_mode,
    )


@router.post("/paypal/capture", response_model=PayPalCaptureResponse)
async def capture_paypal_order(
    payload: PayPalCaptureRequest,
    db: AsyncSession = Depends(get_db),
) -> PayPalCaptureResponse:
    """Capture an approved PayPal order and record it."""
    if not payload.order_id:
        raise ValidationError("Order ID is required")
    if not payload.user_id:
        raise ValidationError("User ID is required")

    capture = await paypal_client.capture_order(payload.order_id)

    # The captured amount is what was paid; a cart that disagrees is held for review.
    order_status = OrderStatus.APPROVED
    cart_total = orders.compute_total(payload.cart_items)
    if payload.cart_items and cart_total != capture.amount:
        logger.error(
            "PayPal capture %s amount mismatch: captured=%s cart=%s user=%s; order held as pending",
            capture.capture_id, capture.amount, cart_total, payload.user_id,
        )
        order_status = OrderStatus.PENDING

    order = await orders.create_order(
        db,
        OrderCreate(
            user_id=payload.user_id,
            items=[
                NewOrderItem(
                    product_id=item.product_id or item.name or "unknown",
                    quantity=item.quantity,
                    price=item.price,
                )
                for item in payload.cart_items
            ],
            status=order_status,
            total=capture.amount,
            total_from_items=False,
            shipping=capture.shipping,
            paypal_order_id=capture.paypal_order_id,
            paypal_capture_id=capture.capture_id,
        ),
    )
    await db.commit()

    return PayPalCaptureResponse(
        order_id=order.id,
        paypal_order_id=capture.paypal_order_id,
        payment_id=capture.capture_id,
        total=float(order.total),
    )
