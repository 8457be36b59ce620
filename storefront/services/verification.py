"""
Redirect-path checkout confirmation: re-check a Stripe session with the
provider, and turn a verified session into an order.
"""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.errors import ValidationError
from storefront.models import Order, OrderStatus
from storefront.services import orders, stripe_gateway
from storefront.services.orders import NewOrderItem, OrderCreate, ShippingDetails
from storefront.services.stripe_gateway import VerifiedSession

logger = logging.getLogger(__name__)


async def verify(session_id: str | None) -> VerifiedSession:
    """Always asks Stripe; nothing about the session is cached locally."""
    if not session_id:
        raise ValidationError("No sessionId provided")

    session = await stripe_gateway.verify_session(session_id)
    if session.amount_total is None:
        logger.warning("Stripe session %s has no amount_total", session_id)
        raise ValidationError("Session has no amount")

    logger.info(
        "Stripe session %s verified: amount=%s items=%d",
        session_id, session.amount_total, len(session.line_items),
    )
    return session


def order_from_session(
    session: VerifiedSession,
    user_id: str,
    guest_email: str | None = None,
    guest_name: str | None = None,
) -> OrderCreate:
    return OrderCreate(
        user_id=user_id,
        items=[
            NewOrderItem(
                product_id=li.product_id, quantity=li.quantity, price=li.unit_amount
            )
            for li in session.line_items
        ],
        status=OrderStatus.APPROVED,
        total=session.amount_total,
        shipping=ShippingDetails(
            name=session.shipping.name,
            email=session.shipping.email or session.customer_email,
            address=session.shipping.address,
            city=session.shipping.city,
            state=session.shipping.state,
            zip_code=session.shipping.zip_code,
        ),
        stripe_session_id=session.session_id,
        stripe_customer_id=session.customer_id,
        stripe_payment_intent_id=session.payment_intent,
        guest_email=guest_email,
        guest_name=guest_name,
    )


async def place_order_for_session(
    db: AsyncSession,
    session_id: str,
    user_id: str,
    guest_email: str | None = None,
    guest_name: str | None = None,
) -> tuple[Order, bool]:
    """
    Verify the session, then record its order unless one already exists for it
    (the webhook may have got there first). Returns (order, created).
    """
    session = await verify(session_id)

    existing = await orders.find_by_stripe_session(db, session.session_id)
    if existing is not None:
        logger.info(
            "Order %s already recorded for Stripe session %s", existing.id, session_id
        )
        return existing, False

    order = await orders.create_order(
        db, order_from_session(session, user_id, guest_email, guest_name)
    )
    await db.commit()
    return order, True
