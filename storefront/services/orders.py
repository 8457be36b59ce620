"""
Order persistence: header + line items written in one transaction, and
status management.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import get_settings
from storefront.errors import InvalidStatusTransitionError, PersistenceError
from storefront.models import Order, OrderItem, OrderStatus

logger = logging.getLogger(__name__)
settings = get_settings()

_CENT = Decimal("0.01")

# Forward progress along the fulfilment chain; skipping ahead is allowed.
_FULFILMENT_CHAIN = [
    OrderStatus.PENDING,
    OrderStatus.APPROVED,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]
_CANCELABLE = {OrderStatus.PENDING, OrderStatus.APPROVED}


@dataclass
class NewOrderItem:
    product_id: str
    quantity: int
    price: Decimal


@dataclass
class ShippingDetails:
    name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None


@dataclass
class OrderCreate:
    user_id: str
    items: List[NewOrderItem]
    status: OrderStatus = OrderStatus.APPROVED
    # Used only when there are no items to derive the total from, unless
    # total_from_items is False (the provider captured exactly this amount).
    total: Optional[Decimal] = None
    total_from_items: bool = True
    shipping: ShippingDetails = field(default_factory=ShippingDetails)
    stripe_session_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    paypal_order_id: Optional[str] = None
    paypal_capture_id: Optional[str] = None
    guest_email: Optional[str] = None
    guest_name: Optional[str] = None


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def compute_total(items: Iterable) -> Decimal:
    """Σ price × quantity, rounded to cents."""
    total = sum(
        (Decimal(str(i.price)) * i.quantity for i in items), Decimal("0")
    )
    return total.quantize(_CENT, rounding=ROUND_HALF_UP)


def is_legal_transition(current: str, requested: str) -> bool:
    if current == requested:
        return True
    cur, req = OrderStatus(current), OrderStatus(requested)
    if req is OrderStatus.CANCELED:
        return cur in _CANCELABLE
    if cur is OrderStatus.CANCELED or cur not in _FULFILMENT_CHAIN:
        return False
    return _FULFILMENT_CHAIN.index(req) > _FULFILMENT_CHAIN.index(cur)


async def create_order(session: AsyncSession, data: OrderCreate) -> Order:
    """
    Insert the order header, then its items, within the caller's transaction.

    A header failure raises PersistenceError before any item is written. An
    item failure rolls back the whole transaction so no orphaned header is
    left behind. The caller commits.
    """
    if data.items and data.total_from_items:
        total = compute_total(data.items)
        if data.total is not None and to_money(data.total) != total:
            logger.warning(
                "Order total mismatch for user=%s: items=%s provider=%s (using items)",
                data.user_id, total, data.total,
            )
    else:
        total = to_money(data.total or 0)

    order = Order(
        user_id=data.user_id,
        total=total,
        status=OrderStatus(data.status).value,
        stripe_session_id=data.stripe_session_id,
        stripe_customer_id=data.stripe_customer_id,
        stripe_payment_intent_id=data.stripe_payment_intent_id,
        paypal_order_id=data.paypal_order_id,
        paypal_capture_id=data.paypal_capture_id,
        shipping_name=data.shipping.name,
        shipping_email=data.shipping.email,
        shipping_address=data.shipping.address,
        shipping_city=data.shipping.city,
        shipping_state=data.shipping.state,
        shipping_zip=data.shipping.zip_code,
        guest_email=data.guest_email,
        guest_name=data.guest_name,
    )
    session.add(order)
    try:
        await session.flush()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("Order header insert failed for user=%s: %s", data.user_id, exc)
        raise PersistenceError("Could not create order") from exc

    for item in data.items:
        session.add(
            OrderItem(
                order_id=order.id,
                product_id=item.product_id,
                quantity=item.quantity,
                price=to_money(item.price),
            )
        )
    try:
        await session.flush()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error(
            "Order item insert failed for order=%s; header rolled back: %s",
            order.id, exc,
        )
        raise PersistenceError("Could not create order items") from exc

    await session.refresh(order, attribute_names=["items"])
    logger.info(
        "Order created: id=%s user=%s total=%s items=%d status=%s",
        order.id, order.user_id, order.total, len(order.items), order.status,
    )
    return order


async def update_status(
    session: AsyncSession, order_id: str, new_status: OrderStatus | str
) -> bool:
    """
    Overwrite an order's status. Returns False if the order does not exist.
    Raises InvalidStatusTransitionError for illegal moves when enforcement is on.
    """
    requested = OrderStatus(new_status).value
    order = await session.get(Order, order_id)
    if order is None:
        return False

    if settings.enforce_status_transitions and not is_legal_transition(
        order.status, requested
    ):
        raise InvalidStatusTransitionError(order.status, requested)

    if order.status != requested:
        logger.info("Order %s status %s -> %s", order_id, order.status, requested)
        order.status = requested
        session.add(order)
        await session.flush()
    return True


async def get_order(session: AsyncSession, order_id: str) -> Order | None:
    return await session.get(Order, order_id)


async def list_orders(
    session: AsyncSession,
    user_id: str | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Order]:
    stmt = select(Order).order_by(Order.created_at.desc())
    if user_id:
        stmt = stmt.where(Order.user_id == user_id)
    if status:
        stmt = stmt.where(Order.status == status)
    stmt = stmt.offset(offset).limit(limit)
    return list((await session.execute(stmt)).scalars().all())


async def find_by_stripe_session(session: AsyncSession, session_id: str) -> Order | None:
    return (
        await session.execute(
            select(Order).where(Order.stripe_session_id == session_id).limit(1)
        )
    ).scalar_one_or_none()


async def find_by_payment_intent(
    session: AsyncSession, payment_intent_id: str
) -> Order | None:
    return (
        await session.execute(
            select(Order)
            .where(Order.stripe_payment_intent_id == payment_intent_id)
            .limit(1)
        )
    ).scalar_one_or_none()
