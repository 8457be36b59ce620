"""
Customer order endpoints.

POST /orders
GET  /orders?userId=...
GET  /orders/{order_id}
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import get_settings
from storefront.database import get_db
from storefront.errors import ValidationError
from storefront.models import GUEST_USER_ID, OrderStatus
from storefront.schemas import OrderIntakeRequest, OrderRead
from storefront.services import orders, verification
from storefront.services.orders import NewOrderItem, OrderCreate

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
async def place_order(
    payload: OrderIntakeRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> OrderRead:
    """
    Record an order after checkout.

    With ``sessionId`` the Stripe session is re-verified server-side and the
    order is built from the provider's line items; an order already recorded
    for that session is returned as-is. Without it, this is the simulated
    card checkout and the cart is trusted.
    """
    user_id = payload.user_id
    if not user_id:
        if not payload.guest_email:
            raise ValidationError("User ID is required")
        user_id = GUEST_USER_ID

    if payload.session_id:
        order, created = await verification.place_order_for_session(
            db, payload.session_id, user_id, payload.guest_email, payload.guest_name
        )
        if not created:
            response.status_code = status.HTTP_200_OK
        return OrderRead.model_validate(order)

    if not settings.allow_simulated_payments:
        raise ValidationError("A verified payment is required to place an order")
    if not payload.cart_items:
        raise ValidationError("Cart is empty - cannot create order")

    order = await orders.create_order(
        db,
        OrderCreate(
            user_id=user_id,
            items=[
                NewOrderItem(
                    product_id=item.product_id or item.name or "unknown",
                    quantity=item.quantity,
                    price=item.price,
                )
                for item in payload.cart_items
            ],
            status=OrderStatus.APPROVED,
            guest_email=payload.guest_email,
            guest_name=payload.guest_name,
        ),
    )
    await db.commit()
    logger.info("Simulated card order %s recorded for user=%s", order.id, user_id)
    return OrderRead.model_validate(order)


@router.get("", response_model=List[OrderRead])
async def list_user_orders(
    user_id: str = Query(..., alias="userId"),
    db: AsyncSession = Depends(get_db),
) -> List[OrderRead]:
    rows = await orders.list_orders(db, user_id=user_id)
    return [OrderRead.model_validate(r) for r in rows]


@router.get("/{order_id}", response_model=OrderRead)
async def get_order(order_id: str, db: AsyncSession = Depends(get_db)) -> OrderRead:
    order = await orders.get_order(db, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail=f"Order {order_id!r} not found")
    return OrderRead.model_validate(order)
