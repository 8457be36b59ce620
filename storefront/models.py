"""
SQLAlchemy ORM models: orders, order items and the Stripe webhook dedup table.
"""
from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


GUEST_USER_ID = "guest"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELED = "canceled"


class WebhookOutcome(str, enum.Enum):
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"


class Base(DeclarativeBase):
    pass


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=OrderStatus.PENDING.value
    )

    # Provider correlation – at most one provider's fields are populated.
    stripe_session_id: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(
        Text, nullable=True, index=True
    )
    paypal_order_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    paypal_capture_id: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Shipping snapshot as reported by the provider.
    shipping_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    shipping_email: Mapped[str | None] = mapped_column(Text, nullable=True)
    shipping_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    shipping_city: Mapped[str | None] = mapped_column(Text, nullable=True)
    shipping_state: Mapped[str | None] = mapped_column(Text, nullable=True)
    shipping_zip: Mapped[str | None] = mapped_column(Text, nullable=True)

    guest_email: Mapped[str | None] = mapped_column(Text, nullable=True)
    guest_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_uuid)
    order_id: Mapped[str] = mapped_column(
        Text, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Catalog product id, or a Stripe product id on the webhook path.
    product_id: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    order: Mapped[Order] = relationship(back_populates="items")


class WebhookEventRecord(Base):
    """One row per Stripe event id; presence means "do not reprocess" unless failed."""
    __tablename__ = "stripe_webhooks"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_uuid)
    stripe_event_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    outcome: Mapped[str] = mapped_column(
        Text, nullable=False, default=WebhookOutcome.PROCESSED.value
    )
    order_id: Mapped[str | None] = mapped_column(
        Text, ForeignKey("orders.id"), nullable=True
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
