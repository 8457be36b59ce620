"""
Pydantic schemas for request/response validation.

Wire format is camelCase (``cartItems``, ``userId`` …) to match the storefront
client; Python code uses snake_case field names.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from storefront.models import OrderStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Cart ─────────────────────────────────────────────────────────────────────

class CartItem(_CamelModel):
    product_id: Optional[str] = None
    name: str = ""
    price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., gt=0)
    image_url: Optional[str] = None


# ── Stripe checkout ──────────────────────────────────────────────────────────

class StripeSessionRequest(_CamelModel):
    cart_items: List[CartItem] = []
    user_id: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class StripeSessionResponse(_CamelModel):
    url: str
    session_id: str
    is_test_mode: bool


class VerifySessionRequest(_CamelModel):
    session_id: Optional[str] = None


class ShippingSnapshot(_CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


class VerifiedLineItem(_CamelModel):
    product_id: str
    name: str
    quantity: int
    unit_amount: float


class VerifySessionResponse(_CamelModel):
    success: Literal[True] = True
    session_id: str
    amount_total: float
    customer_email: Optional[str] = None
    shipping: ShippingSnapshot
    line_items: List[VerifiedLineItem] = []
    payment_status: str
    payment_intent: Optional[str] = None
    metadata: Dict[str, Any] = {}


class FailureResponse(_CamelModel):
    success: Literal[False] = False
    error: str


# ── PayPal ───────────────────────────────────────────────────────────────────

class PayPalOrderRequest(_CamelModel):
    cart_items: List[CartItem] = []
    user_id: Optional[str] = None


class PayPalOrderResponse(_CamelModel):
    order_id: str
    approval_url: str
    is_test_mode: bool


class PayPalCaptureRequest(_CamelModel):
    order_id: Optional[str] = None
    user_id: Optional[str] = None
    cart_items: List[CartItem] = []


class PayPalCaptureResponse(_CamelModel):
    success: Literal[True] = True
    order_id: str
    paypal_order_id: str
    payment_id: str
    total: float


# ── Orders ───────────────────────────────────────────────────────────────────

class OrderIntakeRequest(_CamelModel):
    cart_items: List[CartItem] = []
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    guest_email: Optional[str] = None
    guest_name: Optional[str] = None


class OrderItemRead(_CamelModel):
    product_id: str
    quantity: int
    price: float

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class OrderRead(_CamelModel):
    id: str
    user_id: str
    total: float
    status: str
    items: List[OrderItemRead] = []
    stripe_session_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    paypal_order_id: Optional[str] = None
    paypal_capture_id: Optional[str] = None
    shipping_name: Optional[str] = None
    shipping_email: Optional[str] = None
    shipping_address: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_state: Optional[str] = None
    shipping_zip: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class StatusUpdate(_CamelModel):
    status: OrderStatus


class StatusUpdateResponse(_CamelModel):
    success: bool
    order_id: str
    status: str


class WebhookEventRead(_CamelModel):
    stripe_event_id: str
    event_type: str
    outcome: str
    order_id: Optional[str] = None
    error: Optional[str] = None
    processed_at: datetime

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class HealthResponse(BaseModel):
    status: str = "ok"
    db: str = "ok"
