"""
Stripe gateway: hosted checkout sessions and session retrieval.

Uses the official ``stripe`` library. Its HTTP client is synchronous, so calls
run in a worker thread with a bounded request timeout.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Mapping, Optional

import stripe

from storefront.config import get_settings
from storefront.errors import (
    ConfigurationError,
    NotFoundError,
    PaymentNotCompletedError,
    UpstreamError,
    ValidationError,
)
from storefront.models import GUEST_USER_ID

logger = logging.getLogger(__name__)
settings = get_settings()

SESSION_EXPAND = ["line_items", "line_items.data.price.product", "customer"]


@dataclass
class ReturnUrls:
    success_url: str
    cancel_url: str


@dataclass
class CheckoutSessionResult:
    url: str
    session_id: str
    is_test_mode: bool


@dataclass
class SessionLineItem:
    product_id: str
    name: str
    quantity: int
    unit_amount: Decimal  # dollars


@dataclass
class SessionShipping:
    name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


@dataclass
class VerifiedSession:
    session_id: str
    payment_status: str
    amount_total: Optional[Decimal]
    customer_email: Optional[str]
    customer_id: Optional[str]
    payment_intent: Optional[str]
    user_id: Optional[str]
    shipping: SessionShipping
    line_items: List[SessionLineItem] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


def default_return_urls() -> ReturnUrls:
    base = settings.storefront_url.rstrip("/")
    return ReturnUrls(
        success_url=f"{base}/order-confirmation?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base}/checkout",
    )


def _client() -> stripe.StripeClient:
    if not settings.stripe_secret_key:
        raise ConfigurationError("Stripe is not configured")
    return stripe.StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.RequestsClient(timeout=settings.provider_timeout_seconds),
    )


def _upstream(exc: stripe.StripeError) -> UpstreamError:
    logger.error(
        "Stripe API error status=%s code=%s body=%s",
        exc.http_status, exc.code, (exc.http_body or "")[:300],
    )
    return UpstreamError("Stripe", exc.http_status, exc.http_body or str(exc))


def to_cents(amount: Decimal) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(amount: int | None) -> Decimal | None:
    if amount is None:
        return None
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


async def create_checkout_session(
    cart_items: list,
    user_id: str | None,
    return_urls: ReturnUrls | None = None,
) -> CheckoutSessionResult:
    """Create a hosted Stripe Checkout session for the cart."""
    client = _client()
    if not cart_items:
        raise ValidationError("No items in cart")
    urls = return_urls or default_return_urls()

    params: Dict[str, Any] = {
        "mode": "payment",
        "payment_method_types": ["card"],
        "line_items": [
            {
                "price_data": {
                    "currency": "usd",
                    "product_data": {
                        "name": item.name or item.product_id or "Item",
                        "images": [item.image_url] if item.image_url else [],
                        "metadata": {"productId": item.product_id or ""},
                    },
                    "unit_amount": to_cents(item.price),
                },
                "quantity": item.quantity,
            }
            for item in cart_items
        ],
        "success_url": urls.success_url,
        "cancel_url": urls.cancel_url,
        "shipping_address_collection": {"allowed_countries": ["US", "CA"]},
    }
    # Guest sessions still carry an owner so the webhook can record the order.
    owner = user_id or GUEST_USER_ID
    params["client_reference_id"] = owner
    params["metadata"] = {"userId": owner}

    try:
        session = await asyncio.to_thread(client.checkout.sessions.create, params=params)
    except stripe.StripeError as exc:
        raise _upstream(exc) from exc

    logger.info(
        "Stripe checkout session created: id=%s user=%s items=%d",
        session.id, user_id, len(cart_items),
    )
    return CheckoutSessionResult(
        url=session.url, session_id=session.id, is_test_mode=settings.stripe_test_mode
    )


async def retrieve_session(session_id: str) -> Mapping[str, Any]:
    """Fetch a session with line items, products and customer expanded."""
    client = _client()
    try:
        return await asyncio.to_thread(
            client.checkout.sessions.retrieve,
            session_id,
            params={"expand": SESSION_EXPAND},
        )
    except stripe.InvalidRequestError as exc:
        if exc.code == "resource_missing":
            logger.warning("Stripe session %s not found", session_id)
            raise NotFoundError(f"No session found with id {session_id}") from exc
        raise _upstream(exc) from exc
    except stripe.StripeError as exc:
        raise _upstream(exc) from exc


def _get(obj: Any, key: str) -> Any:
    if obj is None or isinstance(obj, str):
        return None
    return obj.get(key)


def parse_line_items(session: Mapping[str, Any]) -> List[SessionLineItem]:
    items = []
    for line in (_get(session.get("line_items"), "data") or []):
        price = line.get("price") or {}
        product = price.get("product")
        if isinstance(product, str):
            product_id, name = product, line.get("description") or product
        else:
            product_id = _get(product, "id") or "unknown"
            name = _get(product, "name") or line.get("description") or "Unknown Product"
        items.append(
            SessionLineItem(
                product_id=product_id,
                name=name,
                quantity=line.get("quantity") or 1,
                unit_amount=from_cents(price.get("unit_amount") or 0),
            )
        )
    return items


def parse_session(session: Mapping[str, Any]) -> VerifiedSession:
    details = session.get("customer_details") or {}
    customer = session.get("customer")
    # Newer API versions move shipping under collected_information.
    shipping = (
        session.get("shipping_details")
        or _get(session.get("collected_information"), "shipping_details")
        or {}
    )
    address = _get(shipping, "address") or _get(details, "address") or {}
    metadata = dict(session.get("metadata") or {})

    return VerifiedSession(
        session_id=session["id"],
        payment_status=session.get("payment_status") or "unknown",
        amount_total=from_cents(session.get("amount_total")),
        customer_email=session.get("customer_email")
        or _get(details, "email")
        or _get(customer, "email"),
        customer_id=customer if isinstance(customer, str) else _get(customer, "id"),
        payment_intent=session.get("payment_intent")
        if isinstance(session.get("payment_intent"), str)
        else _get(session.get("payment_intent"), "id"),
        user_id=session.get("client_reference_id") or metadata.get("userId"),
        shipping=SessionShipping(
            name=_get(shipping, "name") or _get(details, "name"),
            email=_get(details, "email") or _get(customer, "email"),
            address=_get(address, "line1"),
            city=_get(address, "city"),
            state=_get(address, "state"),
            zip_code=_get(address, "postal_code"),
            country=_get(address, "country"),
        ),
        line_items=parse_line_items(session),
        metadata=metadata,
    )


async def verify_session(session_id: str) -> VerifiedSession:
    """Retrieve a session and require that it has been paid."""
    session = parse_session(await retrieve_session(session_id))
    if session.payment_status != "paid":
        logger.warning(
            "Stripe session %s not paid (payment_status=%s)",
            session_id, session.payment_status,
        )
        raise PaymentNotCompletedError(session.payment_status)
    return session
