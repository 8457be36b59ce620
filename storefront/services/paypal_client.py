"""
Thin PayPal REST API client (no SDK dependency).
OAuth2 client-credentials token, then Orders v2 create / capture.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from storefront.config import get_settings
from storefront.errors import (
    ConfigurationError,
    PaymentNotCompletedError,
    UpstreamError,
    ValidationError,
)
from storefront.services.orders import ShippingDetails, compute_total, to_money
from storefront.services.stripe_gateway import ReturnUrls

logger = logging.getLogger(__name__)
settings = get_settings()

# Overridable in tests with an httpx.MockTransport.
_transport: httpx.AsyncBaseTransport | None = None


@dataclass
class PayPalOrderResult:
    order_id: str
    approval_url: str
    is_test_mode: bool


@dataclass
class PayPalCapture:
    paypal_order_id: str
    capture_id: str
    status: str
    amount: Decimal
    payer_name: Optional[str]
    payer_email: Optional[str]
    shipping: ShippingDetails


def _timeout() -> httpx.Timeout:
    return httpx.Timeout(settings.provider_timeout_seconds)


def _client(**kwargs) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.paypal_base_url,
        timeout=_timeout(),
        transport=_transport,
        **kwargs,
    )


def default_return_urls() -> ReturnUrls:
    base = settings.storefront_url.rstrip("/")
    return ReturnUrls(
        success_url=f"{base}/order-confirmation", cancel_url=f"{base}/checkout"
    )


def _money(value: Decimal) -> Dict[str, str]:
    return {"currency_code": "USD", "value": f"{to_money(value):.2f}"}


def _order_item(item) -> Dict[str, Any]:
    line: Dict[str, Any] = {
        "name": item.name or item.product_id or "Item",
        "quantity": str(item.quantity),
        "unit_amount": _money(item.price),
    }
    if item.product_id:
        line["sku"] = item.product_id
    return line


async def get_access_token() -> str:
    """Exchange client id/secret for a short-lived bearer token."""
    if not settings.paypal_client_id or not settings.paypal_client_secret:
        raise ConfigurationError("PayPal credentials not configured")

    async with _client(
        auth=httpx.BasicAuth(settings.paypal_client_id, settings.paypal_client_secret)
    ) as client:
        resp = await client.post(
            "/v1/oauth2/token", data={"grant_type": "client_credentials"}
        )
    if not resp.is_success:
        logger.error(
            "PayPal token error status=%d body=%s", resp.status_code, resp.text[:300]
        )
        raise UpstreamError("PayPal", resp.status_code, resp.text)
    return resp.json()["access_token"]


async def create_order(
    cart_items: list,
    user_id: str | None,
    return_urls: ReturnUrls | None = None,
) -> PayPalOrderResult:
    """Create a CAPTURE-intent PayPal order for the cart and return its approval link."""
    if not cart_items:
        raise ValidationError("Invalid cart items")
    if not user_id:
        raise ValidationError("User ID is required")

    urls = return_urls or default_return_urls()
    total = compute_total(cart_items)
    payload: Dict[str, Any] = {
        "intent": "CAPTURE",
        "purchase_units": [
            {
                "custom_id": user_id,
                "amount": {
                    **_money(total),
                    "breakdown": {"item_total": _money(total)},
                },
                "items": [_order_item(item) for item in cart_items],
            }
        ],
        "application_context": {
            "return_url": urls.success_url,
            "cancel_url": urls.cancel_url,
            "brand_name": settings.paypal_brand_name,
            "user_action": "PAY_NOW",
        },
    }

    token = await get_access_token()
    async with _client() as client:
        resp = await client.post(
            "/v2/checkout/orders",
            json=payload,
            headers={"Authorization": f"Bearer {token}"},
        )
    if not resp.is_success:
        logger.error(
            "PayPal create order error user=%s status=%d body=%s",
            user_id, resp.status_code, resp.text[:300],
        )
        raise UpstreamError("PayPal", resp.status_code, resp.text)

    order = resp.json()
    approval_url = next(
        (link["href"] for link in order.get("links", []) if link.get("rel") == "approve"),
        None,
    )
    if not approval_url:
        logger.error("PayPal order %s has no approval link", order.get("id"))
        raise UpstreamError("PayPal", resp.status_code, "No approval URL in response")

    logger.info("PayPal order created: id=%s user=%s total=%s", order["id"], user_id, total)
    return PayPalOrderResult(
        order_id=order["id"],
        approval_url=approval_url,
        is_test_mode=settings.paypal_sandbox,
    )


async def capture_order(order_id: str) -> PayPalCapture:
    """Capture an approved PayPal order. Anything but COMPLETED is an unpaid order."""
    if not order_id:
        raise ValidationError("Order ID is required")

    token = await get_access_token()
    async with _client() as client:
        resp = await client.post(
            f"/v2/checkout/orders/{order_id}/capture",
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
        )
    if not resp.is_success:
        logger.error(
            "PayPal capture error order=%s status=%d body=%s",
            order_id, resp.status_code, resp.text[:300],
        )
        raise UpstreamError("PayPal", resp.status_code, resp.text)

    data = resp.json()
    status = data.get("status")
    if status != "COMPLETED":
        logger.warning("PayPal order %s captured with status=%s", order_id, status)
        raise PaymentNotCompletedError(status)

    unit = data["purchase_units"][0]
    capture = unit["payments"]["captures"][0]
    amount = (capture.get("amount") or unit.get("amount") or {}).get("value", "0")

    payer = data.get("payer") or {}
    name = payer.get("name") or {}
    payer_name = " ".join(p for p in (name.get("given_name"), name.get("surname")) if p) or None
    address = payer.get("address") or {}

    return PayPalCapture(
        paypal_order_id=order_id,
        capture_id=capture["id"],
        status=status,
        amount=to_money(amount),
        payer_name=payer_name,
        payer_email=payer.get("email_address"),
        shipping=ShippingDetails(
            name=payer_name,
            email=payer.get("email_address"),
            address=address.get("address_line_1"),
            city=address.get("admin_area_2"),
            state=address.get("admin_area_1"),
            zip_code=address.get("postal_code"),
        ),
    )
