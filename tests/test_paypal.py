"""
Tests for the PayPal REST client and the PayPal checkout routes.
PayPal itself is replaced with an httpx.MockTransport.
"""
from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import func, select

from storefront.errors import (
    PaymentNotCompletedError,
    UpstreamError,
    ValidationError,
)
from storefront.models import Order
from storefront.schemas import CartItem
from storefront.services import paypal_client

CART = [
    CartItem(product_id="skid-01", name="Aluminium skid plate", price=Decimal("29.99"), quantity=1),
    CartItem(product_id="rope-10", name="Synthetic winch rope", price=Decimal("49.99"), quantity=2),
]


def _capture_body(status: str = "COMPLETED") -> dict:
    return {
        "id": "PP-ORDER-1",
        "status": status,
        "payer": {
            "name": {"given_name": "Dana", "surname": "Rider"},
            "email_address": "dana@example.com",
            "address": {
                "address_line_1": "12 Dune Rd",
                "admin_area_2": "Moab",
                "admin_area_1": "UT",
                "postal_code": "84532",
                "country_code": "US",
            },
        },
        "purchase_units": [
            {
                "payments": {
                    "captures": [
                        {
                            "id": "CAPTURE-9",
                            "status": "COMPLETED",
                            "amount": {"currency_code": "USD", "value": "129.97"},
                        }
                    ]
                }
            }
        ],
    }


class FakePayPal:
    """Records requests and answers the token, create and capture endpoints."""

    def __init__(self, token_status=200, create_status=201, capture=None, links=None):
        self.requests: list[httpx.Request] = []
        self.token_status = token_status
        self.create_status = create_status
        self.capture = capture if capture is not None else _capture_body()
        self.links = links if links is not None else [
            {"rel": "self", "href": "https://api-m.sandbox.paypal.com/v2/checkout/orders/PP-ORDER-1"},
            {"rel": "approve", "href": "https://www.sandbox.paypal.com/checkoutnow?token=PP-ORDER-1"},
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/v1/oauth2/token":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_client"})
            return httpx.Response(200, json={"access_token": "A21-token", "expires_in": 32400})
        if path == "/v2/checkout/orders":
            return httpx.Response(
                self.create_status,
                json={"id": "PP-ORDER-1", "status": "CREATED", "links": self.links},
            )
        if path.endswith("/capture"):
            return httpx.Response(201, json=self.capture)
        return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})


@pytest.fixture
def paypal(monkeypatch):
    fake = FakePayPal()
    monkeypatch.setattr(paypal_client, "_transport", httpx.MockTransport(fake))
    return fake


# ── Client ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_order_sends_cart_total(paypal):
    result = await paypal_client.create_order(CART, "user-42")

    assert result.order_id == "PP-ORDER-1"
    assert result.approval_url.endswith("token=PP-ORDER-1")
    assert result.is_test_mode is True

    token_req, create_req = paypal.requests
    assert token_req.url.host == "api-m.sandbox.paypal.com"
    assert token_req.headers["authorization"].startswith("Basic ")
    assert create_req.headers["authorization"] == "Bearer A21-token"

    body = json.loads(create_req.content)
    unit = body["purchase_units"][0]
    assert body["intent"] == "CAPTURE"
    assert unit["amount"]["value"] == "129.97"
    assert unit["amount"]["breakdown"]["item_total"]["value"] == "129.97"
    assert unit["custom_id"] == "user-42"
    assert unit["items"][1] == {
        "name": "Synthetic winch rope",
        "quantity": "2",
        "unit_amount": {"currency_code": "USD", "value": "49.99"},
        "sku": "rope-10",
    }
    assert body["application_context"]["return_url"] == (
        "https://parts.example.com/order-confirmation"
    )


@pytest.mark.asyncio
async def test_create_order_validates_input(paypal):
    with pytest.raises(ValidationError, match="Invalid cart items"):
        await paypal_client.create_order([], "user-42")
    with pytest.raises(ValidationError, match="User ID is required"):
        await paypal_client.create_order(CART, None)
    assert paypal.requests == []


@pytest.mark.asyncio
async def test_token_failure_is_upstream_error(paypal):
    paypal.token_status = 401
    with pytest.raises(UpstreamError) as exc_info:
        await paypal_client.create_order(CART, "user-42")
    assert exc_info.value.status_code == 401
    assert exc_info.value.message == "PayPal request failed (status 401)"


@pytest.mark.asyncio
async def test_missing_approval_link(paypal):
    paypal.links = [{"rel": "self", "href": "https://example.invalid"}]
    with pytest.raises(UpstreamError):
        await paypal_client.create_order(CART, "user-42")


@pytest.mark.asyncio
async def test_provider_server_error_maps_to_bad_gateway(paypal):
    paypal.create_status = 503
    with pytest.raises(UpstreamError) as exc_info:
        await paypal_client.create_order(CART, "user-42")
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_capture_returns_payer_shipping(paypal):
    capture = await paypal_client.capture_order("PP-ORDER-1")

    assert capture.capture_id == "CAPTURE-9"
    assert capture.amount == Decimal("129.97")
    assert capture.payer_name == "Dana Rider"
    assert capture.shipping.city == "Moab"
    assert capture.shipping.state == "UT"
    assert capture.shipping.zip_code == "84532"
    assert paypal.requests[-1].url.path == "/v2/checkout/orders/PP-ORDER-1/capture"


@pytest.mark.asyncio
async def test_capture_not_completed(paypal):
    paypal.capture = _capture_body(status="PAYER_ACTION_REQUIRED")
    with pytest.raises(PaymentNotCompletedError):
        await paypal_client.capture_order("PP-ORDER-1")


# ── Routes ───────────────────────────────────────────────────────────────────

def _cart_json() -> list[dict]:
    return [
        {"productId": "skid-01", "name": "Aluminium skid plate", "price": 29.99, "quantity": 1},
        {"productId": "rope-10", "name": "Synthetic winch rope", "price": 49.99, "quantity": 2},
    ]


@pytest.mark.asyncio
async def test_create_order_route(client, paypal):
    resp = await client.post(
        "/checkout/paypal/orders", json={"cartItems": _cart_json(), "userId": "user-42"}
    )
    assert resp.status_code == 200
    assert resp.json() == {
        "orderId": "PP-ORDER-1",
        "approvalUrl": "https://www.sandbox.paypal.com/checkoutnow?token=PP-ORDER-1",
        "isTestMode": True,
    }


@pytest.mark.asyncio
async def test_create_order_route_requires_user(client, paypal):
    resp = await client.post("/checkout/paypal/orders", json={"cartItems": _cart_json()})
    assert resp.status_code == 400
    assert resp.json() == {"error": "User ID is required"}


@pytest.mark.asyncio
async def test_capture_route_records_order(client, db_factory, paypal):
    resp = await client.post(
        "/checkout/paypal/capture",
        json={"orderId": "PP-ORDER-1", "userId": "user-42", "cartItems": _cart_json()},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["paypalOrderId"] == "PP-ORDER-1"
    assert body["paymentId"] == "CAPTURE-9"
    assert body["total"] == 129.97

    async with db_factory() as session:
        order = (await session.execute(select(Order))).scalar_one()
    assert order.id == body["orderId"]
    assert order.status == "approved"
    assert order.paypal_capture_id == "CAPTURE-9"
    assert order.shipping_name == "Dana Rider"
    assert order.shipping_address == "12 Dune Rd"
    assert order.shipping_zip == "84532"
    assert sorted(i.product_id for i in order.items) == ["rope-10", "skid-01"]


@pytest.mark.asyncio
async def test_capture_route_unpaid_records_nothing(client, db_factory, paypal):
    paypal.capture = _capture_body(status="VOIDED")
    resp = await client.post(
        "/checkout/paypal/capture",
        json={"orderId": "PP-ORDER-1", "userId": "user-42", "cartItems": _cart_json()},
    )

    assert resp.status_code == 400
    assert resp.json() == {"error": "Payment not completed. Status: VOIDED"}
    async with db_factory() as session:
        count = (await session.execute(select(func.count()).select_from(Order))).scalar_one()
    assert count == 0


@pytest.mark.asyncio
async def test_capture_route_requires_order_id(client, paypal):
    resp = await client.post("/checkout/paypal/capture", json={"userId": "user-42"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Order ID is required"}


@pytest.mark.asyncio
async def test_capture_route_keeps_captured_amount_when_cart_disagrees(client, db_factory, paypal):
    paypal.capture = _capture_body()
    paypal.capture["purchase_units"][0]["payments"]["captures"][0]["amount"]["value"] = "1.00"

    resp = await client.post(
        "/checkout/paypal/capture",
        json={
            "orderId": "PP-ORDER-1",
            "userId": "user-42",
            "cartItems": [{"productId": "winch", "price": 1000, "quantity": 1}],
        },
    )

    assert resp.status_code == 200
    assert resp.json()["total"] == 1.0
    async with db_factory() as session:
        order = (await session.execute(select(Order))).scalar_one()
    assert order.total == Decimal("1.00")
    assert order.status == "pending"
    assert [(i.product_id, i.price) for i in order.items] == [("winch", Decimal("1000.00"))]
