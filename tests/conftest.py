"""
Shared pytest fixtures – in-memory SQLite for unit tests (no real Postgres needed).
"""
from __future__ import annotations

import os

# Configure test env before any storefront import (settings are cached).
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_storefront"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["PAYPAL_CLIENT_ID"] = "sb-storefront-client"
os.environ["PAYPAL_CLIENT_SECRET"] = "paypal-test-secret"
os.environ["ADMIN_API_TOKEN"] = "test-admin-token"
os.environ["STOREFRONT_URL"] = "https://parts.example.com"

from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from storefront.database import get_db  # noqa: E402
from storefront.models import Base  # noqa: E402

# Use aiosqlite for tests (no Postgres needed)
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_factory() -> AsyncGenerator[async_sessionmaker, None]:
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_factory) -> AsyncGenerator[AsyncSession, None]:
    async with db_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(db_factory) -> AsyncGenerator[AsyncClient, None]:
    from storefront.main import app

    async def override_get_db():
        async with db_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": "Bearer test-admin-token"}


@pytest.fixture
def paid_session():
    """Factory for an expanded Stripe checkout session as returned by retrieve."""

    def _make(
        session_id: str = "cs_test_a1",
        user_id: str | None = "user-42",
        payment_status: str = "paid",
        amount_total: int | None = 12997,
    ) -> dict:
        return {
            "id": session_id,
            "object": "checkout.session",
            "payment_status": payment_status,
            "amount_total": amount_total,
            "client_reference_id": user_id,
            "metadata": {"userId": user_id} if user_id else {},
            "customer": {"id": "cus_rider", "email": "dana@example.com"},
            "customer_email": None,
            "customer_details": {
                "email": "dana@example.com",
                "name": "Dana Rider",
                "address": {
                    "line1": "12 Dune Rd",
                    "city": "Moab",
                    "state": "UT",
                    "postal_code": "84532",
                    "country": "US",
                },
            },
            "payment_intent": "pi_rider_1",
            "line_items": {
                "object": "list",
                "data": [
                    {
                        "description": "Aluminium skid plate",
                        "quantity": 1,
                        "price": {
                            "unit_amount": 2999,
                            "product": {"id": "prod_skid", "name": "Aluminium skid plate"},
                        },
                    },
                    {
                        "description": "Synthetic winch rope",
                        "quantity": 2,
                        "price": {"unit_amount": 4999, "product": "prod_rope"},
                    },
                ],
            },
        }

    return _make
