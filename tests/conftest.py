"""Root conftest: test infrastructure for all backend tests.

Provides:
- In-memory SQLite engine and session (tables created fresh per test)
- Test user, product and order fixtures
- API clients with dependency overrides (auth, DB, billing gateway)
- Autouse mocks for external services (Postmark) and rate limiter reset
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import app.models  # noqa: F401  (registers tables on SQLModel.metadata)
from app.models.order import Order
from app.models.product import BillingInterval, BillingType, Product
from app.models.user import User
from app.services.stripe_service import StripeService

from tests.helpers.factories import TestDataFactory

# ─────────────────────────────────────────────────────────────────────────────
# Database (in-memory SQLite, one engine per test)
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """A session on the per-test database. Commits are real but the DB is discarded."""
    session_maker = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    async with session_maker() as session:
        yield session


# ─────────────────────────────────────────────────────────────────────────────
# Entity Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    """A user with no Stripe customer and no subscription."""
    return await TestDataFactory.create_user(db_session)


@pytest.fixture
async def customer_user(db_session: AsyncSession) -> User:
    """A user already linked to Stripe customer cus_1."""
    return await TestDataFactory.create_user(db_session, stripe_customer_id="cus_1")


@pytest.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await TestDataFactory.create_user(db_session, is_admin=True)


@pytest.fixture
async def test_plans(db_session: AsyncSession) -> dict[str, Product]:
    """Free, basic and pro plans, plus an inactive and a one-time product."""
    products = {
        "free": Product(name="Free", price_cents=0, is_free=True),
        "basic": Product(
            name="Basic",
            price_cents=900,
            billing_interval=BillingInterval.MONTH.value,
            stripe_price_id="price_basic",
        ),
        "pro": Product(
            name="Pro",
            price_cents=2900,
            billing_interval=BillingInterval.MONTH.value,
            stripe_price_id="price_pro",
        ),
        "legacy": Product(
            name="Legacy",
            price_cents=500,
            is_active=False,
            billing_interval=BillingInterval.MONTH.value,
            stripe_price_id="price_legacy",
        ),
        "sticker": Product(
            name="Sticker pack",
            price_cents=300,
            billing_type=BillingType.ONE_TIME.value,
            stripe_price_id="price_sticker",
        ),
    }
    db_session.add_all(products.values())
    await db_session.flush()
    for product in products.values():
        await db_session.refresh(product)
    return products


@pytest.fixture
async def test_order(db_session: AsyncSession, test_user: User) -> Order:
    """A pending 25.00 USD order owned by test_user."""
    return await TestDataFactory.create_order(db_session, test_user)


# ─────────────────────────────────────────────────────────────────────────────
# Billing Gateway
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def mock_gateway() -> MagicMock:
    """A StripeService stand-in for API tests; configure return values per test."""
    return MagicMock(spec=StripeService)


# ─────────────────────────────────────────────────────────────────────────────
# API Clients
# ─────────────────────────────────────────────────────────────────────────────


def _override_common(app, db_session: AsyncSession, gateway) -> None:
    from app.api.deps.billing import get_billing_gateway
    from app.core.database import get_db

    async def override_db():
        yield db_session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_billing_gateway] = lambda: gateway


@pytest.fixture
async def api_client(db_session: AsyncSession, test_user: User, mock_gateway: MagicMock):
    """HTTP client authenticated as test_user, with the mock gateway and test DB.

    Overrides: get_current_user, get_db, get_billing_gateway
    """
    from app.api.deps.auth import get_current_user
    from app.main import app

    _override_common(app, db_session, mock_gateway)
    app.dependency_overrides[get_current_user] = lambda: test_user

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def admin_client(db_session: AsyncSession, admin_user: User, mock_gateway: MagicMock):
    """HTTP client authenticated as an admin user."""
    from app.api.deps.auth import get_current_user
    from app.main import app

    _override_common(app, db_session, mock_gateway)
    app.dependency_overrides[get_current_user] = lambda: admin_user

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def unauth_client(db_session: AsyncSession, mock_gateway: MagicMock):
    """HTTP client with no bearer token. Real auth dependency runs."""
    from app.main import app

    _override_common(app, db_session, mock_gateway)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ─────────────────────────────────────────────────────────────────────────────
# External Service Mocks
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def mock_external_services():
    """SAFETY: never send real email from tests."""
    with patch(
        "app.services.email.billing_notifications.postmark_service", new_callable=MagicMock
    ) as mock_pm:
        mock_pm.send = AsyncMock(return_value=True)
        yield {"postmark": mock_pm}


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    from app.core.rate_limit import rate_limiter

    rate_limiter._requests.clear()
    yield
    rate_limiter._requests.clear()
