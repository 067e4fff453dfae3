"""API test fixtures: clients that run the real webhook verification path.

Builds on root conftest fixtures (db_session, test_user, mock_gateway,
api_client, mock_external_services).
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.stripe_service import StripeService

from tests.helpers.stripe_payloads import WEBHOOK_SECRET


@pytest.fixture
def signing_gateway() -> StripeService:
    """A real StripeService that verifies signatures but never reaches Stripe."""
    return StripeService(webhook_secret=WEBHOOK_SECRET, client=MagicMock())


@pytest.fixture
async def webhook_client(db_session: AsyncSession, signing_gateway: StripeService):
    """Unauthenticated client for the webhook endpoint.

    Overrides: get_db, get_billing_gateway
    """
    from app.api.deps.billing import get_billing_gateway
    from app.core.database import get_db
    from app.main import app

    async def override_db():
        yield db_session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_billing_gateway] = lambda: signing_gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
