"""Stripe webhook endpoint tests.

Deliveries are signed with the test secret and verified by the real
StripeService, then applied to the per-test SQLite database.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from httpx import AsyncClient

from app.core.rate_limit import RateLimitConfig
from app.models.order import PaymentStatus

from tests.helpers.factories import TestDataFactory
from tests.helpers.stripe_payloads import (
    encode,
    make_event,
    make_payment_intent,
    make_subscription,
    sign,
    signed_event,
)

URL = "/api/v1/webhooks/stripe"


async def _deliver(client: AsyncClient, payload: bytes, header: str | None):
    headers = {"content-type": "application/json"}
    if header is not None:
        headers["stripe-signature"] = header
    return await client.post(URL, content=payload, headers=headers)


@pytest.mark.asyncio
async def test_subscription_created_end_to_end(webhook_client: AsyncClient, db_session):
    """A signed subscription event writes the user's record and acknowledges it."""
    user = await TestDataFactory.create_user(db_session, stripe_customer_id="cus_1")
    payload, header = signed_event(
        "customer.subscription.created", make_subscription(), "evt_created"
    )

    resp = await _deliver(webhook_client, payload, header)

    assert resp.status_code == 200
    assert resp.json() == {
        "received": True,
        "event_id": "evt_created",
        "type": "customer.subscription.created",
        "handled": True,
    }
    assert user.subscription_id == "sub_1"
    assert user.subscription_status == "active"
    assert user.subscription_plan == "price_basic"


@pytest.mark.asyncio
async def test_bad_signature_returns_400(webhook_client: AsyncClient, db_session):
    user = await TestDataFactory.create_user(db_session, stripe_customer_id="cus_1")
    payload = encode(make_event("customer.subscription.created", make_subscription()))

    resp = await _deliver(webhook_client, payload, sign(payload, secret="whsec_wrong"))

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid webhook signature"
    assert user.subscription is None


@pytest.mark.asyncio
async def test_missing_signature_returns_400(webhook_client: AsyncClient):
    payload = encode(make_event("invoice.paid", {"id": "in_1"}))
    resp = await _deliver(webhook_client, payload, None)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_unknown_event_type_acknowledged(webhook_client: AsyncClient):
    payload, header = signed_event("charge.dispute.created", {"id": "dp_1"})

    resp = await _deliver(webhook_client, payload, header)

    assert resp.status_code == 200
    assert resp.json()["received"] is True
    assert resp.json()["handled"] is False


@pytest.mark.asyncio
async def test_unknown_user_acknowledged(webhook_client: AsyncClient):
    payload, header = signed_event(
        "customer.subscription.updated", make_subscription(customer="cus_nobody")
    )
    resp = await _deliver(webhook_client, payload, header)
    assert resp.status_code == 200
    assert resp.json()["handled"] is False


@pytest.mark.asyncio
async def test_deleted_sends_notification_in_background(
    webhook_client: AsyncClient, db_session, mock_external_services
):
    user = await TestDataFactory.create_subscribed_user(db_session)
    payload, header = signed_event(
        "customer.subscription.deleted", make_subscription(status="canceled")
    )

    resp = await _deliver(webhook_client, payload, header)

    assert resp.status_code == 200
    assert user.subscription is None
    send = mock_external_services["postmark"].send
    send.assert_awaited_once()
    assert send.call_args.kwargs["tag"] == "subscription-ended"
    assert send.call_args.kwargs["to"] == user.email


@pytest.mark.asyncio
async def test_payment_succeeded_marks_order(webhook_client: AsyncClient, db_session):
    user = await TestDataFactory.create_user(db_session)
    order = await TestDataFactory.create_order(db_session, user)
    payload, header = signed_event(
        "payment_intent.succeeded", make_payment_intent(order_id=str(order.id))
    )

    resp = await _deliver(webhook_client, payload, header)

    assert resp.status_code == 200
    assert resp.json()["handled"] is True
    assert order.payment_status == PaymentStatus.PAID.value


@pytest.mark.asyncio
async def test_rate_limited(webhook_client: AsyncClient):
    payload, header = signed_event("invoice.paid", {"id": "in_1"})

    with patch("app.core.rate_limit.WEBHOOK_LIMIT", RateLimitConfig(requests=2, window_seconds=60)):
        assert (await _deliver(webhook_client, payload, header)).status_code == 200
        assert (await _deliver(webhook_client, payload, header)).status_code == 200
        resp = await _deliver(webhook_client, payload, header)

    assert resp.status_code == 429
    assert "Retry-After" in resp.headers


@pytest.mark.asyncio
async def test_stripe_not_configured(unauth_client: AsyncClient):
    """Without the override the real dependency rejects: Stripe is unset in tests."""
    from app.api.deps.billing import get_billing_gateway
    from app.main import app

    app.dependency_overrides.pop(get_billing_gateway, None)
    payload, header = signed_event("invoice.paid", {"id": "in_1"})

    with patch("app.api.deps.billing.settings") as mock_settings:
        mock_settings.stripe_enabled = False
        resp = await _deliver(unauth_client, payload, header)

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Payments not configured"
