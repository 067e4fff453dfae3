"""WebhookProcessor tests against a real SQLite session and real signature checks."""

import time
import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select

from app.core.exceptions import SignatureError
from app.domain import order_ops
from app.models.billing import BillingEvent, BillingEventType
from app.models.order import PaymentStatus
from app.services.reconciliation import one_month_from
from app.services.stripe_service import StripeService
from app.services.webhook_events import WebhookEventKind
from app.services.webhook_processor import WebhookProcessor

from tests.helpers.factories import TestDataFactory, as_utc
from tests.helpers.mock_factories import make_mock_notifier
from tests.helpers.stripe_payloads import (
    days_from_now,
    encode,
    make_event,
    make_payment_intent,
    make_subscription,
    sign,
    signed_event,
)


@pytest.fixture
def notifier():
    return make_mock_notifier()


@pytest.fixture
def processor(notifier):
    gateway = StripeService(webhook_secret="whsec_test_secret", client=MagicMock())
    return WebhookProcessor(gateway, notifier=notifier)


async def _events(db, user_id=None):
    statement = select(BillingEvent)
    if user_id is not None:
        statement = statement.where(BillingEvent.user_id == user_id)
    result = await db.execute(statement)
    return list(result.scalars().all())


class TestVerification:
    @pytest.mark.asyncio
    async def test_tampered_signature_changes_nothing(self, processor, db_session):
        user = await TestDataFactory.create_user(db_session, stripe_customer_id="cus_1")
        payload = encode(make_event("customer.subscription.created", make_subscription()))
        header = sign(payload)

        with pytest.raises(SignatureError):
            await processor.process(db_session, payload + b" ", header)

        assert user.subscription is None
        assert await _events(db_session) == []

    @pytest.mark.asyncio
    async def test_missing_signature(self, processor, db_session):
        payload = encode(make_event("invoice.paid", {"id": "in_1"}))
        with pytest.raises(SignatureError):
            await processor.process(db_session, payload, None)

    @pytest.mark.asyncio
    async def test_unknown_event_acknowledged_not_handled(self, processor, db_session):
        payload, header = signed_event("customer.created", {"id": "cus_1"}, "evt_unknown")

        ack = await processor.process(db_session, payload, header)

        assert ack.received is True
        assert ack.handled is False
        assert ack.kind == WebhookEventKind.IGNORED
        assert ack.event_id == "evt_unknown"

    @pytest.mark.asyncio
    async def test_unknown_event_leaves_state_untouched(self, processor, notifier, db_session):
        user = await TestDataFactory.create_subscribed_user(db_session)
        before = user.subscription
        payload, header = signed_event(
            "customer.updated", {"id": "cus_1", "object": "customer"}, "evt_customer"
        )

        await processor.process(db_session, payload, header)

        assert user.subscription == before
        assert user.stripe_customer_id == "cus_1"
        assert await _events(db_session) == []
        notifier.subscription_ended.assert_not_awaited()
        notifier.subscription_past_due.assert_not_awaited()


class TestSubscriptionUpserted:
    @pytest.mark.asyncio
    async def test_creates_record_for_customer(self, processor, db_session):
        user = await TestDataFactory.create_user(db_session, stripe_customer_id="cus_1")
        period_end = days_from_now(30)
        payload, header = signed_event(
            "customer.subscription.created",
            make_subscription(current_period_end=period_end),
            "evt_1",
        )

        ack = await processor.process(db_session, payload, header)

        assert ack.handled is True
        assert ack.kind == WebhookEventKind.SUBSCRIPTION_UPSERTED
        assert user.subscription_id == "sub_1"
        assert user.subscription_status == "active"
        assert user.subscription_plan == "price_basic"
        assert as_utc(user.subscription_current_period_end) == datetime.fromtimestamp(
            period_end, tz=UTC
        )

        events = await _events(db_session, user.id)
        assert [e.event_type for e in events] == [BillingEventType.SUBSCRIPTION_UPDATED.value]
        assert events[0].stripe_event_id == "evt_1"
        assert events[0].previous_value is None
        assert events[0].new_value["plan"] == "price_basic"

    @pytest.mark.asyncio
    async def test_replay_is_idempotent(self, processor, db_session):
        user = await TestDataFactory.create_user(db_session, stripe_customer_id="cus_1")
        payload, header = signed_event("customer.subscription.updated", make_subscription())

        await processor.process(db_session, payload, header)
        first = (
            user.subscription_id,
            user.subscription_status,
            user.subscription_plan,
            user.subscription_current_period_end,
        )
        await processor.process(db_session, payload, header)

        assert (
            user.subscription_id,
            user.subscription_status,
            user.subscription_plan,
            user.subscription_current_period_end,
        ) == first

    @pytest.mark.asyncio
    async def test_update_replaces_whole_record_and_notifies_past_due(
        self, processor, notifier, db_session
    ):
        user = await TestDataFactory.create_subscribed_user(db_session)
        payload, header = signed_event(
            "customer.subscription.updated",
            make_subscription(id="sub_2", status="past_due", price_id="price_pro"),
        )

        await processor.process(db_session, payload, header)

        assert user.subscription_id == "sub_2"
        assert user.subscription_status == "past_due"
        assert user.subscription_plan == "price_pro"
        notifier.subscription_past_due.assert_awaited_once_with(user)

    @pytest.mark.asyncio
    async def test_no_past_due_notification_when_already_past_due(
        self, processor, notifier, db_session
    ):
        await TestDataFactory.create_subscribed_user(db_session, status="past_due")
        payload, header = signed_event(
            "customer.subscription.updated", make_subscription(status="past_due")
        )

        await processor.process(db_session, payload, header)

        notifier.subscription_past_due.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_back_to_metadata_and_links_customer(self, processor, db_session):
        user = await TestDataFactory.create_user(db_session)
        payload, header = signed_event(
            "customer.subscription.created",
            make_subscription(customer="cus_new", metadata={"userId": str(user.id)}),
        )

        ack = await processor.process(db_session, payload, header)

        assert ack.handled is True
        assert user.stripe_customer_id == "cus_new"
        assert user.subscription_id == "sub_1"
        types = sorted(e.event_type for e in await _events(db_session, user.id))
        assert types == sorted(
            [BillingEventType.CUSTOMER_LINKED.value, BillingEventType.SUBSCRIPTION_UPDATED.value]
        )

    @pytest.mark.asyncio
    async def test_unresolved_user_is_acknowledged(self, processor, db_session):
        payload, header = signed_event(
            "customer.subscription.created",
            make_subscription(customer="cus_ghost", metadata={"userId": str(uuid.uuid4())}),
        )

        ack = await processor.process(db_session, payload, header)

        assert ack.received is True
        assert ack.handled is False
        assert await _events(db_session) == []

    @pytest.mark.asyncio
    async def test_bad_period_end_uses_one_month_fallback(self, processor, db_session):
        user = await TestDataFactory.create_user(db_session, stripe_customer_id="cus_1")
        payload, header = signed_event(
            "customer.subscription.updated", make_subscription(current_period_end=0)
        )

        before = datetime.now(UTC)
        ack = await processor.process(db_session, payload, header)

        assert ack.handled is True
        stored = as_utc(user.subscription_current_period_end)
        assert abs(stored - one_month_from(before)) < timedelta(seconds=5)

    @pytest.mark.asyncio
    async def test_expanded_customer_object(self, processor, db_session):
        user = await TestDataFactory.create_user(db_session, stripe_customer_id="cus_1")
        payload, header = signed_event(
            "customer.subscription.updated",
            make_subscription(customer={"id": "cus_1", "object": "customer"}),
        )

        await processor.process(db_session, payload, header)

        assert user.subscription_id == "sub_1"


class TestSubscriptionDeleted:
    @pytest.mark.asyncio
    async def test_clears_record_and_notifies(self, processor, notifier, db_session):
        user = await TestDataFactory.create_subscribed_user(db_session)
        payload, header = signed_event(
            "customer.subscription.deleted", make_subscription(status="canceled")
        )

        ack = await processor.process(db_session, payload, header)

        assert ack.handled is True
        assert ack.kind == WebhookEventKind.SUBSCRIPTION_DELETED
        assert user.subscription is None
        assert user.subscription_status is None
        assert user.stripe_customer_id == "cus_1"
        notifier.subscription_ended.assert_awaited_once_with(user)

        events = await _events(db_session, user.id)
        assert [e.event_type for e in events] == [BillingEventType.SUBSCRIPTION_CLEARED.value]
        assert events[0].previous_value["id"] == "sub_1"

    @pytest.mark.asyncio
    async def test_second_delete_is_noop(self, processor, notifier, db_session):
        user = await TestDataFactory.create_subscribed_user(db_session)
        payload, header = signed_event(
            "customer.subscription.deleted", make_subscription(status="canceled")
        )

        await processor.process(db_session, payload, header)
        ack = await processor.process(db_session, payload, header)

        assert ack.handled is True
        assert user.subscription is None
        assert notifier.subscription_ended.await_count == 1
        assert len(await _events(db_session, user.id)) == 1

    @pytest.mark.asyncio
    async def test_then_recreate(self, processor, db_session):
        user = await TestDataFactory.create_subscribed_user(db_session)
        for event_type, sub in [
            ("customer.subscription.deleted", make_subscription(status="canceled")),
            ("customer.subscription.created", make_subscription(id="sub_2")),
        ]:
            payload, header = signed_event(event_type, sub)
            await processor.process(db_session, payload, header)

        assert user.subscription_id == "sub_2"
        assert user.subscription_status == "active"


class TestOrderPayments:
    @pytest.mark.asyncio
    async def test_success_marks_order_paid_only(self, processor, notifier, db_session):
        user = await TestDataFactory.create_subscribed_user(db_session)
        order = await TestDataFactory.create_order(db_session, user)
        payload, header = signed_event(
            "payment_intent.succeeded", make_payment_intent(id="pi_9", order_id=str(order.id))
        )

        ack = await processor.process(db_session, payload, header)

        assert ack.handled is True
        assert ack.kind == WebhookEventKind.PAYMENT_SUCCEEDED
        assert order.payment_status == PaymentStatus.PAID.value
        assert order.stripe_payment_intent_id == "pi_9"
        assert order.stripe_charge_id == "ch_1"
        assert user.subscription_id == "sub_1"
        assert user.subscription_status == "active"
        notifier.order_paid.assert_awaited_once()

        events = await _events(db_session, user.id)
        assert [e.event_type for e in events] == [BillingEventType.PAYMENT_SUCCEEDED.value]

    @pytest.mark.asyncio
    async def test_failure_marks_order_failed(self, processor, notifier, db_session):
        user = await TestDataFactory.create_user(db_session)
        order = await TestDataFactory.create_order(db_session, user)
        payload, header = signed_event(
            "payment_intent.payment_failed",
            make_payment_intent(order_id=str(order.id), latest_charge=None),
        )

        ack = await processor.process(db_session, payload, header)

        assert ack.handled is True
        assert order.payment_status == PaymentStatus.FAILED.value
        assert order.stripe_charge_id is None
        notifier.order_payment_failed.assert_awaited_once()
        notifier.order_paid.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("order_id", [None, "not-a-uuid", str(uuid.uuid4())])
    async def test_unmatched_payment_is_acknowledged(self, processor, db_session, order_id):
        payload, header = signed_event(
            "payment_intent.succeeded", make_payment_intent(order_id=order_id)
        )

        ack = await processor.process(db_session, payload, header)

        assert ack.received is True
        assert ack.handled is False
        assert await _events(db_session) == []

    @pytest.mark.asyncio
    async def test_redelivered_success_after_refund_is_ignored(
        self, processor, notifier, db_session
    ):
        user = await TestDataFactory.create_user(db_session)
        order = await TestDataFactory.create_order(db_session, user)
        payload, header = signed_event(
            "payment_intent.succeeded", make_payment_intent(order_id=str(order.id)), "evt_pay"
        )

        await processor.process(db_session, payload, header)
        await order_ops.mark_refunded(db_session, order, "requested_by_customer")
        ack = await processor.process(db_session, payload, header)

        assert ack.handled is True
        assert order.payment_status == PaymentStatus.REFUNDED.value
        assert notifier.order_paid.await_count == 1
        assert len(await _events(db_session, user.id)) == 1

    @pytest.mark.asyncio
    async def test_late_failure_does_not_downgrade_paid_order(
        self, processor, notifier, db_session
    ):
        user = await TestDataFactory.create_user(db_session)
        order = await TestDataFactory.create_order(
            db_session, user, payment_status=PaymentStatus.PAID.value, stripe_charge_id="ch_1"
        )
        payload, header = signed_event(
            "payment_intent.payment_failed",
            make_payment_intent(order_id=str(order.id), latest_charge=None),
        )

        ack = await processor.process(db_session, payload, header)

        assert ack.handled is True
        assert order.payment_status == PaymentStatus.PAID.value
        notifier.order_payment_failed.assert_not_awaited()
        assert await _events(db_session) == []

    @pytest.mark.asyncio
    async def test_retry_after_failure_marks_paid(self, processor, notifier, db_session):
        user = await TestDataFactory.create_user(db_session)
        order = await TestDataFactory.create_order(
            db_session, user, payment_status=PaymentStatus.FAILED.value
        )
        payload, header = signed_event(
            "payment_intent.succeeded", make_payment_intent(order_id=str(order.id))
        )

        await processor.process(db_session, payload, header)

        assert order.payment_status == PaymentStatus.PAID.value
        notifier.order_paid.assert_awaited_once()


class TestInvoicePaid:
    @pytest.mark.asyncio
    async def test_logged_without_state_change(self, processor, db_session):
        user = await TestDataFactory.create_subscribed_user(db_session)
        payload, header = signed_event("invoice.paid", {"id": "in_1", "customer": "cus_1"})

        ack = await processor.process(db_session, payload, header)

        assert ack.handled is True
        assert ack.kind == WebhookEventKind.INVOICE_PAID
        assert user.subscription_status == "active"
        assert await _events(db_session) == []


class TestNotificationScheduling:
    @pytest.mark.asyncio
    async def test_schedule_receives_notifications(self, processor, notifier, db_session):
        user = await TestDataFactory.create_subscribed_user(db_session)
        payload, header = signed_event(
            "customer.subscription.deleted", make_subscription(status="canceled")
        )
        schedule = MagicMock()

        await processor.process(db_session, payload, header, schedule=schedule)

        schedule.assert_called_once_with(notifier.subscription_ended, user)
        notifier.subscription_ended.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_fail_event(self, processor, notifier, db_session):
        user = await TestDataFactory.create_subscribed_user(db_session)
        notifier.subscription_ended.return_value = False
        payload = encode(
            make_event("customer.subscription.deleted", make_subscription(status="canceled"))
        )

        ack = await processor.process(db_session, payload, sign(payload, timestamp=int(time.time())))

        assert ack.handled is True
        assert user.subscription is None
