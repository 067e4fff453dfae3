"""
Stripe webhook processing.

Verifies each delivery, classifies it, and applies the matching state change
inside the caller's database session. Subscription events always replace the
whole local record, so duplicate or out-of-order deliveries converge on the
last event processed.

Data problems (unknown user, missing order metadata, bad timestamps) are
logged and acknowledged: retrying would not fix them. Storage failures
propagate so the caller answers 5xx and Stripe redelivers.
"""

import logging
import uuid as uuid_pkg
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.domain import order_ops, subscription_ops, user_ops
from app.models.billing import BillingEventType
from app.models.order import Order, PaymentStatus
from app.models.subscription import SubscriptionRecord, SubscriptionStatus
from app.models.user import User
from app.services.email.billing_notifications import BillingNotifier
from app.services.reconciliation import (
    build_subscription_record,
    extract_customer_id,
    extract_metadata_user_id,
    resolve_user,
)
from app.services.stripe_service import StripeService, object_id
from app.services.webhook_events import WebhookAck, WebhookEvent, WebhookEventKind

logger = logging.getLogger(__name__)

# Queues a notification to run after the response, e.g. BackgroundTasks.add_task
Scheduler = Callable[..., Any]
Notification = tuple[Callable[..., Awaitable[bool]], tuple[Any, ...]]


def _record_to_dict(record: SubscriptionRecord | None) -> dict[str, Any] | None:
    if record is None:
        return None
    return {
        "id": record.id,
        "status": record.status,
        "current_period_end": record.current_period_end.isoformat(),
        "plan": record.plan,
    }


class WebhookProcessor:
    """Applies verified Stripe events to local users and orders."""

    def __init__(self, gateway: StripeService, notifier: BillingNotifier | None = None):
        self._gateway = gateway
        self._notifier = notifier or BillingNotifier()

    async def process(
        self,
        db: AsyncSession,
        raw_body: bytes,
        signature: str | None,
        schedule: Scheduler | None = None,
    ) -> WebhookAck:
        """
        Verify and apply one webhook delivery.

        Raises SignatureError before any state is touched if verification
        fails. Notifications go to `schedule` when given, otherwise they are
        awaited once the state change succeeded.
        """
        event = self._gateway.verify_and_parse_webhook(raw_body, signature)
        logger.info(f"Received Stripe webhook: {event.type} ({event.id})")

        notifications: list[Notification] = []

        if event.kind == WebhookEventKind.SUBSCRIPTION_UPSERTED:
            handled = await self._handle_subscription_upserted(db, event, notifications)
        elif event.kind == WebhookEventKind.SUBSCRIPTION_DELETED:
            handled = await self._handle_subscription_deleted(db, event, notifications)
        elif event.kind == WebhookEventKind.PAYMENT_SUCCEEDED:
            handled = await self._handle_order_payment(db, event, PaymentStatus.PAID, notifications)
        elif event.kind == WebhookEventKind.PAYMENT_FAILED:
            handled = await self._handle_order_payment(
                db, event, PaymentStatus.FAILED, notifications
            )
        elif event.kind == WebhookEventKind.INVOICE_PAID:
            handled = self._handle_invoice_paid(event)
        else:
            logger.info(f"Unhandled webhook event type: {event.type}")
            handled = False

        for send, args in notifications:
            if schedule is not None:
                schedule(send, *args)
            else:
                await send(*args)

        return WebhookAck(
            received=True,
            event_id=event.id,
            type=event.type,
            kind=event.kind,
            handled=handled,
        )

    # ─────────────────────────────────────────────────────────────────────────────
    # Subscription events
    # ─────────────────────────────────────────────────────────────────────────────

    async def _resolve_subscription_user(
        self,
        db: AsyncSession,
        event: WebhookEvent,
    ) -> User | None:
        snapshot = event.data_object
        customer_id = extract_customer_id(snapshot)
        resolution = await resolve_user(db, customer_id, extract_metadata_user_id(snapshot))

        if resolution.warning is not None:
            logger.warning(f"{resolution.warning} (event {event.id})")
            return None

        if resolution.user is not None and resolution.backfilled:
            await subscription_ops.log_event(
                db,
                event_type=BillingEventType.CUSTOMER_LINKED,
                user_id=resolution.user.id,
                new_value={"stripe_customer_id": customer_id},
                description="Stripe customer linked from subscription metadata",
                stripe_event_id=event.id,
            )
        return resolution.user

    async def _handle_subscription_upserted(
        self,
        db: AsyncSession,
        event: WebhookEvent,
        notifications: list[Notification],
    ) -> bool:
        """Overwrite the user's subscription record from the event snapshot."""
        user = await self._resolve_subscription_user(db, event)
        if user is None:
            return False

        result = build_subscription_record(event.data_object)
        for warning in result.warnings:
            logger.warning(f"{warning} for subscription {result.record.id}, using fallback")

        previous = user.subscription
        user = await user_ops.replace_subscription(db, user, result.record)

        await subscription_ops.log_event(
            db,
            event_type=BillingEventType.SUBSCRIPTION_UPDATED,
            user_id=user.id,
            previous_value=_record_to_dict(previous),
            new_value=_record_to_dict(result.record),
            stripe_event_id=event.id,
        )

        past_due = SubscriptionStatus.PAST_DUE.value
        if result.record.status == past_due and (previous is None or previous.status != past_due):
            notifications.append((self._notifier.subscription_past_due, (user,)))

        logger.info(
            f"Subscription {result.record.id} reconciled for user {user.id}, "
            f"status: {result.record.status}"
        )
        return True

    async def _handle_subscription_deleted(
        self,
        db: AsyncSession,
        event: WebhookEvent,
        notifications: list[Notification],
    ) -> bool:
        """Clear the user's subscription record. Clearing an absent record is a no-op."""
        user = await self._resolve_subscription_user(db, event)
        if user is None:
            return False

        previous = user.subscription
        had_subscription = await user_ops.clear_subscription(db, user)
        if not had_subscription:
            logger.info(f"Subscription already absent for user {user.id}")
            return True

        await subscription_ops.log_event(
            db,
            event_type=BillingEventType.SUBSCRIPTION_CLEARED,
            user_id=user.id,
            previous_value=_record_to_dict(previous),
            stripe_event_id=event.id,
            description="Subscription ended",
        )
        notifications.append((self._notifier.subscription_ended, (user,)))

        logger.info(f"Subscription cleared for user {user.id}")
        return True

    # ─────────────────────────────────────────────────────────────────────────────
    # One-time payments
    # ─────────────────────────────────────────────────────────────────────────────

    async def _find_order(self, db: AsyncSession, event: WebhookEvent) -> Order | None:
        order_id = event.metadata.get("orderId")
        if not order_id:
            logger.info(f"Payment intent {event.data_object.get('id')} has no orderId metadata")
            return None
        try:
            parsed = uuid_pkg.UUID(str(order_id))
        except ValueError:
            logger.warning(f"Payment intent metadata has malformed orderId {order_id!r}")
            return None
        order = await order_ops.get(db, parsed)
        if order is None:
            logger.warning(f"Order {order_id} not found for payment event {event.id}")
        return order

    async def _handle_order_payment(
        self,
        db: AsyncSession,
        event: WebhookEvent,
        payment_status: PaymentStatus,
        notifications: list[Notification],
    ) -> bool:
        """Record a one-time payment outcome on its order. Subscription state is untouched."""
        order = await self._find_order(db, event)
        if order is None:
            return False

        current = order.payment_status
        if (
            current == PaymentStatus.REFUNDED.value
            or current == payment_status.value
            or (current == PaymentStatus.PAID.value and payment_status == PaymentStatus.FAILED)
        ):
            logger.info(
                f"Order {order.id} already {current}, ignoring {event.type} ({event.id})"
            )
            return True

        intent = event.data_object
        order = await order_ops.set_payment_status(
            db,
            order,
            payment_status,
            stripe_payment_intent_id=intent.get("id"),
            stripe_charge_id=object_id(intent.get("latest_charge")),
        )

        paid = payment_status == PaymentStatus.PAID
        await subscription_ops.log_event(
            db,
            event_type=BillingEventType.PAYMENT_SUCCEEDED if paid else BillingEventType.PAYMENT_FAILED,
            user_id=order.user_id,
            new_value={
                "order_id": str(order.id),
                "payment_status": payment_status.value,
                "payment_intent_id": intent.get("id"),
            },
            stripe_event_id=event.id,
        )

        user = await user_ops.get_by_id(db, order.user_id)
        if user is not None:
            send = self._notifier.order_paid if paid else self._notifier.order_payment_failed
            notifications.append((send, (user, order)))

        if paid:
            logger.info(f"Payment successful for order {order.id}")
        else:
            logger.warning(f"Payment failed for order {order.id}")
        return True

    def _handle_invoice_paid(self, event: WebhookEvent) -> bool:
        # Subscription state arrives via the subscription events themselves
        logger.info(f"Invoice payment successful: {event.data_object.get('id')}")
        return True
