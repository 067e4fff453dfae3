"""Domain operations for the local subscription record and its audit trail."""

import uuid as uuid_pkg
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.billing import BillingEvent, BillingEventType
from app.models.subscription import SubscriptionRecordRead
from app.models.user import User


class SubscriptionOperations:
    """Cached reads of the subscription record plus billing event logging.

    Reads here never call Stripe; they reflect whatever the last processed
    webhook wrote, which may trail the provider by the webhook delivery delay.
    """

    def has_active_subscription(self, user: User) -> bool:
        """Entitlement check: the user's mirrored status is active or trialing."""
        record = user.subscription
        return record is not None and record.is_entitled

    def get_cached_status(self, user: User) -> SubscriptionRecordRead:
        """Subscription summary for dashboards and badges."""
        record = user.subscription
        if record is None:
            return SubscriptionRecordRead(has_active_subscription=False)
        return SubscriptionRecordRead(
            has_active_subscription=record.is_entitled,
            subscription_id=record.id,
            status=record.status,
            plan=record.plan,
            current_period_end=record.current_period_end,
        )

    async def log_event(
        self,
        db: AsyncSession,
        event_type: BillingEventType,
        user_id: uuid_pkg.UUID | None = None,
        previous_value: dict[str, Any] | None = None,
        new_value: dict[str, Any] | None = None,
        description: str | None = None,
        stripe_event_id: str | None = None,
    ) -> BillingEvent:
        """Log a billing event for audit trail."""
        event = BillingEvent(
            user_id=user_id,
            event_type=event_type.value,
            previous_value=previous_value,
            new_value=new_value,
            description=description,
            stripe_event_id=stripe_event_id,
        )
        db.add(event)
        await db.flush()
        return event

    async def get_events(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
        skip: int = 0,
        limit: int = 50,
    ) -> list[BillingEvent]:
        """Get billing events for a user, newest first."""
        statement = (
            select(BillingEvent)
            .where(BillingEvent.user_id == user_id)
            .order_by(BillingEvent.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await db.execute(statement)
        return list(result.scalars().all())


subscription_ops = SubscriptionOperations()
