"""Subscription record - the locally mirrored view of a user's Stripe subscription."""

from datetime import datetime
from enum import Enum

from sqlmodel import SQLModel


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states, mirroring Stripe's vocabulary."""

    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"


# Statuses that grant access to paid features
ENTITLED_STATUSES = frozenset({SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value})


class SubscriptionRecord(SQLModel):
    """
    Reconciled billing state stored alongside the user.

    Only the webhook processor writes it, and always as a whole: the four
    fields are replaced together, never merged.
    """

    id: str
    status: str
    current_period_end: datetime
    plan: str

    @property
    def is_entitled(self) -> bool:
        """Whether this status grants paid features (active or trialing)."""
        return self.status in ENTITLED_STATUSES


class SubscriptionRecordRead(SQLModel):
    """Cached subscription state returned to clients."""

    has_active_subscription: bool
    subscription_id: str | None = None
    status: str | None = None
    plan: str | None = None
    current_period_end: datetime | None = None
