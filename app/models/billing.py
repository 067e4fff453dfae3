"""Billing event audit log."""

import uuid as uuid_pkg
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Column, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from app.models.base import UUIDMixin

# JSONB on Postgres, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


class BillingEventType(str, Enum):
    """Types of billing events for audit logging."""

    SUBSCRIPTION_UPDATED = "subscription.updated"
    SUBSCRIPTION_CLEARED = "subscription.cleared"
    CUSTOMER_LINKED = "customer.linked"
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    REFUND_ISSUED = "refund.issued"


class BillingEvent(UUIDMixin, table=True):
    """
    Billing event audit log.

    Tracks every state change applied from a webhook (or an admin action) for
    audit and debugging. Never consulted when deciding what to write.
    """

    __tablename__ = "billing_events"

    user_id: uuid_pkg.UUID | None = Field(
        default=None, foreign_key="users.id", nullable=True, index=True
    )

    event_type: str = Field(
        sa_column=Column(String(50), nullable=False, index=True),
    )
    description: str | None = Field(default=None, max_length=500, nullable=True)

    # Change tracking
    previous_value: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSONType, nullable=True),
    )
    new_value: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSONType, nullable=True),
    )

    # Stripe reference (if applicable)
    stripe_event_id: str | None = Field(
        default=None,
        max_length=255,
        nullable=True,
        index=True,
    )

    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        sa_type=DateTime(timezone=True),
    )


class BillingEventRead(SQLModel):
    """Audit entry as returned to the account owner."""

    event_type: str
    description: str | None
    stripe_event_id: str | None
    created_at: datetime
