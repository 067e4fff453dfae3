import secrets
import time
import uuid as uuid_pkg
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime
from sqlmodel import Field, Relationship

from app.models.base import TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from app.models.user import User


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


def generate_order_number() -> str:
    """ORD-<base36 millis>-<random suffix>, e.g. ORD-LX2K9Q1A-7QF."""
    millis = int(time.time() * 1000)
    digits = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    encoded = ""
    while millis:
        millis, rem = divmod(millis, 36)
        encoded = digits[rem] + encoded
    suffix = "".join(secrets.choice(digits) for _ in range(3))
    return f"ORD-{encoded}-{suffix}"


class Order(UUIDMixin, TimestampMixin, table=True):
    """
    One-time purchase. Only the payment columns are managed by billing code;
    fulfilment fields belong to the order service.
    """

    __tablename__ = "orders"

    user_id: uuid_pkg.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    order_number: str = Field(
        default_factory=generate_order_number, max_length=40, unique=True, index=True
    )

    total_cents: int = Field(default=0, ge=0)
    currency: str = Field(default="usd", max_length=3)

    status: str = Field(default=OrderStatus.PENDING.value, max_length=20, index=True)
    payment_status: str = Field(default=PaymentStatus.PENDING.value, max_length=20, index=True)

    # Stripe references
    stripe_payment_intent_id: str | None = Field(
        default=None, max_length=255, nullable=True, index=True
    )
    stripe_charge_id: str | None = Field(default=None, max_length=255, nullable=True)

    # Refund tracking
    refund_reason: str | None = Field(default=None, max_length=500, nullable=True)
    refunded_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )

    user: Optional["User"] = Relationship(back_populates="orders")
