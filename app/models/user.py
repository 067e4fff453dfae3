from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime
from sqlmodel import Field, Relationship

from app.models.base import TimestampMixin, UUIDMixin
from app.models.subscription import SubscriptionRecord

if TYPE_CHECKING:
    from app.models.order import Order


class User(UUIDMixin, TimestampMixin, table=True):
    """
    User model - account holder and billing customer.

    Accounts are created by the auth service; this service reads them and
    owns only the billing columns (Stripe customer and subscription record).
    """

    __tablename__ = "users"

    email: str = Field(max_length=255, unique=True, index=True)
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)

    # Admin flag - for refunds and other back-office billing operations
    is_admin: bool = Field(
        default=False,
        nullable=False,
        sa_column_kwargs={"comment": "Admin flag for back-office billing operations"},
    )

    # Stripe customer reference, set on first checkout or backfilled by webhooks
    stripe_customer_id: str | None = Field(default=None, max_length=255, nullable=True, index=True)

    # Local subscription record (all null = no paid subscription).
    # Written only by the webhook processor via user_ops.replace_subscription/clear_subscription.
    subscription_id: str | None = Field(default=None, max_length=255, nullable=True)
    subscription_status: str | None = Field(
        default=None, max_length=32, nullable=True, index=True
    )
    subscription_current_period_end: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    subscription_plan: str | None = Field(default=None, max_length=255, nullable=True)

    # Relationships
    orders: list["Order"] = Relationship(back_populates="user")

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.email

    @property
    def subscription(self) -> SubscriptionRecord | None:
        """The mirrored subscription, or None when the user has no paid plan."""
        if not self.subscription_id or self.subscription_current_period_end is None:
            return None
        return SubscriptionRecord(
            id=self.subscription_id,
            status=self.subscription_status or "",
            current_period_end=self.subscription_current_period_end,
            plan=self.subscription_plan or "",
        )

