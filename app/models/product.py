import uuid as uuid_pkg
from enum import Enum

from pydantic import field_validator
from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, UUIDMixin


class BillingType(str, Enum):
    ONE_TIME = "one_time"
    RECURRING = "recurring"


class BillingInterval(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class ProductBase(SQLModel):
    """Base fields shared across Product schemas."""

    name: str = Field(max_length=255, index=True)
    description: str = Field(default="", max_length=2000)
    price_cents: int = Field(default=0, ge=0)
    currency: str = Field(default="usd", max_length=3)

    is_active: bool = Field(default=True, index=True)
    is_free: bool = Field(default=False, index=True)

    billing_type: str = Field(default=BillingType.RECURRING.value, max_length=20)
    billing_interval: str | None = Field(default=None, max_length=10)
    billing_interval_count: int = Field(default=1, ge=1)


class Product(ProductBase, UUIDMixin, TimestampMixin, table=True):
    """
    Catalog entry. Paid recurring products correlate to Stripe prices.

    The subscription record's `plan` is joined to `stripe_price_id` at read
    time only; nothing is denormalized onto the user.
    """

    __tablename__ = "products"

    stripe_price_id: str | None = Field(default=None, max_length=255, nullable=True, index=True)
    stripe_product_id: str | None = Field(default=None, max_length=255, nullable=True)


class ProductRead(ProductBase):
    """Product as returned by the plans catalogue."""

    id: uuid_pkg.UUID
    stripe_price_id: str | None = None
    stripe_product_id: str | None = None


class ProductCreate(ProductBase):
    """Admin request to add a catalog entry. Stripe IDs are filled in by the server."""

    @field_validator("billing_type")
    @classmethod
    def validate_billing_type(cls, value: str) -> str:
        return BillingType(value).value

    @field_validator("billing_interval")
    @classmethod
    def validate_billing_interval(cls, value: str | None) -> str | None:
        return BillingInterval(value).value if value else None
