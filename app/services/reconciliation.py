"""
Reconciliation: turning a Stripe subscription snapshot into the local record.

Each step is a small function that returns a result or a fallback plus an
optional warning, so the webhook processor can compose them and log what was
substituted. Nothing here raises for bad provider data.
"""

import calendar
import logging
import uuid as uuid_pkg
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import TimestampValidationWarning, UserResolutionWarning
from app.domain import user_ops
from app.models.subscription import SubscriptionRecord
from app.models.user import User

logger = logging.getLogger(__name__)

# Period ends further out than this are treated as corrupt
MAX_PERIOD_YEARS = 10


def add_months(moment: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def one_month_from(now: datetime) -> datetime:
    """The fallback period end: one calendar month after now."""
    return add_months(now, 1)


@dataclass(frozen=True)
class PeriodEndResult:
    value: datetime
    fallback_used: bool = False
    warning: TimestampValidationWarning | None = None


def resolve_period_end(raw: Any, now: datetime | None = None) -> PeriodEndResult:
    """
    Validate a provider epoch-seconds timestamp.

    Accepted only if it is a positive integer whose date lies after now and no
    more than ten years ahead. Anything else yields one month from now and a
    TimestampValidationWarning describing the rejected value.
    """
    now = now or datetime.now(UTC)

    def fallback(reason: str) -> PeriodEndResult:
        return PeriodEndResult(
            value=one_month_from(now),
            fallback_used=True,
            warning=TimestampValidationWarning(f"current_period_end {raw!r} rejected: {reason}"),
        )

    # bool is an int subclass but never a timestamp
    if isinstance(raw, bool) or not isinstance(raw, int):
        return fallback("not an integer")
    if raw <= 0:
        return fallback("not positive")

    try:
        value = datetime.fromtimestamp(raw, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return fallback("out of range")

    if value <= now:
        return fallback("not in the future")
    if value > add_months(now, 12 * MAX_PERIOD_YEARS):
        return fallback(f"more than {MAX_PERIOD_YEARS} years ahead")

    return PeriodEndResult(value=value)


def _first_item(snapshot: dict[str, Any]) -> dict[str, Any]:
    items = snapshot.get("items")
    data = items.get("data") if isinstance(items, dict) else None
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    return {}


def extract_plan(snapshot: dict[str, Any]) -> str:
    """Price ID of the first subscription item, or empty when there is none."""
    price = _first_item(snapshot).get("price")
    if isinstance(price, dict):
        return str(price.get("id") or "")
    if isinstance(price, str):
        return price
    return ""


def extract_customer_id(snapshot: dict[str, Any]) -> str | None:
    """Customer reference, which Stripe sends as an ID or an expanded object."""
    customer = snapshot.get("customer")
    if isinstance(customer, str):
        return customer or None
    if isinstance(customer, dict):
        customer_id = customer.get("id")
        return customer_id if isinstance(customer_id, str) and customer_id else None
    return None


def extract_period_end_raw(snapshot: dict[str, Any]) -> Any:
    """Top-level current_period_end, falling back to the first item's."""
    if snapshot.get("current_period_end") is not None:
        return snapshot["current_period_end"]
    return _first_item(snapshot).get("current_period_end")


def extract_metadata_user_id(snapshot: dict[str, Any]) -> str | None:
    metadata = snapshot.get("metadata")
    if not isinstance(metadata, dict):
        return None
    user_id = metadata.get("userId")
    return str(user_id) if user_id else None


@dataclass(frozen=True)
class ReconciliationResult:
    record: SubscriptionRecord
    warnings: list[Warning] = field(default_factory=list)


def build_subscription_record(
    snapshot: dict[str, Any],
    now: datetime | None = None,
) -> ReconciliationResult:
    """Map a subscription snapshot onto the full local record. Status is copied verbatim."""
    period_end = resolve_period_end(extract_period_end_raw(snapshot), now)
    warnings: list[Warning] = []
    if period_end.warning is not None:
        warnings.append(period_end.warning)

    record = SubscriptionRecord(
        id=str(snapshot.get("id") or ""),
        status=str(snapshot.get("status") or ""),
        current_period_end=period_end.value,
        plan=extract_plan(snapshot),
    )
    return ReconciliationResult(record=record, warnings=warnings)


@dataclass(frozen=True)
class UserResolution:
    user: User | None
    backfilled: bool = False
    warning: UserResolutionWarning | None = None


def _parse_user_id(value: str) -> uuid_pkg.UUID | None:
    try:
        return uuid_pkg.UUID(value)
    except ValueError:
        return None


async def resolve_user(
    db: AsyncSession,
    customer_id: str | None,
    metadata_user_id: str | None,
) -> UserResolution:
    """
    Find the local user a subscription event belongs to.

    1. By Stripe customer ID.
    2. By the internal user ID carried in metadata; on a hit the customer ID
       is backfilled so the next event resolves by step 1.
    3. Otherwise no user, with a UserResolutionWarning.
    """
    if customer_id:
        user = await user_ops.get_by_stripe_customer(db, customer_id)
        if user:
            return UserResolution(user=user)

    if metadata_user_id:
        logger.info(
            f"User not found by customer ID {customer_id}, trying metadata userId {metadata_user_id}"
        )
        parsed = _parse_user_id(metadata_user_id)
        user = await user_ops.get_by_id(db, parsed) if parsed else None
        if user:
            backfilled = False
            if customer_id and user.stripe_customer_id != customer_id:
                await user_ops.set_stripe_customer_id(db, user, customer_id)
                backfilled = True
                logger.info(f"Backfilled Stripe customer {customer_id} for user {user.id}")
            return UserResolution(user=user, backfilled=backfilled)

    return UserResolution(
        user=None,
        warning=UserResolutionWarning(
            f"User not found for customer ID: {customer_id} or metadata userId: {metadata_user_id}"
        ),
    )
