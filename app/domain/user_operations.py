import logging
import uuid as uuid_pkg

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.subscription import SubscriptionRecord
from app.models.user import User

logger = logging.getLogger(__name__)


class UserOperations:
    """Operations for User model, including the billing columns."""

    async def get_by_id(
        self,
        db: AsyncSession,
        user_id: uuid_pkg.UUID,
    ) -> User | None:
        """Get a user by ID."""
        statement = select(User).where(User.id == user_id)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_email(
        self,
        db: AsyncSession,
        email: str,
    ) -> User | None:
        """Get a user by email (case-insensitive)."""
        statement = select(User).where(User.email == email.strip().lower())
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_stripe_customer(
        self,
        db: AsyncSession,
        stripe_customer_id: str,
    ) -> User | None:
        """Get the user linked to a Stripe customer ID."""
        if not stripe_customer_id:
            return None
        statement = select(User).where(User.stripe_customer_id == stripe_customer_id)
        result = await db.execute(statement)
        return result.scalars().first()

    async def set_stripe_customer_id(
        self,
        db: AsyncSession,
        user: User,
        stripe_customer_id: str,
    ) -> User:
        """Link a user to their Stripe customer."""
        user.stripe_customer_id = stripe_customer_id
        db.add(user)
        await db.flush()
        await db.refresh(user)
        return user

    async def replace_subscription(
        self,
        db: AsyncSession,
        user: User,
        record: SubscriptionRecord,
    ) -> User:
        """Overwrite the subscription record with `record`.

        All four columns are written on every call, so replaying the same
        snapshot leaves the row unchanged.
        """
        user.subscription_id = record.id
        user.subscription_status = record.status
        user.subscription_current_period_end = record.current_period_end
        user.subscription_plan = record.plan
        db.add(user)
        await db.flush()
        await db.refresh(user)
        return user

    async def clear_subscription(
        self,
        db: AsyncSession,
        user: User,
    ) -> bool:
        """Remove the subscription record. Returns False if there was none."""
        had_subscription = user.subscription_id is not None
        user.subscription_id = None
        user.subscription_status = None
        user.subscription_current_period_end = None
        user.subscription_plan = None
        db.add(user)
        await db.flush()
        await db.refresh(user)
        return had_subscription


user_ops = UserOperations()
