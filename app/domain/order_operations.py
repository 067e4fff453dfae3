"""Domain operations for Order model - payment status only."""

import uuid as uuid_pkg
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.order import Order, OrderStatus, PaymentStatus


class OrderOperations:
    """Payment-related operations on orders."""

    async def get(
        self,
        db: AsyncSession,
        id: uuid_pkg.UUID,
    ) -> Order | None:
        """Get an order by ID."""
        statement = select(Order).where(Order.id == id)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_for_user(
        self,
        db: AsyncSession,
        id: uuid_pkg.UUID,
        user_id: uuid_pkg.UUID,
    ) -> Order | None:
        """Get an order by ID, scoped to its owner."""
        statement = select(Order).where(Order.id == id, Order.user_id == user_id)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def set_payment_status(
        self,
        db: AsyncSession,
        order: Order,
        payment_status: PaymentStatus,
        stripe_payment_intent_id: str | None = None,
        stripe_charge_id: str | None = None,
    ) -> Order:
        """Record the outcome of a payment attempt. Other order fields are untouched."""
        order.payment_status = payment_status.value
        if stripe_payment_intent_id:
            order.stripe_payment_intent_id = stripe_payment_intent_id
        if stripe_charge_id:
            order.stripe_charge_id = stripe_charge_id
        db.add(order)
        await db.flush()
        await db.refresh(order)
        return order

    async def mark_refunded(
        self,
        db: AsyncSession,
        order: Order,
        reason: str | None = None,
    ) -> Order:
        """Mark an order refunded after Stripe accepted the refund."""
        order.payment_status = PaymentStatus.REFUNDED.value
        order.status = OrderStatus.REFUNDED.value
        order.refund_reason = reason
        order.refunded_at = datetime.now(UTC)
        db.add(order)
        await db.flush()
        await db.refresh(order)
        return order


order_ops = OrderOperations()
