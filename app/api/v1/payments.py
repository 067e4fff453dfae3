"""Payment API endpoints: one-time payments and checkout, refunds, direct subscriptions."""

import logging
from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel, Field, field_validator

from app.api.deps import AdminUser, BillingGateway, CurrentUser, DbSession
from app.api.v1.subscriptions import (
    CheckoutResponse,
    SubscriptionActionResponse,
    SubscriptionDetails,
    ensure_customer,
    require_absolute_url,
    require_subscription_id,
    resolve_redirect_urls,
    to_subscription_details,
)
from app.core.exceptions import NotFoundError, ValidationError
from app.domain import order_ops, product_ops, subscription_ops
from app.models.billing import BillingEventType
from app.models.order import PaymentStatus
from app.models.product import BillingType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


# ─────────────────────────────────────────────────────────────────────────────
# Request/Response Schemas
# ─────────────────────────────────────────────────────────────────────────────


class PaymentIntentRequest(BaseModel):
    order_id: UUID


class PaymentIntentResponse(BaseModel):
    client_secret: str
    payment_intent_id: str


class RefundRequest(BaseModel):
    reason: str | None = None


class RefundResponse(BaseModel):
    order_id: UUID
    payment_status: str
    refund_id: str | None


class CheckoutItem(BaseModel):
    price_id: str
    quantity: int = Field(default=1, ge=1, le=100)


class PaymentCheckoutRequest(BaseModel):
    """Request to buy one-time products through hosted Checkout."""

    items: list[CheckoutItem] = Field(min_length=1)
    success_url: str | None = None
    cancel_url: str | None = None

    @field_validator("success_url", "cancel_url")
    @classmethod
    def validate_redirect(cls, value: str | None) -> str | None:
        return require_absolute_url(value)


class CreateSubscriptionRequest(BaseModel):
    price_id: str
    trial_days: int | None = Field(default=None, ge=1, le=730)


class CreateSubscriptionResponse(BaseModel):
    subscription: SubscriptionDetails
    client_secret: str | None


# ─────────────────────────────────────────────────────────────────────────────
# Endpoints
# ─────────────────────────────────────────────────────────────────────────────


@router.post("/payment-intent", response_model=PaymentIntentResponse)
async def create_payment_intent(
    data: PaymentIntentRequest,
    db: DbSession,
    current_user: CurrentUser,
    gateway: BillingGateway,
) -> PaymentIntentResponse:
    """
    Start paying for one of the current user's orders.

    The order ID rides along in the intent metadata; the payment webhook
    uses it to record the outcome on the order.
    """
    order = await order_ops.get_for_user(db, data.order_id, current_user.id)
    if not order:
        raise NotFoundError("Order")
    if order.payment_status in (PaymentStatus.PAID.value, PaymentStatus.REFUNDED.value):
        raise ValidationError(f"Order is already {order.payment_status}")
    if order.total_cents <= 0:
        raise ValidationError("Order total must be positive")

    intent = gateway.create_payment_intent(
        amount_cents=order.total_cents,
        currency=order.currency,
        customer_id=current_user.stripe_customer_id,
        metadata={
            "orderId": str(order.id),
            "orderNumber": order.order_number,
            "userId": str(current_user.id),
        },
    )
    await order_ops.set_payment_status(
        db,
        order,
        PaymentStatus.PENDING,
        stripe_payment_intent_id=intent.payment_intent_id,
    )
    return PaymentIntentResponse(
        client_secret=intent.client_secret,
        payment_intent_id=intent.payment_intent_id,
    )


@router.post("/orders/{order_id}/refund", response_model=RefundResponse)
async def refund_order(
    order_id: UUID,
    data: RefundRequest,
    db: DbSession,
    admin: AdminUser,
    gateway: BillingGateway,
) -> RefundResponse:
    """Fully refund a paid order (admin only)."""
    order = await order_ops.get(db, order_id)
    if not order:
        raise NotFoundError("Order")
    if order.payment_status != PaymentStatus.PAID.value:
        raise ValidationError("Only paid orders can be refunded")
    if not order.stripe_charge_id and not order.stripe_payment_intent_id:
        raise ValidationError("Order has no Stripe payment to refund")

    refund = gateway.create_refund(
        charge_id=order.stripe_charge_id,
        payment_intent_id=order.stripe_payment_intent_id,
        reason=data.reason,
    )
    order = await order_ops.mark_refunded(db, order, data.reason)

    await subscription_ops.log_event(
        db,
        event_type=BillingEventType.REFUND_ISSUED,
        user_id=order.user_id,
        new_value={
            "order_id": str(order.id),
            "refund_id": refund.get("id"),
            "amount_cents": refund.get("amount"),
        },
        description=f"Refund issued by admin {admin.id}",
    )
    logger.info(f"Admin {admin.id} refunded order {order.id}")

    return RefundResponse(
        order_id=order.id,
        payment_status=order.payment_status,
        refund_id=refund.get("id"),
    )


@router.post("/cancel-subscription", response_model=SubscriptionActionResponse)
async def cancel_subscription_now(
    current_user: CurrentUser,
    gateway: BillingGateway,
) -> SubscriptionActionResponse:
    """
    Cancel the current user's subscription immediately.

    The local record is cleared when Stripe sends customer.subscription.deleted.
    """
    subscription_id = require_subscription_id(current_user)
    snapshot = gateway.cancel_subscription_now(subscription_id)
    logger.info(f"User {current_user.id} cancelled subscription {subscription_id} immediately")
    return SubscriptionActionResponse(
        message="Subscription cancelled successfully",
        subscription=to_subscription_details(snapshot),
    )


@router.post("/checkout-session", response_model=CheckoutResponse)
async def create_payment_checkout(
    data: PaymentCheckoutRequest,
    db: DbSession,
    current_user: CurrentUser,
    gateway: BillingGateway,
) -> CheckoutResponse:
    """
    Create a Stripe Checkout session for one-time products.

    Every price must belong to an active one-time product in the catalog.
    """
    for item in data.items:
        product = await product_ops.get_by_price_id(db, item.price_id)
        if (
            product is None
            or not product.is_active
            or product.billing_type != BillingType.ONE_TIME.value
        ):
            raise ValidationError(f"Price {item.price_id} is not a one-time product")

    customer_id = await ensure_customer(db, gateway, current_user)
    success_url, cancel_url = resolve_redirect_urls(
        data.success_url,
        data.cancel_url,
        "/checkout/success?session_id={CHECKOUT_SESSION_ID}",
        "/checkout/cancel",
    )
    try:
        session = gateway.create_payment_checkout_session(
            customer_id=customer_id,
            line_items=[{"price": item.price_id, "quantity": item.quantity} for item in data.items],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={"userId": str(current_user.id)},
        )
    except ValueError as e:
        raise ValidationError(str(e)) from None
    return CheckoutResponse(session_id=session.session_id, redirect_url=session.redirect_url)


@router.post("/create-subscription", response_model=CreateSubscriptionResponse)
async def create_subscription(
    data: CreateSubscriptionRequest,
    db: DbSession,
    current_user: CurrentUser,
    gateway: BillingGateway,
) -> CreateSubscriptionResponse:
    """
    Start a subscription to be confirmed client-side with the returned secret.

    The subscription begins incomplete; the local record is written when the
    webhook reports it.
    """
    if subscription_ops.has_active_subscription(current_user):
        raise ValidationError("User already has an active subscription")

    customer_id = await ensure_customer(db, gateway, current_user)
    created = gateway.create_subscription(
        customer_id,
        data.price_id,
        trial_days=data.trial_days,
        metadata={"userId": str(current_user.id)},
    )
    logger.info(f"User {current_user.id} started subscription {created.subscription.get('id')}")
    return CreateSubscriptionResponse(
        subscription=to_subscription_details(created.subscription),
        client_secret=created.client_secret,
    )
