"""Subscription API endpoints: checkout, plan changes, cancellation and card management.

None of these endpoints write the local subscription record. Stripe reports
every change back through the webhook, which is the only writer.
"""

import logging
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

from fastapi import APIRouter, Query
from pydantic import BaseModel, field_validator

from app.api.deps import BillingGateway, CurrentUser, DbSession
from app.config import settings
from app.core.exceptions import NotFoundError, ValidationError
from app.domain import product_ops, subscription_ops, user_ops
from app.models.billing import BillingEventRead, BillingEventType
from app.models.product import ProductRead
from app.models.subscription import SubscriptionRecordRead
from app.models.user import User
from app.services.reconciliation import extract_period_end_raw, extract_plan
from app.services.stripe_service import StripeService, object_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


# ─────────────────────────────────────────────────────────────────────────────
# Request/Response Schemas
# ─────────────────────────────────────────────────────────────────────────────


def require_absolute_url(value: str | None) -> str | None:
    if value is None:
        return value
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("must be an absolute http(s) URL")
    return value


def resolve_redirect_urls(
    success_url: str | None,
    cancel_url: str | None,
    success_path: str,
    cancel_path: str,
) -> tuple[str, str]:
    """Caller-supplied redirects, or defaults under the configured frontend URL."""
    base_url = settings.frontend_url.rstrip("/")
    urls = (success_url or f"{base_url}{success_path}", cancel_url or f"{base_url}{cancel_path}")
    try:
        for url in urls:
            require_absolute_url(url)
    except ValueError:
        logger.error(f"FRONTEND_URL {settings.frontend_url!r} is not an absolute URL")
        raise ValidationError("Redirect URLs must be absolute http(s) URLs") from None
    return urls


class CheckoutRequest(BaseModel):
    """Request to start a subscription checkout."""

    price_id: str
    success_url: str | None = None
    cancel_url: str | None = None

    @field_validator("success_url", "cancel_url")
    @classmethod
    def validate_redirect(cls, value: str | None) -> str | None:
        return require_absolute_url(value)


class CheckoutResponse(BaseModel):
    session_id: str
    redirect_url: str


class ChangePlanRequest(BaseModel):
    price_id: str


class SubscriptionDetails(BaseModel):
    """Live subscription state as reported by Stripe."""

    id: str
    status: str
    price_id: str
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    cancel_at: datetime | None = None
    product_name: str | None = None


class CurrentSubscriptionResponse(BaseModel):
    subscription: SubscriptionDetails | None
    current_product: ProductRead | None
    has_active_subscription: bool


class SubscriptionActionResponse(BaseModel):
    message: str
    subscription: SubscriptionDetails


class InvoiceSummary(BaseModel):
    id: str
    number: str | None = None
    status: str | None = None
    amount_due: int = 0
    amount_paid: int = 0
    currency: str = "usd"
    created: datetime | None = None
    hosted_invoice_url: str | None = None
    invoice_pdf: str | None = None


class PaymentMethodSummary(BaseModel):
    id: str
    brand: str | None = None
    last4: str | None = None
    exp_month: int | None = None
    exp_year: int | None = None


class PaymentMethodsResponse(BaseModel):
    payment_methods: list[PaymentMethodSummary]
    default_payment_method: str | None


class AttachPaymentMethodRequest(BaseModel):
    payment_method_id: str
    set_default: bool = False


class SetupIntentResponse(BaseModel):
    client_secret: str


class MessageResponse(BaseModel):
    message: str


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _from_epoch(value: Any) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return None
    return datetime.fromtimestamp(value, tz=UTC)


def to_subscription_details(snapshot: dict[str, Any]) -> SubscriptionDetails:
    """Summarize a Stripe subscription for API responses."""
    items = (snapshot.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    product = (first_item.get("price") or {}).get("product")
    period_start = snapshot.get("current_period_start") or first_item.get("current_period_start")
    return SubscriptionDetails(
        id=snapshot.get("id", ""),
        status=snapshot.get("status", ""),
        price_id=extract_plan(snapshot),
        current_period_start=_from_epoch(period_start),
        current_period_end=_from_epoch(extract_period_end_raw(snapshot)),
        cancel_at_period_end=bool(snapshot.get("cancel_at_period_end")),
        cancel_at=_from_epoch(snapshot.get("cancel_at")),
        product_name=product.get("name") if isinstance(product, dict) else None,
    )


def require_subscription_id(user: User) -> str:
    if not user.subscription_id:
        raise NotFoundError("Subscription")
    return user.subscription_id


def _require_customer(user: User) -> str:
    if not user.stripe_customer_id:
        raise ValidationError("No Stripe customer found")
    return user.stripe_customer_id


async def ensure_customer(db: DbSession, gateway: StripeService, user: User) -> str:
    """Return the user's Stripe customer, creating and linking one on first use."""
    if user.stripe_customer_id:
        return user.stripe_customer_id

    customer_id = gateway.create_customer(
        email=user.email,
        name=user.display_name,
        metadata={"userId": str(user.id)},
    )
    await user_ops.set_stripe_customer_id(db, user, customer_id)
    await subscription_ops.log_event(
        db,
        event_type=BillingEventType.CUSTOMER_LINKED,
        user_id=user.id,
        new_value={"stripe_customer_id": customer_id},
        description="Stripe customer created at checkout",
    )
    # Keep the link even if the following Stripe call fails
    await db.commit()
    return customer_id


def _require_own_payment_method(gateway: StripeService, user: User, payment_method_id: str) -> str:
    customer_id = _require_customer(user)
    method = gateway.retrieve_payment_method(payment_method_id)
    if object_id(method.get("customer")) != customer_id:
        raise NotFoundError("Payment method")
    return customer_id


# ─────────────────────────────────────────────────────────────────────────────
# Read Endpoints
# ─────────────────────────────────────────────────────────────────────────────


@router.get("/current", response_model=CurrentSubscriptionResponse)
async def get_current_subscription(
    db: DbSession,
    current_user: CurrentUser,
    gateway: BillingGateway,
) -> CurrentSubscriptionResponse:
    """
    Live subscription details from Stripe, with the matching local product.

    Users without a paid subscription get the free product instead.
    """
    details = None
    if current_user.subscription_id:
        snapshot = gateway.retrieve_subscription(current_user.subscription_id, expand_product=True)
        details = to_subscription_details(snapshot)
        product = await product_ops.get_by_price_id(db, details.price_id)
    else:
        product = await product_ops.get_free_product(db)

    return CurrentSubscriptionResponse(
        subscription=details,
        current_product=ProductRead.model_validate(product) if product else None,
        has_active_subscription=subscription_ops.has_active_subscription(current_user),
    )


@router.get("/status", response_model=SubscriptionRecordRead)
async def get_subscription_status(current_user: CurrentUser) -> SubscriptionRecordRead:
    """Cached subscription state. Never calls Stripe."""
    return subscription_ops.get_cached_status(current_user)


@router.get("/events", response_model=list[BillingEventRead])
async def list_billing_events(
    db: DbSession,
    current_user: CurrentUser,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
) -> list[BillingEventRead]:
    """Billing history for the current user, newest first."""
    events = await subscription_ops.get_events(db, current_user.id, skip=skip, limit=limit)
    return [BillingEventRead.model_validate(event) for event in events]


@router.get("/invoices", response_model=list[InvoiceSummary])
async def list_invoices(
    current_user: CurrentUser,
    gateway: BillingGateway,
    limit: int = Query(10, ge=1, le=100),
) -> list[InvoiceSummary]:
    customer_id = _require_customer(current_user)
    invoices = gateway.list_invoices(customer_id, limit=limit)
    return [
        InvoiceSummary(
            id=invoice["id"],
            number=invoice.get("number"),
            status=invoice.get("status"),
            amount_due=invoice.get("amount_due") or 0,
            amount_paid=invoice.get("amount_paid") or 0,
            currency=invoice.get("currency") or "usd",
            created=_from_epoch(invoice.get("created")),
            hosted_invoice_url=invoice.get("hosted_invoice_url"),
            invoice_pdf=invoice.get("invoice_pdf"),
        )
        for invoice in invoices
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Subscription Changes
# ─────────────────────────────────────────────────────────────────────────────


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    data: CheckoutRequest,
    db: DbSession,
    current_user: CurrentUser,
    gateway: BillingGateway,
) -> CheckoutResponse:
    """
    Create a Stripe Checkout session for a subscription.

    The user ID travels in the subscription metadata so the webhook can find
    the user even if the customer link was never saved.
    """
    customer_id = await ensure_customer(db, gateway, current_user)

    success_url, cancel_url = resolve_redirect_urls(
        data.success_url,
        data.cancel_url,
        "/billing?success=true&session_id={CHECKOUT_SESSION_ID}",
        "/billing?canceled=true",
    )

    session = gateway.create_checkout_session(
        customer_id=customer_id,
        price_id=data.price_id,
        success_url=success_url,
        cancel_url=cancel_url,
        metadata={"userId": str(current_user.id)},
    )
    return CheckoutResponse(session_id=session.session_id, redirect_url=session.redirect_url)


@router.put("/change-plan", response_model=SubscriptionActionResponse)
async def change_plan(
    data: ChangePlanRequest,
    current_user: CurrentUser,
    gateway: BillingGateway,
) -> SubscriptionActionResponse:
    """Switch the subscription to another price, prorated."""
    subscription_id = require_subscription_id(current_user)
    try:
        snapshot = gateway.change_subscription_price(subscription_id, data.price_id)
    except ValueError as e:
        raise ValidationError(str(e)) from None

    logger.info(f"User {current_user.id} changed plan to {data.price_id}")
    return SubscriptionActionResponse(
        message="Subscription plan changed successfully",
        subscription=to_subscription_details(snapshot),
    )


@router.post("/cancel", response_model=SubscriptionActionResponse)
async def cancel_subscription(
    current_user: CurrentUser,
    gateway: BillingGateway,
) -> SubscriptionActionResponse:
    """Cancel at the end of the current period. Access continues until then."""
    subscription_id = require_subscription_id(current_user)
    snapshot = gateway.set_cancel_at_period_end(subscription_id, True)
    return SubscriptionActionResponse(
        message="Subscription will be cancelled at the end of the current period",
        subscription=to_subscription_details(snapshot),
    )


@router.post("/resume", response_model=SubscriptionActionResponse)
async def resume_subscription(
    current_user: CurrentUser,
    gateway: BillingGateway,
) -> SubscriptionActionResponse:
    """Undo a scheduled cancellation."""
    subscription_id = require_subscription_id(current_user)
    snapshot = gateway.set_cancel_at_period_end(subscription_id, False)
    return SubscriptionActionResponse(
        message="Subscription resumed successfully",
        subscription=to_subscription_details(snapshot),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Payment Methods
# ─────────────────────────────────────────────────────────────────────────────


@router.get("/payment-methods", response_model=PaymentMethodsResponse)
async def list_payment_methods(
    current_user: CurrentUser,
    gateway: BillingGateway,
) -> PaymentMethodsResponse:
    customer_id = _require_customer(current_user)
    result = gateway.list_payment_methods(customer_id)
    methods = []
    for method in result.payment_methods:
        card = method.get("card") or {}
        methods.append(
            PaymentMethodSummary(
                id=method["id"],
                brand=card.get("brand"),
                last4=card.get("last4"),
                exp_month=card.get("exp_month"),
                exp_year=card.get("exp_year"),
            )
        )
    return PaymentMethodsResponse(
        payment_methods=methods,
        default_payment_method=result.default_payment_method,
    )


@router.post("/payment-methods/setup-intent", response_model=SetupIntentResponse)
async def create_setup_intent(
    db: DbSession,
    current_user: CurrentUser,
    gateway: BillingGateway,
) -> SetupIntentResponse:
    """Client secret for collecting a new card with Stripe Elements."""
    customer_id = await ensure_customer(db, gateway, current_user)
    return SetupIntentResponse(client_secret=gateway.create_setup_intent(customer_id))


@router.post("/payment-methods", response_model=PaymentMethodSummary)
async def add_payment_method(
    data: AttachPaymentMethodRequest,
    current_user: CurrentUser,
    gateway: BillingGateway,
) -> PaymentMethodSummary:
    customer_id = _require_customer(current_user)
    method = gateway.attach_payment_method(data.payment_method_id, customer_id)
    if data.set_default:
        gateway.set_default_payment_method(customer_id, data.payment_method_id)

    card = method.get("card") or {}
    return PaymentMethodSummary(
        id=method.get("id") or data.payment_method_id,
        brand=card.get("brand"),
        last4=card.get("last4"),
        exp_month=card.get("exp_month"),
        exp_year=card.get("exp_year"),
    )


@router.delete("/payment-methods/{payment_method_id}", response_model=MessageResponse)
async def remove_payment_method(
    payment_method_id: str,
    current_user: CurrentUser,
    gateway: BillingGateway,
) -> MessageResponse:
    _require_own_payment_method(gateway, current_user, payment_method_id)
    gateway.detach_payment_method(payment_method_id)
    return MessageResponse(message="Payment method removed successfully")


@router.put("/payment-methods/{payment_method_id}/default", response_model=MessageResponse)
async def set_default_payment_method(
    payment_method_id: str,
    current_user: CurrentUser,
    gateway: BillingGateway,
) -> MessageResponse:
    customer_id = _require_own_payment_method(gateway, current_user, payment_method_id)
    gateway.set_default_payment_method(customer_id, payment_method_id)
    return MessageResponse(message="Default payment method updated successfully")
