"""Billing gateway and webhook processor dependencies."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException

from app.config import settings
from app.services.email.billing_notifications import BillingNotifier
from app.services.stripe_service import StripeService
from app.services.webhook_processor import WebhookProcessor


@lru_cache
def _stripe_service() -> StripeService:
    return StripeService.from_settings(settings)


def get_billing_gateway() -> StripeService:
    """The process-wide Stripe gateway. 400 when Stripe is not configured."""
    if not settings.stripe_enabled:
        raise HTTPException(400, "Payments not configured")
    return _stripe_service()


BillingGateway = Annotated[StripeService, Depends(get_billing_gateway)]


def get_webhook_processor(gateway: BillingGateway) -> WebhookProcessor:
    return WebhookProcessor(gateway, BillingNotifier())


Processor = Annotated[WebhookProcessor, Depends(get_webhook_processor)]
