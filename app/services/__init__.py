# Services package

from app.services.stripe_service import (
    CheckoutSession,
    PaymentIntentInfo,
    PaymentMethods,
    StripeService,
)
from app.services.webhook_events import WebhookAck, WebhookEvent, WebhookEventKind
from app.services.webhook_processor import WebhookProcessor

__all__ = [
    # Billing gateway
    "StripeService",
    "CheckoutSession",
    "PaymentIntentInfo",
    "PaymentMethods",
    # Webhooks
    "WebhookProcessor",
    "WebhookEvent",
    "WebhookEventKind",
    "WebhookAck",
]
