"""Parsed Stripe webhook events and their classification.

Stripe sends dozens of event types; this service acts on a closed set of
kinds. Every other type classifies as IGNORED and is acknowledged without
touching state.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class WebhookEventKind(str, Enum):
    """Event kinds the webhook processor distinguishes."""

    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    SUBSCRIPTION_UPSERTED = "subscription_upserted"
    SUBSCRIPTION_DELETED = "subscription_deleted"
    INVOICE_PAID = "invoice_paid"
    IGNORED = "ignored"


# Stripe event type -> kind. Created and updated are handled identically.
EVENT_KINDS: dict[str, WebhookEventKind] = {
    "payment_intent.succeeded": WebhookEventKind.PAYMENT_SUCCEEDED,
    "payment_intent.payment_failed": WebhookEventKind.PAYMENT_FAILED,
    "customer.subscription.created": WebhookEventKind.SUBSCRIPTION_UPSERTED,
    "customer.subscription.updated": WebhookEventKind.SUBSCRIPTION_UPSERTED,
    "customer.subscription.deleted": WebhookEventKind.SUBSCRIPTION_DELETED,
    "invoice.payment_succeeded": WebhookEventKind.INVOICE_PAID,
    "invoice.paid": WebhookEventKind.INVOICE_PAID,
}


def classify_event_type(event_type: str) -> WebhookEventKind:
    """Map a Stripe event type string to a kind, defaulting to IGNORED."""
    return EVENT_KINDS.get(event_type, WebhookEventKind.IGNORED)


@dataclass(frozen=True)
class WebhookEvent:
    """A verified Stripe event, reduced to what the processor needs."""

    id: str
    type: str
    kind: WebhookEventKind
    data_object: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "WebhookEvent":
        """Build from a decoded Stripe event body."""
        event_type = str(payload.get("type", ""))
        data = payload.get("data")
        obj = data.get("object") if isinstance(data, dict) else None
        return cls(
            id=str(payload.get("id", "")),
            type=event_type,
            kind=classify_event_type(event_type),
            data_object=obj if isinstance(obj, dict) else {},
        )

    @property
    def metadata(self) -> dict[str, Any]:
        """The event object's metadata, or an empty dict."""
        metadata = self.data_object.get("metadata")
        return metadata if isinstance(metadata, dict) else {}


@dataclass(frozen=True)
class WebhookAck:
    """Acknowledgement returned to Stripe for every verified delivery."""

    received: bool
    event_id: str
    type: str
    kind: WebhookEventKind
    handled: bool
