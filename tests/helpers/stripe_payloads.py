"""Builders for Stripe-shaped payloads and signed webhook deliveries."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

WEBHOOK_SECRET = "whsec_test_secret"


def epoch(moment: datetime) -> int:
    return int(moment.timestamp())


def days_from_now(days: int) -> int:
    return epoch(datetime.now(UTC) + timedelta(days=days))


def make_subscription(
    id: str = "sub_1",
    customer: Any = "cus_1",
    status: str = "active",
    price_id: str | None = "price_basic",
    current_period_end: Any = None,
    metadata: dict[str, str] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """A subscription object as Stripe sends it (top-level current_period_end)."""
    items = []
    if price_id is not None:
        items.append({"id": f"si_{id}", "price": {"id": price_id, "product": "prod_1"}})
    snapshot = {
        "id": id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "current_period_end": (
            days_from_now(30) if current_period_end is None else current_period_end
        ),
        "cancel_at_period_end": False,
        "items": {"object": "list", "data": items},
        "metadata": metadata or {},
    }
    snapshot.update(extra)
    return snapshot


def make_payment_intent(
    id: str = "pi_1",
    order_id: str | None = None,
    latest_charge: str | None = "ch_1",
    amount: int = 2500,
) -> dict[str, Any]:
    return {
        "id": id,
        "object": "payment_intent",
        "amount": amount,
        "currency": "usd",
        "latest_charge": latest_charge,
        "metadata": {"orderId": order_id} if order_id else {},
    }


def make_event(event_type: str, obj: dict[str, Any], event_id: str | None = None) -> dict[str, Any]:
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {"object": obj},
    }


def encode(event: dict[str, Any]) -> bytes:
    return json.dumps(event).encode("utf-8")


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header (t=...,v1=...) for `payload`."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def signed_event(
    event_type: str,
    obj: dict[str, Any],
    event_id: str | None = None,
) -> tuple[bytes, str]:
    """Encoded event body and its valid signature header."""
    payload = encode(make_event(event_type, obj, event_id))
    return payload, sign(payload)
