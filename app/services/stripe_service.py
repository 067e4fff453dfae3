"""Stripe billing gateway: the only place that talks to the Stripe API."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import stripe
from stripe import StripeError

from app.config import Settings
from app.core.exceptions import GatewayError, SignatureError
from app.services.webhook_events import WebhookEvent

logger = logging.getLogger(__name__)

# Seconds a signed webhook timestamp may lag behind our clock
WEBHOOK_TOLERANCE_SECONDS = 300

# Refund reasons Stripe accepts; anything else is kept locally only
REFUND_REASONS = frozenset({"duplicate", "fraudulent", "requested_by_customer"})


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    redirect_url: str


@dataclass(frozen=True)
class PaymentIntentInfo:
    payment_intent_id: str
    client_secret: str


@dataclass(frozen=True)
class SubscriptionCreated:
    subscription: dict[str, Any]
    client_secret: str | None = None


@dataclass(frozen=True)
class PaymentMethods:
    payment_methods: list[dict[str, Any]] = field(default_factory=list)
    default_payment_method: str | None = None


def to_plain(value: Any) -> Any:
    """Convert Stripe objects (and nested lists of them) into plain dicts."""
    if hasattr(value, "to_dict") and not isinstance(value, dict):
        value = value.to_dict()
    if isinstance(value, dict):
        return {key: to_plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [to_plain(item) for item in value]
    return value


def object_id(value: Any) -> str | None:
    """ID of a Stripe reference that may be a bare ID or an expanded object."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        ref = value.get("id")
        return ref if isinstance(ref, str) and ref else None
    return None


class StripeService:
    """
    Handles all Stripe API interactions.

    Every outbound call goes through one StripeClient with a bounded request
    timeout and no automatic retries. Provider failures surface as
    GatewayError; webhook verification failures as SignatureError. Nothing
    here touches the database.
    """

    def __init__(
        self,
        api_key: str = "",
        webhook_secret: str = "",
        timeout_seconds: float = 20.0,
        client: Any = None,
    ):
        self._webhook_secret = webhook_secret
        if client is None:
            client = stripe.StripeClient(
                api_key,
                http_client=stripe.RequestsClient(timeout=timeout_seconds),
                max_network_retries=0,
            )
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeService":
        return cls(
            api_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            timeout_seconds=settings.stripe_timeout_seconds,
        )

    @staticmethod
    def _gateway_error(action: str, e: StripeError) -> GatewayError:
        logger.error(f"Failed to {action}: {e}")
        return GatewayError(
            f"Failed to {action}",
            user_message=getattr(e, "user_message", None),
            code=getattr(e, "code", None),
            http_status=getattr(e, "http_status", None),
        )

    # ─────────────────────────────────────────────────────────────────────────────
    # Customers and checkout
    # ─────────────────────────────────────────────────────────────────────────────

    def create_customer(
        self,
        email: str,
        name: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> str:
        """
        Create a Stripe customer.

        Returns the Stripe customer ID (cus_...).
        """
        params: dict[str, Any] = {"email": email, "metadata": metadata or {}}
        if name:
            params["name"] = name
        try:
            customer = to_plain(self._client.customers.create(params=params))
        except StripeError as e:
            raise self._gateway_error("create Stripe customer", e) from e
        logger.info(f"Created Stripe customer {customer['id']}")
        return customer["id"]

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str] | None = None,
    ) -> CheckoutSession:
        """
        Create a hosted Checkout session for a subscription to one price.

        The metadata is attached to both the session and the subscription it
        creates, so later subscription events carry it too.
        """
        metadata = metadata or {}
        try:
            session = to_plain(
                self._client.checkout.sessions.create(
                    params={
                        "customer": customer_id,
                        "mode": "subscription",
                        "payment_method_types": ["card"],
                        "line_items": [{"price": price_id, "quantity": 1}],
                        "success_url": success_url,
                        "cancel_url": cancel_url,
                        "metadata": metadata,
                        "subscription_data": {"metadata": metadata},
                    }
                )
            )
        except StripeError as e:
            raise self._gateway_error("create checkout session", e) from e
        logger.info(f"Created checkout session for customer {customer_id}, price {price_id}")
        return CheckoutSession(session_id=session["id"], redirect_url=session.get("url") or "")

    def create_payment_checkout_session(
        self,
        customer_id: str,
        line_items: list[dict[str, Any]],
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str] | None = None,
    ) -> CheckoutSession:
        """Create a hosted Checkout session for a one-time purchase of one or more prices."""
        if not line_items:
            raise ValueError("At least one line item is required")
        try:
            session = to_plain(
                self._client.checkout.sessions.create(
                    params={
                        "customer": customer_id,
                        "mode": "payment",
                        "payment_method_types": ["card"],
                        "line_items": line_items,
                        "success_url": success_url,
                        "cancel_url": cancel_url,
                        "metadata": metadata or {},
                    }
                )
            )
        except StripeError as e:
            raise self._gateway_error("create checkout session", e) from e
        logger.info(
            f"Created payment checkout session for customer {customer_id}, "
            f"{len(line_items)} line item(s)"
        )
        return CheckoutSession(session_id=session["id"], redirect_url=session.get("url") or "")

    # ─────────────────────────────────────────────────────────────────────────────
    # Subscriptions
    # ─────────────────────────────────────────────────────────────────────────────

    def retrieve_subscription(
        self,
        subscription_id: str,
        expand_product: bool = False,
    ) -> dict[str, Any]:
        """Live subscription snapshot, optionally with item products expanded."""
        params: dict[str, Any] = {}
        if expand_product:
            params["expand"] = ["items.data.price.product"]
        try:
            sub = self._client.subscriptions.retrieve(subscription_id, params=params)
        except StripeError as e:
            raise self._gateway_error("retrieve subscription", e) from e
        return to_plain(sub)

    def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        trial_days: int | None = None,
        metadata: dict[str, str] | None = None,
    ) -> SubscriptionCreated:
        """
        Create an incomplete subscription to be confirmed client-side.

        The first invoice's confirmation secret is returned alongside the
        snapshot; it is None for trials, which need no payment up front.
        """
        params: dict[str, Any] = {
            "customer": customer_id,
            "items": [{"price": price_id}],
            "payment_behavior": "default_incomplete",
            "metadata": metadata or {},
            "expand": ["latest_invoice.confirmation_secret"],
        }
        if trial_days:
            params["trial_period_days"] = trial_days
        try:
            sub = to_plain(self._client.subscriptions.create(params=params))
        except StripeError as e:
            raise self._gateway_error("create subscription", e) from e
        logger.info(f"Created subscription {sub['id']} for customer {customer_id}, price {price_id}")

        invoice = sub.get("latest_invoice")
        secret = invoice.get("confirmation_secret") if isinstance(invoice, dict) else None
        return SubscriptionCreated(
            subscription=sub,
            client_secret=secret.get("client_secret") if isinstance(secret, dict) else None,
        )

    def change_subscription_price(self, subscription_id: str, new_price_id: str) -> dict[str, Any]:
        """
        Move a subscription's first item to a new price.

        Prorates the change based on remaining time in current period.
        """
        sub = self.retrieve_subscription(subscription_id)
        items = (sub.get("items") or {}).get("data") or []
        if not items:
            raise ValueError(f"Subscription {subscription_id} has no items")
        try:
            updated = self._client.subscriptions.update(
                subscription_id,
                params={
                    "items": [{"id": items[0]["id"], "price": new_price_id}],
                    "proration_behavior": "create_prorations",
                },
            )
        except StripeError as e:
            raise self._gateway_error("change subscription plan", e) from e
        logger.info(f"Changed subscription {subscription_id} to price {new_price_id}")
        return to_plain(updated)

    def set_cancel_at_period_end(self, subscription_id: str, cancel: bool) -> dict[str, Any]:
        """Schedule (True) or undo (False) cancellation at period end."""
        try:
            updated = self._client.subscriptions.update(
                subscription_id,
                params={"cancel_at_period_end": cancel},
            )
        except StripeError as e:
            raise self._gateway_error("update subscription cancellation", e) from e
        if cancel:
            logger.info(f"Marked subscription {subscription_id} for cancellation")
        else:
            logger.info(f"Reactivated subscription {subscription_id}")
        return to_plain(updated)

    def cancel_subscription_now(self, subscription_id: str) -> dict[str, Any]:
        """Cancel a subscription immediately."""
        try:
            canceled = self._client.subscriptions.cancel(subscription_id)
        except StripeError as e:
            raise self._gateway_error("cancel subscription", e) from e
        logger.info(f"Canceled subscription {subscription_id}")
        return to_plain(canceled)

    # ─────────────────────────────────────────────────────────────────────────────
    # Payments and refunds
    # ─────────────────────────────────────────────────────────────────────────────

    def create_payment_intent(
        self,
        amount_cents: int,
        currency: str = "usd",
        customer_id: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> PaymentIntentInfo:
        """Create a PaymentIntent for a one-off charge in minor units."""
        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency.lower(),
            "metadata": metadata or {},
            "automatic_payment_methods": {"enabled": True},
        }
        if customer_id:
            params["customer"] = customer_id
        try:
            intent = to_plain(self._client.payment_intents.create(params=params))
        except StripeError as e:
            raise self._gateway_error("create payment intent", e) from e
        logger.info(f"Created payment intent {intent['id']} for {amount_cents} {currency}")
        return PaymentIntentInfo(
            payment_intent_id=intent["id"],
            client_secret=intent.get("client_secret") or "",
        )

    def create_refund(
        self,
        charge_id: str | None = None,
        payment_intent_id: str | None = None,
        amount_cents: int | None = None,
        reason: str | None = None,
    ) -> dict[str, Any]:
        """Refund a charge (or a payment intent's charge), fully unless an amount is given."""
        if not charge_id and not payment_intent_id:
            raise ValueError("A charge or payment intent is required to refund")
        params: dict[str, Any] = {}
        if charge_id:
            params["charge"] = charge_id
        else:
            params["payment_intent"] = payment_intent_id
        if amount_cents is not None:
            params["amount"] = amount_cents
        if reason in REFUND_REASONS:
            params["reason"] = reason
        try:
            refund = to_plain(self._client.refunds.create(params=params))
        except StripeError as e:
            raise self._gateway_error("create refund", e) from e
        logger.info(f"Created refund {refund.get('id')} for {charge_id or payment_intent_id}")
        return refund

    def list_invoices(self, customer_id: str, limit: int = 10) -> list[dict[str, Any]]:
        """Most recent invoices for a customer."""
        try:
            invoices = self._client.invoices.list(params={"customer": customer_id, "limit": limit})
        except StripeError as e:
            raise self._gateway_error("list invoices", e) from e
        return to_plain(invoices).get("data") or []

    # ─────────────────────────────────────────────────────────────────────────────
    # Payment methods
    # ─────────────────────────────────────────────────────────────────────────────

    def list_payment_methods(self, customer_id: str) -> PaymentMethods:
        """Saved cards for a customer and which one is the invoice default."""
        try:
            methods = self._client.payment_methods.list(
                params={"customer": customer_id, "type": "card"}
            )
            customer = to_plain(self._client.customers.retrieve(customer_id))
        except StripeError as e:
            raise self._gateway_error("list payment methods", e) from e
        invoice_settings = customer.get("invoice_settings") or {}
        return PaymentMethods(
            payment_methods=to_plain(methods).get("data") or [],
            default_payment_method=object_id(invoice_settings.get("default_payment_method")),
        )

    def retrieve_payment_method(self, payment_method_id: str) -> dict[str, Any]:
        try:
            method = self._client.payment_methods.retrieve(payment_method_id)
        except StripeError as e:
            raise self._gateway_error("retrieve payment method", e) from e
        return to_plain(method)

    def create_setup_intent(self, customer_id: str) -> str:
        """Create a SetupIntent for saving a card. Returns its client secret."""
        try:
            intent = to_plain(
                self._client.setup_intents.create(
                    params={"customer": customer_id, "payment_method_types": ["card"]}
                )
            )
        except StripeError as e:
            raise self._gateway_error("create setup intent", e) from e
        return intent.get("client_secret") or ""

    def attach_payment_method(self, payment_method_id: str, customer_id: str) -> dict[str, Any]:
        try:
            method = self._client.payment_methods.attach(
                payment_method_id, params={"customer": customer_id}
            )
        except StripeError as e:
            raise self._gateway_error("attach payment method", e) from e
        logger.info(f"Attached payment method {payment_method_id} to {customer_id}")
        return to_plain(method)

    def detach_payment_method(self, payment_method_id: str) -> None:
        try:
            self._client.payment_methods.detach(payment_method_id)
        except StripeError as e:
            raise self._gateway_error("detach payment method", e) from e
        logger.info(f"Detached payment method {payment_method_id}")

    def set_default_payment_method(self, customer_id: str, payment_method_id: str) -> None:
        try:
            self._client.customers.update(
                customer_id,
                params={"invoice_settings": {"default_payment_method": payment_method_id}},
            )
        except StripeError as e:
            raise self._gateway_error("set default payment method", e) from e
        logger.info(f"Set default payment method {payment_method_id} for {customer_id}")

    # ─────────────────────────────────────────────────────────────────────────────
    # Catalogue
    # ─────────────────────────────────────────────────────────────────────────────

    def create_product(
        self,
        name: str,
        description: str = "",
        metadata: dict[str, str] | None = None,
    ) -> str:
        """Create a Stripe product. Returns its ID (prod_...)."""
        params: dict[str, Any] = {"name": name, "metadata": metadata or {}}
        if description:
            params["description"] = description
        try:
            product = to_plain(self._client.products.create(params=params))
        except StripeError as e:
            raise self._gateway_error("create Stripe product", e) from e
        logger.info(f"Created Stripe product {product['id']}")
        return product["id"]

    def create_price(
        self,
        product_id: str,
        unit_amount_cents: int,
        currency: str = "usd",
        interval: str | None = None,
        interval_count: int = 1,
    ) -> str:
        """
        Create a price for a Stripe product. Returns its ID (price_...).

        Recurring when `interval` is given, one-time otherwise.
        """
        params: dict[str, Any] = {
            "product": product_id,
            "unit_amount": unit_amount_cents,
            "currency": currency.lower(),
        }
        if interval:
            params["recurring"] = {"interval": interval, "interval_count": interval_count}
        try:
            price = to_plain(self._client.prices.create(params=params))
        except StripeError as e:
            raise self._gateway_error("create Stripe price", e) from e
        logger.info(f"Created Stripe price {price['id']} for product {product_id}")
        return price["id"]

    # ─────────────────────────────────────────────────────────────────────────────
    # Webhooks
    # ─────────────────────────────────────────────────────────────────────────────

    def verify_and_parse_webhook(
        self,
        raw_body: bytes,
        signature_header: str | None,
        shared_secret: str | None = None,
    ) -> WebhookEvent:
        """
        Verify a webhook delivery against the endpoint secret and decode it.

        The signature covers the exact bytes received, so the body must not be
        re-serialized before this call. Raises SignatureError on a missing or
        bad signature, an expired timestamp, or an undecodable body.
        """
        secret = shared_secret or self._webhook_secret
        if not secret:
            logger.error("Stripe webhook secret not configured")
            raise SignatureError("Webhook secret not configured")
        if not signature_header:
            raise SignatureError("Missing Stripe-Signature header")

        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError:
            raise SignatureError("Invalid webhook payload") from None

        try:
            stripe.WebhookSignature.verify_header(
                payload, signature_header, secret, WEBHOOK_TOLERANCE_SECONDS
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise SignatureError() from None

        try:
            data = json.loads(payload)
        except ValueError as e:
            logger.warning(f"Invalid webhook payload: {e}")
            raise SignatureError("Invalid webhook payload") from None
        if not isinstance(data, dict):
            raise SignatureError("Invalid webhook payload")

        return WebhookEvent.from_payload(data)
