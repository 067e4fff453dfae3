"""Billing notification emails.

Sent after the webhook processor has applied a state change. Delivery is
best-effort: a failed send is logged and never affects the webhook response.
"""

import logging
from html import escape as html_escape

from app.config import settings
from app.models.order import Order
from app.models.user import User
from app.services.email.postmark import PostmarkService, postmark_service

logger = logging.getLogger(__name__)


def _format_amount(cents: int, currency: str) -> str:
    return f"{cents / 100:.2f} {currency.upper()}"


def _build_html(greeting: str, paragraphs: list[str], cta_label: str, cta_url: str) -> str:
    body = "\n".join(
        f'<p style="margin: 0 0 16px; font-size: 15px; line-height: 1.6;">{html_escape(p)}</p>'
        for p in paragraphs
    )
    return f"""\
<!DOCTYPE html>
<html>
<body style="margin: 0; padding: 32px 16px; background-color: #f4f4f5;
             font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;">
  <div style="max-width: 520px; margin: 0 auto; background-color: #ffffff;
              border-radius: 8px; padding: 32px; color: #18181b;">
    <p style="margin: 0 0 16px; font-size: 15px;">{html_escape(greeting)}</p>
{body}
    <a href="{html_escape(cta_url)}"
       style="display: inline-block; padding: 10px 20px; background-color: #18181b;
              color: #fafafa; text-decoration: none; border-radius: 6px; font-size: 14px;">
      {html_escape(cta_label)}
    </a>
  </div>
</body>
</html>"""


def _build_text(greeting: str, paragraphs: list[str], cta_label: str, cta_url: str) -> str:
    return "\n\n".join([greeting, *paragraphs, f"{cta_label}: {cta_url}"])


class BillingNotifier:
    """Composes billing emails and hands them to Postmark."""

    def __init__(self, sender: PostmarkService | None = None, frontend_url: str | None = None):
        self._sender = sender or postmark_service
        self._frontend_url = (frontend_url or settings.frontend_url).rstrip("/")

    async def _send(
        self,
        user: User,
        subject: str,
        paragraphs: list[str],
        cta_label: str,
        cta_path: str,
        tag: str,
    ) -> bool:
        greeting = f"Hi {user.first_name or user.display_name},"
        cta_url = f"{self._frontend_url}{cta_path}"
        try:
            return await self._sender.send(
                to=user.email,
                subject=subject,
                html_body=_build_html(greeting, paragraphs, cta_label, cta_url),
                text_body=_build_text(greeting, paragraphs, cta_label, cta_url),
                tag=tag,
            )
        except Exception as e:
            logger.error(f"[billing-email] {tag} to {user.email} failed: {e}")
            return False

    async def order_paid(self, user: User, order: Order) -> bool:
        return await self._send(
            user,
            subject=f"Receipt for order {order.order_number}",
            paragraphs=[
                f"We received your payment of {_format_amount(order.total_cents, order.currency)} "
                f"for order {order.order_number}.",
                "Thanks for your purchase.",
            ],
            cta_label="View order",
            cta_path=f"/orders/{order.id}",
            tag="order-paid",
        )

    async def order_payment_failed(self, user: User, order: Order) -> bool:
        return await self._send(
            user,
            subject=f"Payment failed for order {order.order_number}",
            paragraphs=[
                f"Your payment for order {order.order_number} did not go through.",
                "Please check your card details and try again.",
            ],
            cta_label="Retry payment",
            cta_path=f"/orders/{order.id}",
            tag="order-payment-failed",
        )

    async def subscription_past_due(self, user: User) -> bool:
        return await self._send(
            user,
            subject="Action needed: your subscription payment failed",
            paragraphs=[
                "We could not collect the latest payment for your subscription.",
                "Update your payment method to keep access to paid features.",
            ],
            cta_label="Update payment method",
            cta_path="/billing",
            tag="subscription-past-due",
        )

    async def subscription_ended(self, user: User) -> bool:
        return await self._send(
            user,
            subject="Your subscription has ended",
            paragraphs=[
                "Your subscription has been cancelled and paid features are no longer active.",
                "You can subscribe again at any time.",
            ],
            cta_label="View plans",
            cta_path="/billing",
            tag="subscription-ended",
        )
