"""Thin Postmark client for transactional email delivery.

Uses Postmark's REST API directly via httpx, no SDK needed.
Billing notifications are the only sender today.
"""

import logging

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

POSTMARK_API_URL = "https://api.postmarkapp.com/email"
POSTMARK_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}
POSTMARK_TIMEOUT_SECONDS = 10.0


class PostmarkService:
    """Send transactional emails via Postmark's REST API."""

    def __init__(
        self,
        api_key: str | None = None,
        from_email: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._api_key = api_key if api_key is not None else settings.postmark_api_key
        self._from_email = from_email or settings.postmark_from_email
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
        tag: str | None = None,
    ) -> bool:
        """
        Send a single transactional email.

        Returns True on success, False on failure (logs the error, never raises).
        """
        if not self.enabled:
            logger.warning("[postmark] Skipped (POSTMARK_API_KEY not configured)")
            return False

        payload = {
            "From": self._from_email,
            "To": to,
            "Subject": subject,
            "HtmlBody": html_body,
            "TextBody": text_body,
            "MessageStream": "outbound",
        }
        if tag:
            payload["Tag"] = tag

        headers = {
            **POSTMARK_HEADERS,
            "X-Postmark-Server-Token": self._api_key,
        }

        try:
            if self._client is not None:
                response = await self._client.post(POSTMARK_API_URL, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=POSTMARK_TIMEOUT_SECONDS) as client:
                    response = await client.post(POSTMARK_API_URL, json=payload, headers=headers)
            response.raise_for_status()
            logger.info(f"[postmark] Sent to {to}: {subject}")
            return True

        except httpx.HTTPStatusError as e:
            logger.error(
                f"[postmark] HTTP {e.response.status_code} sending to {to}: {e.response.text}"
            )
            return False
        except httpx.RequestError as e:
            logger.error(f"[postmark] Request failed sending to {to}: {e}")
            return False


postmark_service = PostmarkService()
