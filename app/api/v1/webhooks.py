"""Stripe webhook endpoint."""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from pydantic import BaseModel

from app.api.deps import DbSession, Processor
from app.core.exceptions import SignatureError
from app.core.rate_limit import limit_webhook_requests

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class WebhookResponse(BaseModel):
    received: bool
    event_id: str
    type: str
    handled: bool


@router.post(
    "/stripe",
    response_model=WebhookResponse,
    dependencies=[Depends(limit_webhook_requests)],
)
async def handle_stripe_webhook(
    request: Request,
    db: DbSession,
    processor: Processor,
    background_tasks: BackgroundTasks,
) -> WebhookResponse:
    """
    Handle Stripe webhook events.

    No authentication required (verified by Stripe signature). The raw body
    is passed through untouched because the signature covers its exact bytes.
    Any 2xx tells Stripe to stop retrying; a 5xx from a storage failure makes
    it redeliver.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    try:
        ack = await processor.process(db, payload, sig_header, schedule=background_tasks.add_task)
    except SignatureError as e:
        raise HTTPException(400, e.message) from None

    return WebhookResponse(
        received=ack.received,
        event_id=ack.event_id,
        type=ack.type,
        handled=ack.handled,
    )
