"""
Stripe webhook endpoint.

Handles:
- Signature verification over the raw request body
- Dispatch of payment, refund, customer, payment method and payout events
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status, Request, Header
from fastapi.responses import JSONResponse

from bazaarmkt.api.deps import DB
from bazaarmkt.config import settings
from bazaarmkt.schemas.webhook import WebhookAck, WebhookError
from bazaarmkt.services.stripe_service import StripeService, WebhookVerificationError
from bazaarmkt.services.webhook_service import StripeWebhookService

logger = logging.getLogger(__name__)


router = APIRouter(tags=["Webhooks"])


@router.post(
    "/stripe",
    response_model=WebhookAck,
    responses={500: {"model": WebhookError}},
    summary="Stripe webhook handler",
    description="Handle events from Stripe. Called by Stripe servers only.",
    include_in_schema=False  # Hide from API docs
)
async def stripe_webhook(
    request: Request,
    db: DB,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
):
    """
    Handle Stripe webhook events.

    Security:
    - Rejects with 400 unless the Stripe-Signature header matches the raw body
    - Nothing is read or written before verification succeeds

    Responses:
    - 200 once the event is applied, or for event types we ignore
    - 500 when a recognized event fails, so Stripe retries it
    """
    # Raw bytes: the signature covers the exact wire payload
    body = await request.body()

    try:
        event = StripeService().verify_webhook_event(body, stripe_signature)
    except WebhookVerificationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message
        )

    event_type = event.get("type")
    logger.info(f"Received Stripe webhook {event.get('id')}: {event_type}")

    service = StripeWebhookService(db)
    try:
        outcome = await asyncio.wait_for(
            service.process(event),
            timeout=settings.WEBHOOK_PROCESSING_TIMEOUT,
        )
        await db.commit()
    except asyncio.TimeoutError:
        await db.rollback()
        logger.error(
            f"Webhook {event.get('id')} ({event_type}) timed out after "
            f"{settings.WEBHOOK_PROCESSING_TIMEOUT}s"
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": "Error processing webhook"},
        )
    except Exception:
        await db.rollback()
        logger.exception(f"Error processing webhook {event.get('id')} ({event_type})")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": "Error processing webhook"},
        )

    logger.info(f"Webhook {event.get('id')} ({event_type}) done: {outcome}")
    return WebhookAck(received=True, type=event_type)
