"""Payment gateway webhook endpoint.

Implements:
- POST /webhooks/stripe
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from office_lifecycle.api.deps import error_detail, payment_event_processor
from office_lifecycle.errors import AuthenticationError, ConcurrencyConflict, PersistenceError
from office_lifecycle.logging_config import get_logger
from office_lifecycle.models.api_request import WebhookResponse
from office_lifecycle.services.payment_events import PaymentEventProcessor

logger = get_logger(__name__)
router = APIRouter(tags=["Webhooks"], prefix="/webhooks")


@router.post("/stripe", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    processor: PaymentEventProcessor = Depends(payment_event_processor),
) -> WebhookResponse:
    """Receive a payment gateway event.

    The raw body is verified before parsing. Every handled outcome
    (processed, duplicate, ignored, rejected) answers 200 so the gateway
    stops redelivering; retryable failures answer 500.

    Raises:
        400: Signature missing or invalid
        500: Ledger contention or outage, the gateway will redeliver
    """
    payload = await request.body()

    try:
        outcome = await run_in_threadpool(processor.handle, payload, stripe_signature)
    except AuthenticationError as e:
        logger.warning("webhook_rejected_unauthenticated", error=str(e))
        raise HTTPException(status_code=400, detail=error_detail("invalid_signature", str(e)))
    except (ConcurrencyConflict, PersistenceError) as e:
        logger.error("webhook_processing_failed", error=str(e), error_type=type(e).__name__)
        raise HTTPException(status_code=500, detail=error_detail("retryable_failure", str(e)))

    return WebhookResponse(
        received=True,
        status=outcome.status.value,
        eventId=outcome.event_id,
        eventType=outcome.event_type,
    )
