"""Stripe webhook endpoint.

These endpoints do NOT require JWT authentication as they receive signed
payloads from Stripe. The status code tells Stripe whether to redeliver:
- 200: handled, duplicate, in progress elsewhere, or acknowledged and ignored
- 400: signature or payload invalid (Stripe will not fix this by retrying)
- 500: deferred (correlated rows not visible yet, or a lost race); retry later
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from booking_api.dependencies import get_webhook_processor
from booking_api.exceptions import error_json
from booking_api.models.requests import WebhookResponse
from booking_engine.models.errors import BookingError, ErrorCode, ErrorResponse
from booking_engine.services.webhook_handler import WebhookProcessor
from booking_engine.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])

STRIPE_SIGNATURE_HEADER = "Stripe-Signature"


@router.post(
    "/webhooks/stripe",
    summary="Receive Stripe webhook events",
    description="""
Endpoint for Stripe webhook events.

**No authentication required** - signature is verified using the Stripe
webhook secret.

**Idempotent**: each event id is applied at most once; redeliveries return
200 with `duplicate`. Unsupported event types are acknowledged with
`unhandled`.
""",
    response_model=WebhookResponse,
    responses={
        200: {"description": "Event received and processed (or acknowledged)"},
        400: {"description": "Invalid signature or missing header", "model": ErrorResponse},
        500: {"description": "Processing deferred; Stripe will retry", "model": ErrorResponse},
    },
)
async def handle_stripe_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
) -> WebhookResponse | JSONResponse:
    """Verify, deduplicate and apply one Stripe event."""
    signature = request.headers.get(STRIPE_SIGNATURE_HEADER)
    if not signature:
        logger.warning("Webhook request missing Stripe-Signature header")
        raise BookingError(ErrorCode.SIGNATURE_ERROR)

    payload = await request.body()
    outcome = processor.process(payload, signature)

    if outcome.result.is_retryable:
        # Stripe redelivers on non-2xx; the reason stays in the logs
        return error_json(ErrorCode.SERVER_ERROR)

    return WebhookResponse(
        received=True,
        event_id=outcome.event_id,
        event_type=outcome.event_type,
        processing_result=outcome.result,
        message=outcome.message,
    )
