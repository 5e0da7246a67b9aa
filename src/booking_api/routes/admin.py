"""Operator endpoints: reconciliation, refunds and webhook replay.

All endpoints require an operator identity from the API Gateway authorizer
and a role allowed by the authorization policy.
"""

from fastapi import APIRouter, Depends

from booking_api.dependencies import (
    get_reconciliation_sweep,
    get_refund_service,
    get_webhook_processor,
)
from booking_api.models.requests import ReplayRequest
from booking_api.security import Principal, require_permission
from booking_engine.models.reconciliation import ReconciliationParams, ReconciliationReport
from booking_engine.models.refund import RefundRequest, RefundResult
from booking_engine.models.webhook import ReplaySummary
from booking_engine.services.reconciliation import ReconciliationSweep
from booking_engine.services.refunds import RefundService
from booking_engine.services.webhook_handler import WebhookProcessor
from booking_engine.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

AUTH_RESPONSES: dict[int | str, dict] = {
    401: {"description": "Authentication required"},
    403: {"description": "Insufficient role"},
}


@router.post(
    "/reconciliation",
    summary="Run a payment reconciliation sweep",
    description="""
Compare local payments in a window against Stripe and report drift.

With `auto_correct`, amount, status and refund fields on payment rows are
updated to match Stripe. Bookings are never modified. `include_orphans`
also lists succeeded Stripe payments that have no local record.
""",
    response_model=ReconciliationReport,
    responses={
        **AUTH_RESPONSES,
        400: {"description": "Invalid window or limit above the maximum"},
        502: {"description": "Stripe listing failed"},
    },
)
async def run_reconciliation(
    params: ReconciliationParams | None = None,
    principal: Principal = Depends(require_permission("reconciliation:run")),
    sweep: ReconciliationSweep = Depends(get_reconciliation_sweep),
) -> ReconciliationReport:
    logger.info("Reconciliation requested by %s", principal.subject)
    return sweep.reconcile(params, actor=principal.subject)


@router.post(
    "/bookings/{booking_id}/refund",
    summary="Refund a paid booking",
    description="""
Request a full or partial refund at Stripe.

The booking status changes only when Stripe confirms the refund through the
`charge.refunded` webhook. A partial refund leaves the booking paid.
""",
    response_model=RefundResult,
    responses={
        **AUTH_RESPONSES,
        400: {"description": "Booking not paid or amount exceeds the refundable remainder"},
        404: {"description": "Booking not found"},
        502: {"description": "Stripe rejected the refund"},
    },
)
async def refund_booking(
    booking_id: str,
    body: RefundRequest,
    principal: Principal = Depends(require_permission("refunds:create")),
    refunds: RefundService = Depends(get_refund_service),
) -> RefundResult:
    return refunds.refund_booking(booking_id, body, actor=principal.subject)


@router.post(
    "/webhooks/replay",
    summary="Replay unprocessed webhook events",
    description="Re-dispatch stored events that were deferred and whose lease expired.",
    response_model=ReplaySummary,
    responses=AUTH_RESPONSES,
)
async def replay_webhooks(
    body: ReplayRequest | None = None,
    principal: Principal = Depends(require_permission("webhooks:replay")),
    processor: WebhookProcessor = Depends(get_webhook_processor),
) -> ReplaySummary:
    limit = body.limit if body else ReplayRequest().limit
    logger.info("Webhook replay (limit=%d) requested by %s", limit, principal.subject)
    return processor.replay_unprocessed(limit=limit)
