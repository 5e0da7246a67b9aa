"""Checkout endpoint.

Reserves the selected inventory for a draft booking and opens a Stripe
Checkout session. The booking is confirmed later by the Stripe webhook.
"""

from fastapi import APIRouter, Depends
from starlette.status import HTTP_201_CREATED

from booking_api.dependencies import get_checkout_orchestrator
from booking_engine.models.checkout import CheckoutRequest, CheckoutResult
from booking_engine.services.checkout import CheckoutOrchestrator

router = APIRouter(tags=["checkout"])


@router.post(
    "/checkout",
    summary="Start checkout",
    description="""
Create a booking in `pending_payment` and a Stripe Checkout session for it.

Inventory is reserved atomically: if another checkout takes any of the
same resource nights first, this request fails with 409 and nothing is kept.
If Stripe is unavailable the reservation is rolled back and 502 is returned.
""",
    response_model=CheckoutResult,
    status_code=HTTP_201_CREATED,
    responses={
        201: {"description": "Booking reserved and checkout session created"},
        400: {"description": "Invalid selection or promo code no longer usable"},
        404: {"description": "Unknown catalog item"},
        409: {"description": "Resources unavailable for the requested dates"},
        502: {"description": "Payment provider error (safe to retry)"},
    },
)
async def create_checkout(
    body: CheckoutRequest,
    orchestrator: CheckoutOrchestrator = Depends(get_checkout_orchestrator),
) -> CheckoutResult:
    """Reserve the selection and return the Stripe Checkout URL."""
    return orchestrator.create_checkout(body)
