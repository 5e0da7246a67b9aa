"""Quote endpoint.

Prices a selection of rooms, camp beds and add-ons. Quotes are not stored;
checkout recomputes them. All amounts are integer minor units.
"""

from fastapi import APIRouter, Depends

from booking_api.dependencies import get_pricing_engine
from booking_api.models.requests import QuoteRequest
from booking_engine.models.quote import Quote
from booking_engine.services.pricing import PricingEngine

router = APIRouter(tags=["quotes"])


@router.post(
    "/quotes",
    summary="Price a selection",
    description="""
Compute a quote for rooms, camp beds and add-ons.

**Notes:**
- Amounts are minor units (e.g., 18000 = 180.00)
- check_out is exclusive
- An unknown or unusable promo code is reported in `warnings`, not as an error
- The quote is valid until `valid_until`; checkout recomputes stale quotes
""",
    response_model=Quote,
    responses={
        200: {"description": "Quote computed"},
        400: {"description": "Invalid selection (dates, quantities, mixed currencies)"},
        404: {"description": "Unknown room, bed, camp session or add-on"},
    },
)
async def create_quote(
    body: QuoteRequest,
    pricing: PricingEngine = Depends(get_pricing_engine),
) -> Quote:
    """Price the selection with the current catalog, promo code and tax rules."""
    return pricing.quote(
        body.selection,
        promo_code=body.promo_code,
        check_in=body.check_in,
        check_out=body.check_out,
    )
