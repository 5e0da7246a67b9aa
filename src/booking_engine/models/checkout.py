"""Checkout request and result models."""

import datetime as dt

from pydantic import BaseModel, Field

from .booking import CustomerCreate
from .line_items import LineItem


class CheckoutRequest(BaseModel):
    """Everything needed to reserve a selection and open a payment session."""

    customer: CustomerCreate
    selection: list[LineItem] = Field(..., min_length=1)
    promo_code: str | None = Field(default=None, max_length=50, examples=["SUMMER25"])
    success_url: str = Field(
        ...,
        examples=["https://example.com/booking/success?session_id={CHECKOUT_SESSION_ID}"],
    )
    cancel_url: str = Field(..., examples=["https://example.com/booking/cancelled"])
    special_requests: str | None = Field(default=None, max_length=1000)


class CheckoutResult(BaseModel):
    """Returned once the draft booking exists and a session is open."""

    checkout_url: str
    session_id: str
    booking_id: str
    expires_at: dt.datetime
    customer_email: str
    amount_total: int = Field(..., description="Grand total in minor units")
    currency: str
    warnings: list[str] = Field(default_factory=list)
