"""Payment ledger models and normalised gateway records."""

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field

from .enums import PaymentStatus


class Payment(BaseModel):
    """A payment for a booking.

    Amounts are in minor units of ``currency``. ``gateway_transaction_id``
    holds the Stripe PaymentIntent id once it is known.
    """

    model_config = ConfigDict(strict=True)

    payment_id: str = Field(..., description="Unique payment ID")
    booking_id: str = Field(..., description="Reference to Booking")
    amount: int = Field(..., ge=0, description="Amount in minor units")
    currency: str = Field(..., description="ISO-4217 currency code")
    status: PaymentStatus
    gateway_session_id: str | None = Field(
        default=None,
        description="Stripe Checkout Session ID (cs_xxx)",
        examples=["cs_test_abc123def456"],
    )
    gateway_transaction_id: str | None = Field(
        default=None,
        description="Stripe PaymentIntent ID (pi_xxx)",
        examples=["pi_3ABC123DEF456"],
    )
    refunded_amount: int = Field(default=0, ge=0)
    failure_reason: str | None = None
    payment_date: dt.datetime | None = None
    review_required: bool = False
    review_reason: str | None = None
    created_at: dt.datetime
    updated_at: dt.datetime


class GatewayPayment(BaseModel):
    """The gateway's authoritative view of a PaymentIntent."""

    payment_intent_id: str
    amount: int
    currency: str
    status: str = Field(..., description="Raw Stripe PaymentIntent status")
    refunded_amount: int = 0
    created: dt.datetime | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class CheckoutSession(BaseModel):
    """A Stripe Checkout session created for a booking."""

    session_id: str
    checkout_url: str
    expires_at: dt.datetime
    payment_intent_id: str | None = None


class GatewayRefund(BaseModel):
    """A refund created at the gateway."""

    refund_id: str
    amount: int
    status: str
