"""Refund request and result models."""

from enum import Enum

from pydantic import BaseModel, Field

from .enums import BookingStatus


class RefundReason(str, Enum):
    """Operator-selected refund reasons."""

    REQUESTED_BY_CUSTOMER = "requested_by_customer"
    DUPLICATE = "duplicate"
    FRAUDULENT = "fraudulent"
    OTHER = "other"

    @property
    def stripe_reason(self) -> str:
        """Stripe only accepts the first three; anything else is filed as a customer request."""
        if self is RefundReason.OTHER:
            return RefundReason.REQUESTED_BY_CUSTOMER.value
        return self.value


class RefundRequest(BaseModel):
    amount: int | None = Field(
        default=None, ge=1, description="Minor units; omit for the full remainder"
    )
    reason: RefundReason = RefundReason.REQUESTED_BY_CUSTOMER
    notes: str | None = Field(default=None, max_length=500)


class RefundResult(BaseModel):
    """A refund accepted by the gateway.

    Booking and payment state follow once Stripe sends ``charge.refunded``.
    """

    refund_id: str
    booking_id: str
    payment_id: str
    amount_refunded: int
    refundable_remaining: int
    currency: str
    gateway_status: str
    booking_status: BookingStatus
