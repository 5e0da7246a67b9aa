"""Booking, customer and booking child-row models."""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .enums import BookingStatus, DiscountType, ReservationKind


class CustomerCreate(BaseModel):
    """Customer details supplied at checkout."""

    email: EmailStr = Field(..., examples=["guest@example.com"])
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: str | None = Field(default=None, max_length=30, examples=["+34612345678"])


class Customer(BaseModel):
    """A customer, keyed by an id derived from the normalised email."""

    customer_id: str
    email: str
    first_name: str
    last_name: str
    phone: str | None = None
    created_at: dt.datetime


class Booking(BaseModel):
    """A customer's reservation of one or more resources over a date range."""

    model_config = ConfigDict(strict=True)

    booking_id: str
    customer_id: str
    resource_ids: list[str]
    status: BookingStatus
    subtotal: int = Field(..., ge=0)
    discounts_total: int = Field(default=0, ge=0)
    taxes_total: int = Field(default=0, ge=0)
    total_amount: int = Field(..., ge=0)
    currency: str
    check_in_date: dt.date
    check_out_date: dt.date
    promo_code: str | None = None
    quote_id: str | None = None
    special_requests: str | None = None
    gateway_session_id: str | None = None
    active_payment_id: str | None = None
    expires_at: dt.datetime | None = None
    review_required: bool = False
    review_reason: str | None = None
    created_at: dt.datetime
    updated_at: dt.datetime


class ReservationRecord(BaseModel):
    """A room reservation, bed assignment or camp seat row of a booking."""

    model_config = ConfigDict(strict=True)

    reservation_id: str
    booking_id: str
    kind: ReservationKind
    resource_id: str = Field(..., description="Room id, bed id, or camp session id for camp rows")
    camp_session_id: str | None = None
    start_date: dt.date
    end_date: dt.date
    guest_count: int = Field(default=1, ge=0)

    @property
    def holds_inventory(self) -> bool:
        """Room and bed rows are protected by per-night locks; camp rows only count seats."""
        return self.kind in (ReservationKind.ROOM, ReservationKind.BED)


class AddOnLineRecord(BaseModel):
    """An add-on line written with the booking."""

    line_id: str
    booking_id: str
    addon_id: str
    quantity: int = Field(..., ge=1)
    unit_price: int = Field(..., ge=0)
    total_price: int = Field(..., ge=0)


class PromoApplication(BaseModel):
    """A promo code applied to a booking."""

    application_id: str
    booking_id: str
    promo_code: str
    discount_type: DiscountType
    discount_value: Decimal
    discount_amount: int = Field(..., ge=0)
