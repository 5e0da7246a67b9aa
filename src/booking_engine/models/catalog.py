"""Catalog models read by the pricing engine and conflict checker.

The catalog tables are maintained by the admin tooling; the engine only
reads them. Amounts are integers in minor units.
"""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, Field

from .enums import DiscountType


class Room(BaseModel):
    """A bookable room."""

    room_id: str
    name: str
    base_rate: int = Field(..., ge=0, description="Nightly rate in minor units")
    currency: str = "EUR"
    max_guests: int = Field(default=2, ge=1)
    base_occupancy: int = Field(default=2, ge=1)
    extra_guest_fee: int = Field(default=0, ge=0, description="Per extra guest per night")


class Bed(BaseModel):
    """A bed inside a shared room, sold per camp session."""

    bed_id: str
    room_id: str
    name: str
    price_modifier: int = Field(default=0, description="Added to the nightly rate, may be negative")


class CampSession(BaseModel):
    """A time-ranged camp week with a guest capacity."""

    camp_session_id: str
    name: str
    start_date: dt.date
    end_date: dt.date
    nightly_rate: int = Field(..., ge=0)
    currency: str = "EUR"
    capacity: int = Field(..., ge=0)


class AddOn(BaseModel):
    """An optional extra sold alongside accommodation."""

    addon_id: str
    name: str
    price: int = Field(..., ge=0)
    currency: str = "EUR"
    max_quantity: int | None = Field(default=None, ge=1)


class PromoCode(BaseModel):
    """A promotional discount code."""

    code: str
    discount_type: DiscountType
    value: Decimal = Field(
        ..., ge=0, description="Percent for percentage codes, minor units for fixed"
    )
    valid_from: dt.date | None = None
    valid_until: dt.date | None = None
    max_uses: int | None = Field(default=None, ge=0)
    used_count: int = Field(default=0, ge=0)
    min_subtotal: int | None = Field(default=None, ge=0)
    is_active: bool = True


class CalendarEvent(BaseModel):
    """An operator-defined calendar block (maintenance, private event, retreat)."""

    event_id: str
    title: str
    start_date: dt.date
    end_date: dt.date
    resource_ids: list[str] = Field(default_factory=list, description="Empty means whole property")
    blocks_inventory: bool = True
