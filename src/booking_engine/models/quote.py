"""Price quote models.

Amounts are integers in minor units; the ``*_display`` computed fields render
them with two decimals for clients.
"""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, Field, computed_field

from ..utils.money import format_minor
from .enums import DiscountType
from .line_items import LineItem


class QuoteLine(BaseModel):
    """A priced accommodation or add-on line."""

    kind: str = Field(..., examples=["room", "camp", "addon"])
    reference_id: str = Field(..., description="Room, bed or add-on id")
    description: str
    quantity: int = Field(..., ge=1)
    nights: int | None = Field(default=None, ge=1)
    unit_amount: int = Field(..., description="Per night (accommodation) or per item (add-on)")
    amount: int


class DiscountLine(BaseModel):
    """A discount applied to the subtotal."""

    type: str = "promo_code"
    code: str
    discount_type: DiscountType
    value: Decimal
    amount: int = Field(..., ge=0)


class TaxLine(BaseModel):
    """A tax computed on the discounted subtotal."""

    name: str
    rate: Decimal
    amount: int = Field(..., ge=0)


class Quote(BaseModel):
    """A time-bounded price computation for a candidate booking."""

    quote_id: str
    currency: str
    lines: list[QuoteLine]
    subtotal: int
    discounts: list[DiscountLine] = Field(default_factory=list)
    discounts_total: int = 0
    taxes: list[TaxLine] = Field(default_factory=list)
    taxes_total: int = 0
    grand_total: int
    warnings: list[str] = Field(default_factory=list)
    check_in: dt.date | None = None
    check_out: dt.date | None = None
    calculated_at: dt.datetime
    valid_until: dt.datetime

    # Inputs, kept so a stale quote can be recomputed
    selection: list[LineItem]
    promo_code: str | None = None
    requested_check_in: dt.date | None = None
    requested_check_out: dt.date | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def totals_display(self) -> dict[str, str]:
        return {
            "subtotal": format_minor(self.subtotal),
            "discounts_total": format_minor(self.discounts_total),
            "taxes_total": format_minor(self.taxes_total),
            "grand_total": format_minor(self.grand_total),
        }

    @property
    def promo_applied(self) -> DiscountLine | None:
        return self.discounts[0] if self.discounts else None

    def is_expired(self, now: dt.datetime | None = None) -> bool:
        """Whether the quote's validity window has passed."""
        return (now or dt.datetime.now(dt.UTC)) >= self.valid_until
