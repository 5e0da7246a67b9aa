"""API models for quote, availability, webhook and admin endpoints.

Checkout, reconciliation and refund bodies reuse the engine models
(CheckoutRequest, ReconciliationParams, RefundRequest) directly.
"""

import datetime as dt

from pydantic import BaseModel, Field, model_validator

from booking_engine.models.enums import ProcessingResult
from booking_engine.models.line_items import LineItem


class QuoteRequest(BaseModel):
    """Selection to price."""

    selection: list[LineItem] = Field(..., min_length=1)
    promo_code: str | None = Field(default=None, max_length=50, examples=["SUMMER25"])
    check_in: dt.date | None = Field(default=None, description="Defaults to the earliest line")
    check_out: dt.date | None = Field(default=None, description="Defaults to the latest line")


class AvailabilityRequest(BaseModel):
    """Resources to test for a date range (end date exclusive)."""

    resource_ids: list[str] = Field(..., min_length=1, examples=[["ROOM-OCEAN-1"]])
    start_date: dt.date = Field(..., examples=["2026-07-01"])
    end_date: dt.date = Field(..., examples=["2026-07-08"])
    exclude_id: str | None = None

    @model_validator(mode="after")
    def _check_range(self) -> "AvailabilityRequest":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class ReplayRequest(BaseModel):
    limit: int = Field(default=25, ge=1, le=100)


class WebhookResponse(BaseModel):
    """Standard webhook acknowledgement."""

    received: bool
    event_id: str | None = None
    event_type: str | None = None
    processing_result: ProcessingResult
    message: str | None = None
