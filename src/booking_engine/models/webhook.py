"""Dedup ledger and webhook processing models."""

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field

from .enums import ProcessingResult


class WebhookEvent(BaseModel):
    """A row of the dedup ledger: one per Stripe event id."""

    model_config = ConfigDict(strict=True)

    event_id: str = Field(..., description="Stripe event ID (evt_xxx)")
    event_type: str
    payload: str = Field(..., description="Raw JSON payload as received")
    processed: bool = False
    attempts: int = Field(default=1, ge=0)
    lease_until: dt.datetime | None = None
    result: str | None = None
    booking_id: str | None = None
    payment_id: str | None = None
    created_at: dt.datetime
    last_attempt_at: dt.datetime
    processed_at: dt.datetime | None = None


class WebhookOutcome(BaseModel):
    """What happened to one delivery."""

    event_id: str
    event_type: str
    result: ProcessingResult
    booking_id: str | None = None
    payment_id: str | None = None
    message: str | None = None


class ReplaySummary(BaseModel):
    """Result of re-dispatching unprocessed ledger rows."""

    examined: int = 0
    outcomes: list[WebhookOutcome] = Field(default_factory=list)
