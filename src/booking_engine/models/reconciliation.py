"""Reconciliation sweep parameters and report models."""

import datetime as dt

from pydantic import BaseModel, Field, model_validator

from .enums import DiscrepancyType, Severity


class ReconciliationParams(BaseModel):
    """Window and behaviour of one sweep. Unset dates take configured defaults."""

    date_from: dt.datetime | None = None
    date_to: dt.datetime | None = None
    limit: int | None = Field(default=None, ge=1)
    auto_correct: bool = False
    include_orphans: bool = False

    @model_validator(mode="after")
    def _check_window(self) -> "ReconciliationParams":
        if self.date_from and self.date_to and self.date_from >= self.date_to:
            raise ValueError("date_from must be before date_to")
        return self


class Discrepancy(BaseModel):
    """One detected drift between the local ledger and the gateway."""

    type: DiscrepancyType
    severity: Severity
    booking_id: str | None = None
    gateway_payment_id: str | None = None
    local_payment_id: str | None = None
    description: str
    suggested_action: str
    local_value: str | None = None
    gateway_value: str | None = None
    auto_corrected: bool = False


class ReconciliationSummary(BaseModel):
    total_payments_checked: int = 0
    discrepancies_found: int = 0
    auto_corrected: int = 0
    manual_review_required: int = 0
    execution_time_ms: int = 0


class ReconciliationMetadata(BaseModel):
    run_id: str
    date_from: dt.datetime
    date_to: dt.datetime
    limit: int
    auto_correct: bool
    execution_timestamp: dt.datetime
    gateway_api_calls: int = 0


class ReconciliationReport(BaseModel):
    """Operator-facing report of one sweep."""

    summary: ReconciliationSummary
    discrepancies: list[Discrepancy] = Field(default_factory=list)
    metadata: ReconciliationMetadata
