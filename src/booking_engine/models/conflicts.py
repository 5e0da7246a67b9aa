"""Conflict checking request and result models."""

import datetime as dt

from pydantic import BaseModel, Field, model_validator

from .enums import CandidateKind, ConflictType


class ConflictCandidate(BaseModel):
    """A reservation (or calendar item) to validate against existing ones.

    Dates are half-open: ``end_date`` is the departure day and is not occupied.
    """

    start_date: dt.date
    end_date: dt.date
    kind: CandidateKind = CandidateKind.BOOKING
    resource_ids: list[str] = Field(default_factory=list)
    camp_session_id: str | None = None
    guest_count: int = Field(default=0, ge=0)
    capacity: int | None = Field(default=None, ge=0)
    exclude_id: str | None = Field(
        default=None,
        description="Booking, session or event id to ignore (re-validation on edit)",
    )

    @model_validator(mode="after")
    def _check_range(self) -> "ConflictCandidate":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class ConflictDetail(BaseModel):
    """An existing reservation or event that overlaps the candidate."""

    type: ConflictType
    reference_id: str
    title: str
    resource_id: str | None = None
    start_date: dt.date
    end_date: dt.date


class ConflictCheck(BaseModel):
    """Outcome of a conflict check."""

    has_conflict: bool = False
    conflicts: list[ConflictDetail] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ResourceAvailability(BaseModel):
    """Which of the requested resources are free for a range."""

    start_date: dt.date
    end_date: dt.date
    available: list[str] = Field(default_factory=list)
    unavailable: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
