"""Line items a customer can select, as a tagged union.

A selection is a list of ``LineItem`` values; the ``kind`` field is the
discriminator. Code that consumes a selection matches on the concrete class
and ends with ``assert_never`` so that adding a kind is a type error until
every consumer handles it.
"""

import datetime as dt
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator


class RoomLine(BaseModel):
    """A whole room for a date range."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["room"] = "room"
    room_id: str = Field(..., min_length=1, examples=["ROOM-OCEAN-1"])
    check_in: dt.date = Field(..., description="First night (inclusive)")
    check_out: dt.date = Field(..., description="Departure day (exclusive)")
    guests: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _check_dates(self) -> "RoomLine":
        if self.check_out <= self.check_in:
            raise ValueError("check_out must be after check_in")
        return self

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days


class CampLine(BaseModel):
    """Beds in a camp session, optionally for part of the session."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["camp"] = "camp"
    camp_session_id: str = Field(..., min_length=1, examples=["CAMP-2026-W27"])
    bed_ids: list[str] = Field(..., min_length=1)
    check_in: dt.date | None = Field(default=None, description="Defaults to session start")
    check_out: dt.date | None = Field(default=None, description="Defaults to session end")

    @model_validator(mode="after")
    def _check_beds(self) -> "CampLine":
        if len(set(self.bed_ids)) != len(self.bed_ids):
            raise ValueError("bed_ids must be unique")
        if self.check_in and self.check_out and self.check_out <= self.check_in:
            raise ValueError("check_out must be after check_in")
        return self

    @property
    def guests(self) -> int:
        return len(self.bed_ids)


class AddOnLine(BaseModel):
    """A purchasable extra (board rental, lessons, transfers)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["addon"] = "addon"
    addon_id: str = Field(..., min_length=1, examples=["ADDON-SURF-LESSON"])
    quantity: int = Field(default=1, ge=1)


LineItem = Annotated[Union[RoomLine, CampLine, AddOnLine], Field(discriminator="kind")]

selection_adapter: TypeAdapter[list[LineItem]] = TypeAdapter(list[LineItem])
