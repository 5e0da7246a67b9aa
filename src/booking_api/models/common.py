"""Shared API request/response models.

Domain models (Quote, CheckoutRequest, ReconciliationReport, ...) live in
booking_engine.models; this module holds HTTP-layer concerns only.
"""

from pydantic import BaseModel, ConfigDict, Field

from booking_engine.models.errors import ErrorCode, ErrorResponse

__all__ = [
    "ErrorCode",
    "ErrorResponse",
    "ValidationErrorDetail",
    "PingResponse",
]


class ValidationErrorDetail(BaseModel):
    """Detail of a single validation error."""

    model_config = ConfigDict(strict=True)

    loc: list[str] = Field(
        ...,
        description="Path to the field that failed validation",
        examples=[["body", "selection", "0", "check_in"]],
    )
    msg: str = Field(..., description="Human-readable error message", examples=["Field required"])
    type: str = Field(..., description="Error type identifier", examples=["missing"])


class PingResponse(BaseModel):
    status: str = "ok"
    timestamp: str
    service: str = "booking-api"
