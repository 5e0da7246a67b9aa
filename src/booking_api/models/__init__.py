"""API request and response models."""

from booking_api.models.common import PingResponse, ValidationErrorDetail
from booking_api.models.requests import (
    AvailabilityRequest,
    QuoteRequest,
    ReplayRequest,
    WebhookResponse,
)

__all__ = [
    "AvailabilityRequest",
    "PingResponse",
    "QuoteRequest",
    "ReplayRequest",
    "ValidationErrorDetail",
    "WebhookResponse",
]
