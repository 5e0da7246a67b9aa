"""Pydantic models for booking engine data entities."""

from .booking import (
    AddOnLineRecord,
    Booking,
    Customer,
    CustomerCreate,
    PromoApplication,
    ReservationRecord,
)
from .catalog import AddOn, Bed, CalendarEvent, CampSession, PromoCode, Room
from .checkout import CheckoutRequest, CheckoutResult
from .conflicts import ConflictCandidate, ConflictCheck, ConflictDetail, ResourceAvailability
from .enums import (
    BookingStatus,
    CandidateKind,
    ConflictType,
    DiscountType,
    DiscrepancyType,
    PaymentStatus,
    ProcessingResult,
    ReservationKind,
    Role,
    Severity,
    WebhookEventKind,
)
from .errors import BookingError, ErrorCode, ErrorResponse
from .line_items import AddOnLine, CampLine, LineItem, RoomLine
from .payment import CheckoutSession, GatewayPayment, GatewayRefund, Payment
from .quote import DiscountLine, Quote, QuoteLine, TaxLine
from .reconciliation import (
    Discrepancy,
    ReconciliationMetadata,
    ReconciliationParams,
    ReconciliationReport,
    ReconciliationSummary,
)
from .refund import RefundReason, RefundRequest, RefundResult
from .webhook import ReplaySummary, WebhookEvent, WebhookOutcome

__all__ = [
    # Booking
    "AddOnLineRecord",
    "Booking",
    "Customer",
    "CustomerCreate",
    "PromoApplication",
    "ReservationRecord",
    # Catalog
    "AddOn",
    "Bed",
    "CalendarEvent",
    "CampSession",
    "PromoCode",
    "Room",
    # Checkout
    "CheckoutRequest",
    "CheckoutResult",
    # Conflicts
    "ConflictCandidate",
    "ConflictCheck",
    "ConflictDetail",
    "ResourceAvailability",
    # Enums
    "BookingStatus",
    "CandidateKind",
    "ConflictType",
    "DiscountType",
    "DiscrepancyType",
    "PaymentStatus",
    "ProcessingResult",
    "ReservationKind",
    "Role",
    "Severity",
    "WebhookEventKind",
    # Errors
    "BookingError",
    "ErrorCode",
    "ErrorResponse",
    # Line items
    "AddOnLine",
    "CampLine",
    "LineItem",
    "RoomLine",
    # Payments
    "CheckoutSession",
    "GatewayPayment",
    "GatewayRefund",
    "Payment",
    # Quotes
    "DiscountLine",
    "Quote",
    "QuoteLine",
    "TaxLine",
    # Reconciliation
    "Discrepancy",
    "ReconciliationMetadata",
    "ReconciliationParams",
    "ReconciliationReport",
    "ReconciliationSummary",
    # Refunds
    "RefundReason",
    "RefundRequest",
    "RefundResult",
    # Webhooks
    "ReplaySummary",
    "WebhookEvent",
    "WebhookOutcome",
]
