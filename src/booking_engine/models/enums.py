"""Enumeration types for booking engine data models."""

from enum import Enum


class BookingStatus(str, Enum):
    """Lifecycle status of a booking."""

    DRAFT = "draft"
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    PAID = "paid"
    CANCELLED = "cancelled"
    FAILED = "failed"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_BOOKING_STATUSES


TERMINAL_BOOKING_STATUSES = frozenset(
    {BookingStatus.CANCELLED, BookingStatus.FAILED, BookingStatus.REFUNDED}
)


class PaymentStatus(str, Enum):
    """Status of a payment in the local ledger."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class ReservationKind(str, Enum):
    """Kind of inventory a reservation row holds."""

    ROOM = "room"
    BED = "bed"
    CAMP = "camp"


class DiscountType(str, Enum):
    """How a promo code discount is computed."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CandidateKind(str, Enum):
    """What the conflict checker is validating."""

    BOOKING = "booking"
    CAMP_SESSION = "camp_session"
    CUSTOM_EVENT = "custom_event"


class ConflictType(str, Enum):
    """Source of a reported conflict."""

    RESERVATION = "reservation"
    CAMP_SESSION = "camp_session"
    CUSTOM_EVENT = "custom_event"


class WebhookEventKind(str, Enum):
    """Stripe event types the webhook processor has handlers for."""

    CHECKOUT_COMPLETED = "checkout.session.completed"
    CHECKOUT_EXPIRED = "checkout.session.expired"
    CHECKOUT_ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"
    PAYMENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_FAILED = "payment_intent.payment_failed"
    CHARGE_REFUNDED = "charge.refunded"
    DISPUTE_CREATED = "charge.dispute.created"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

    @classmethod
    def parse(cls, event_type: str) -> "WebhookEventKind | None":
        """Map a raw Stripe type string to a kind, or None when unsupported."""
        try:
            return cls(event_type)
        except ValueError:
            return None


class ProcessingResult(str, Enum):
    """Outcome of handling one webhook delivery."""

    PROCESSED = "processed"
    NOOP = "noop"
    DUPLICATE = "duplicate"
    IN_PROGRESS = "in_progress"
    UNHANDLED = "unhandled"
    LOGGED = "logged"
    SKIPPED = "skipped"
    ESCALATED = "escalated"
    REJECTED = "rejected"
    DEFERRED = "deferred"

    @property
    def is_retryable(self) -> bool:
        """Deferred deliveries are answered with a non-2xx so Stripe retries."""
        return self is ProcessingResult.DEFERRED


class DiscrepancyType(str, Enum):
    """Classes of drift found by the reconciliation sweep."""

    MISSING_PAYMENT = "missing_payment"
    AMOUNT_MISMATCH = "amount_mismatch"
    STATUS_MISMATCH = "status_mismatch"
    REFUND_MISMATCH = "refund_mismatch"
    ORPHANED_GATEWAY_PAYMENT = "orphaned_gateway_payment"


class Severity(str, Enum):
    """Severity of a reconciliation discrepancy."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Role(str, Enum):
    """Operator roles, ordered by privilege."""

    VIEWER = "viewer"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"

    @property
    def level(self) -> int:
        return ROLE_LEVELS[self]


ROLE_LEVELS: dict[Role, int] = {
    Role.VIEWER: 1,
    Role.ADMIN: 2,
    Role.SUPERADMIN: 3,
}
