"""Unit tests for Stripe webhook processing.

Each test starts from a real checkout (pending_payment booking, pending
payment, night locks) and feeds events through WebhookProcessor.process_event.

Test categories:
- Status effects per event type
- Idempotency and processing leases
- Out-of-order delivery and terminal-state protection
- Deferral and replay
"""

import datetime as dt
import json
from collections.abc import Callable
from typing import Any
from unittest.mock import patch

import pytest

from booking_engine.models.checkout import CheckoutRequest, CheckoutResult
from booking_engine.models.enums import BookingStatus, PaymentStatus, ProcessingResult
from booking_engine.models.errors import BookingError, ErrorCode
from booking_engine.services.audit import AuditLogService
from booking_engine.services.bookings import BookingRepository
from booking_engine.services.checkout import CheckoutOrchestrator
from booking_engine.services.dynamodb import DynamoDBService
from booking_engine.services.inventory import holder_of
from booking_engine.services.payment_service import PaymentService
from booking_engine.services.webhook_handler import WebhookProcessor

ROOM_ID = "ROOM-OCEAN-1"
CHECK_IN = dt.date(2026, 7, 1)
PAYMENT_INTENT = "pi_3TestIntent0001"
TOTAL = 136080


# === Helpers ===


def session_event(
    make_event: Callable[..., dict[str, Any]],
    event_type: str,
    checkout_result: CheckoutResult,
    payment_status: str = "paid",
    payment_intent: str | None = PAYMENT_INTENT,
    event_id: str | None = None,
) -> dict[str, Any]:
    return make_event(
        event_type,
        {
            "id": checkout_result.session_id,
            "object": "checkout.session",
            "payment_intent": payment_intent,
            "payment_status": payment_status,
            "amount_total": checkout_result.amount_total,
            "currency": "eur",
            "metadata": {"booking_id": checkout_result.booking_id},
        },
        event_id=event_id,
    )


def intent_event(
    make_event: Callable[..., dict[str, Any]],
    event_type: str,
    booking_id: str | None,
    payment_intent: str = PAYMENT_INTENT,
    error_message: str | None = None,
) -> dict[str, Any]:
    obj: dict[str, Any] = {
        "id": payment_intent,
        "object": "payment_intent",
        "amount": TOTAL,
        "currency": "eur",
        "status": "succeeded" if error_message is None else "requires_payment_method",
        "metadata": {"booking_id": booking_id} if booking_id else {},
    }
    if error_message:
        obj["last_payment_error"] = {"message": error_message}
    return make_event(event_type, obj)


def charge_refunded_event(
    make_event: Callable[..., dict[str, Any]],
    amount_refunded: int,
    fully_refunded: bool,
) -> dict[str, Any]:
    return make_event(
        "charge.refunded",
        {
            "id": "ch_3TestCharge0001",
            "object": "charge",
            "payment_intent": PAYMENT_INTENT,
            "amount": TOTAL,
            "amount_refunded": amount_refunded,
            "refunded": fully_refunded,
            "metadata": {},
        },
    )


def deliver(processor: WebhookProcessor, event: dict[str, Any]):
    return processor.process_event(event, json.dumps(event))


# === Fixtures ===


@pytest.fixture
def pending(
    checkout: CheckoutOrchestrator,
    make_checkout_request: Callable[..., CheckoutRequest],
) -> CheckoutResult:
    """A week in the ocean room, awaiting payment."""
    return checkout.create_checkout(make_checkout_request())


@pytest.fixture
def booking_status(bookings: BookingRepository) -> Callable[[str], BookingStatus]:
    def status(booking_id: str) -> BookingStatus:
        booking = bookings.get_booking(booking_id, consistent_read=True)
        assert booking is not None
        return booking.status

    return status


@pytest.fixture
def paid(
    pending: CheckoutResult,
    webhooks: WebhookProcessor,
    make_event: Callable[..., dict[str, Any]],
) -> CheckoutResult:
    """The pending booking after checkout completion and payment success."""
    deliver(webhooks, session_event(make_event, "checkout.session.completed", pending))
    deliver(webhooks, intent_event(make_event, "payment_intent.succeeded", pending.booking_id))
    return pending


# === Status effects ===


class TestCheckoutCompleted:
    def test_confirms_booking_and_completes_payment(
        self,
        webhooks: WebhookProcessor,
        pending: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        booking_status: Callable[[str], BookingStatus],
        payments: PaymentService,
    ) -> None:
        event = session_event(make_event, "checkout.session.completed", pending)

        outcome = deliver(webhooks, event)

        assert outcome.result == ProcessingResult.PROCESSED
        assert outcome.booking_id == pending.booking_id
        assert booking_status(pending.booking_id) == BookingStatus.CONFIRMED

        payment = payments.get_by_session_id(pending.session_id)
        assert payment is not None
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.gateway_transaction_id == PAYMENT_INTENT
        assert payment.payment_date is not None

        ledger = webhooks.get_event(event["id"])
        assert ledger is not None
        assert ledger.processed
        assert ledger.result == "processed"
        assert ledger.booking_id == pending.booking_id
        assert ledger.payment_id == payment.payment_id

    def test_unpaid_session_is_skipped(
        self,
        webhooks: WebhookProcessor,
        pending: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        booking_status: Callable[[str], BookingStatus],
    ) -> None:
        event = session_event(
            make_event, "checkout.session.completed", pending, payment_status="unpaid"
        )

        outcome = deliver(webhooks, event)

        assert outcome.result == ProcessingResult.SKIPPED
        assert booking_status(pending.booking_id) == BookingStatus.PENDING_PAYMENT

    def test_payment_succeeded_after_confirmation_marks_paid(
        self,
        webhooks: WebhookProcessor,
        paid: CheckoutResult,
        booking_status: Callable[[str], BookingStatus],
    ) -> None:
        assert booking_status(paid.booking_id) == BookingStatus.PAID


class TestCancellation:
    def test_expired_session_cancels_and_releases_nights(
        self,
        webhooks: WebhookProcessor,
        pending: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        booking_status: Callable[[str], BookingStatus],
        payments: PaymentService,
        db: DynamoDBService,
    ) -> None:
        assert holder_of(db, ROOM_ID, CHECK_IN) == pending.booking_id

        outcome = deliver(
            webhooks,
            session_event(make_event, "checkout.session.expired", pending, payment_intent=None),
        )

        assert outcome.result == ProcessingResult.PROCESSED
        assert booking_status(pending.booking_id) == BookingStatus.CANCELLED
        payment = payments.get_by_session_id(pending.session_id)
        assert payment is not None
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "Checkout session expired"
        assert holder_of(db, ROOM_ID, CHECK_IN) is None
        assert db.scan("resource-nights") == []

    def test_async_payment_failure_fails_booking(
        self,
        webhooks: WebhookProcessor,
        pending: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        booking_status: Callable[[str], BookingStatus],
    ) -> None:
        deliver(
            webhooks,
            session_event(make_event, "checkout.session.async_payment_failed", pending),
        )
        assert booking_status(pending.booking_id) == BookingStatus.FAILED

    def test_payment_failed_cancels_with_reason(
        self,
        webhooks: WebhookProcessor,
        pending: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        booking_status: Callable[[str], BookingStatus],
        payments: PaymentService,
    ) -> None:
        event = intent_event(
            make_event,
            "payment_intent.payment_failed",
            pending.booking_id,
            error_message="Your card was declined.",
        )

        outcome = deliver(webhooks, event)

        assert outcome.result == ProcessingResult.PROCESSED
        assert booking_status(pending.booking_id) == BookingStatus.CANCELLED
        payment = payments.get_by_transaction_id(PAYMENT_INTENT)
        assert payment is not None
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "Your card was declined."


class TestRefundsAndDisputes:
    def test_partial_refund_keeps_booking_paid(
        self,
        webhooks: WebhookProcessor,
        paid: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        booking_status: Callable[[str], BookingStatus],
        payments: PaymentService,
        db: DynamoDBService,
    ) -> None:
        outcome = deliver(webhooks, charge_refunded_event(make_event, 20000, False))

        assert outcome.result == ProcessingResult.PROCESSED
        assert booking_status(paid.booking_id) == BookingStatus.PAID
        payment = payments.get_by_transaction_id(PAYMENT_INTENT)
        assert payment is not None
        assert payment.refunded_amount == 20000
        assert payment.status == PaymentStatus.COMPLETED
        assert holder_of(db, ROOM_ID, CHECK_IN) == paid.booking_id

    def test_full_refund_refunds_booking_and_frees_nights(
        self,
        webhooks: WebhookProcessor,
        paid: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        booking_status: Callable[[str], BookingStatus],
        payments: PaymentService,
        db: DynamoDBService,
    ) -> None:
        deliver(webhooks, charge_refunded_event(make_event, TOTAL, True))

        assert booking_status(paid.booking_id) == BookingStatus.REFUNDED
        payment = payments.get_by_transaction_id(PAYMENT_INTENT)
        assert payment is not None
        assert payment.status == PaymentStatus.REFUNDED
        assert payment.refunded_amount == TOTAL
        assert holder_of(db, ROOM_ID, CHECK_IN) is None

    def test_dispute_is_escalated(
        self,
        webhooks: WebhookProcessor,
        paid: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        bookings: BookingRepository,
        audit: AuditLogService,
    ) -> None:
        event = make_event(
            "charge.dispute.created",
            {
                "id": "dp_1TestDispute",
                "object": "dispute",
                "payment_intent": PAYMENT_INTENT,
                "reason": "fraudulent",
                "metadata": {},
            },
        )

        outcome = deliver(webhooks, event)

        assert outcome.result == ProcessingResult.ESCALATED
        booking = bookings.get_booking(paid.booking_id, consistent_read=True)
        assert booking is not None
        assert booking.status == BookingStatus.PAID
        assert booking.review_required
        assert "dp_1TestDispute" in (booking.review_reason or "")
        (entry,) = audit.entries_by_action("manual_review")
        assert entry["resource_id"] == paid.booking_id
        assert entry["details"]["event_id"] == event["id"]


class TestOtherEvents:
    def test_invoice_events_are_logged(
        self, webhooks: WebhookProcessor, make_event: Callable[..., dict[str, Any]]
    ) -> None:
        event = make_event("invoice.payment_succeeded", {"id": "in_1Test", "object": "invoice"})

        outcome = deliver(webhooks, event)

        assert outcome.result == ProcessingResult.LOGGED
        ledger = webhooks.get_event(event["id"])
        assert ledger is not None and ledger.processed

    def test_unknown_types_are_acknowledged(
        self, webhooks: WebhookProcessor, make_event: Callable[..., dict[str, Any]]
    ) -> None:
        event = make_event("customer.created", {"id": "cus_1Test", "object": "customer"})

        outcome = deliver(webhooks, event)

        assert outcome.result == ProcessingResult.UNHANDLED
        ledger = webhooks.get_event(event["id"])
        assert ledger is not None
        assert ledger.processed
        assert ledger.result == "unhandled"


# === Idempotency ===


class TestIdempotency:
    def test_redelivery_is_a_duplicate(
        self,
        webhooks: WebhookProcessor,
        pending: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        bookings: BookingRepository,
    ) -> None:
        event = session_event(make_event, "checkout.session.completed", pending)
        deliver(webhooks, event)
        before = bookings.get_booking(pending.booking_id, consistent_read=True)

        outcome = deliver(webhooks, event)

        assert outcome.result == ProcessingResult.DUPLICATE
        assert bookings.get_booking(pending.booking_id, consistent_read=True) == before

    def test_concurrent_delivery_is_in_progress(
        self,
        webhooks: WebhookProcessor,
        pending: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        db: DynamoDBService,
        booking_status: Callable[[str], BookingStatus],
    ) -> None:
        event = session_event(make_event, "checkout.session.completed", pending)
        now = dt.datetime.now(dt.UTC)
        db.put_item(
            "stripe-webhook-events",
            {
                "event_id": event["id"],
                "event_type": event["type"],
                "payload": json.dumps(event),
                "processed": False,
                "attempts": 1,
                "lease_until": (now + dt.timedelta(minutes=5)).isoformat(),
                "created_at": now.isoformat(),
                "last_attempt_at": now.isoformat(),
            },
        )

        outcome = deliver(webhooks, event)

        assert outcome.result == ProcessingResult.IN_PROGRESS
        assert booking_status(pending.booking_id) == BookingStatus.PENDING_PAYMENT

    def test_expired_lease_is_taken_over(
        self,
        webhooks: WebhookProcessor,
        pending: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        db: DynamoDBService,
        booking_status: Callable[[str], BookingStatus],
    ) -> None:
        event = session_event(make_event, "checkout.session.completed", pending)
        earlier = dt.datetime.now(dt.UTC) - dt.timedelta(minutes=10)
        db.put_item(
            "stripe-webhook-events",
            {
                "event_id": event["id"],
                "event_type": event["type"],
                "payload": json.dumps(event),
                "processed": False,
                "attempts": 1,
                "lease_until": (earlier + dt.timedelta(minutes=1)).isoformat(),
                "created_at": earlier.isoformat(),
                "last_attempt_at": earlier.isoformat(),
            },
        )

        outcome = deliver(webhooks, event)

        assert outcome.result == ProcessingResult.PROCESSED
        assert booking_status(pending.booking_id) == BookingStatus.CONFIRMED
        ledger = webhooks.get_event(event["id"])
        assert ledger is not None
        assert ledger.attempts == 2

    def test_handler_error_releases_lease(
        self,
        webhooks: WebhookProcessor,
        pending: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        payments: PaymentService,
    ) -> None:
        event = session_event(make_event, "checkout.session.completed", pending)

        with patch.object(payments, "get_by_session_id", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                deliver(webhooks, event)

        ledger = webhooks.get_event(event["id"])
        assert ledger is not None
        assert not ledger.processed
        assert ledger.lease_until is not None
        assert ledger.lease_until <= dt.datetime.now(dt.UTC)

        # Stripe's retry goes through
        assert deliver(webhooks, event).result == ProcessingResult.PROCESSED


# === Ordering and terminal states ===


class TestOrdering:
    def test_payment_succeeded_before_session_completed(
        self,
        webhooks: WebhookProcessor,
        pending: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        booking_status: Callable[[str], BookingStatus],
        payments: PaymentService,
    ) -> None:
        first = deliver(
            webhooks, intent_event(make_event, "payment_intent.succeeded", pending.booking_id)
        )
        second = deliver(
            webhooks, session_event(make_event, "checkout.session.completed", pending)
        )

        assert first.result == ProcessingResult.PROCESSED
        assert second.result == ProcessingResult.NOOP
        assert booking_status(pending.booking_id) == BookingStatus.PAID
        payment = payments.get_by_transaction_id(PAYMENT_INTENT)
        assert payment is not None
        assert payment.status == PaymentStatus.COMPLETED

    def test_expiry_after_payment_is_rejected_and_escalated(
        self,
        webhooks: WebhookProcessor,
        paid: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        bookings: BookingRepository,
        payments: PaymentService,
        audit: AuditLogService,
        db: DynamoDBService,
    ) -> None:
        outcome = deliver(
            webhooks, session_event(make_event, "checkout.session.expired", paid)
        )

        assert outcome.result == ProcessingResult.REJECTED
        booking = bookings.get_booking(paid.booking_id, consistent_read=True)
        assert booking is not None
        assert booking.status == BookingStatus.PAID
        assert booking.review_required
        assert booking.review_reason == "checkout.session.expired requested paid -> cancelled"
        payment = payments.get_by_transaction_id(PAYMENT_INTENT)
        assert payment is not None
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.review_required
        assert holder_of(db, ROOM_ID, CHECK_IN) == paid.booking_id
        assert len(audit.entries_by_action("manual_review")) == 1

    def test_cancelled_booking_is_not_resurrected(
        self,
        webhooks: WebhookProcessor,
        pending: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        bookings: BookingRepository,
        payments: PaymentService,
    ) -> None:
        deliver(
            webhooks,
            session_event(make_event, "checkout.session.expired", pending, payment_intent=None),
        )

        outcome = deliver(
            webhooks, session_event(make_event, "checkout.session.completed", pending)
        )

        assert outcome.result == ProcessingResult.REJECTED
        booking = bookings.get_booking(pending.booking_id, consistent_read=True)
        assert booking is not None
        assert booking.status == BookingStatus.CANCELLED
        assert booking.review_required
        payment = payments.get_by_session_id(pending.session_id)
        assert payment is not None
        assert payment.status == PaymentStatus.FAILED


# === Deferral and replay ===


class TestDeferral:
    def test_unknown_payment_is_deferred(
        self,
        webhooks: WebhookProcessor,
        make_event: Callable[..., dict[str, Any]],
    ) -> None:
        event = intent_event(make_event, "payment_intent.succeeded", None, "pi_3Unknown")

        outcome = deliver(webhooks, event)

        assert outcome.result == ProcessingResult.DEFERRED
        assert outcome.result.is_retryable
        ledger = webhooks.get_event(event["id"])
        assert ledger is not None
        assert not ledger.processed

    def test_replay_applies_deferred_event(
        self,
        webhooks: WebhookProcessor,
        pending: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        booking_status: Callable[[str], BookingStatus],
    ) -> None:
        # No metadata and no PaymentIntent on the payment yet
        early = intent_event(make_event, "payment_intent.succeeded", None)
        assert deliver(webhooks, early).result == ProcessingResult.DEFERRED

        deliver(webhooks, session_event(make_event, "checkout.session.completed", pending))
        assert booking_status(pending.booking_id) == BookingStatus.CONFIRMED

        summary = webhooks.replay_unprocessed()

        assert summary.examined == 1
        (outcome,) = summary.outcomes
        assert outcome.event_id == early["id"]
        assert outcome.result == ProcessingResult.PROCESSED
        assert booking_status(pending.booking_id) == BookingStatus.PAID
        ledger = webhooks.get_event(early["id"])
        assert ledger is not None and ledger.processed

    def test_replay_skips_leased_events(
        self,
        webhooks: WebhookProcessor,
        make_event: Callable[..., dict[str, Any]],
        db: DynamoDBService,
    ) -> None:
        event = make_event("customer.created", {"id": "cus_1Test"})
        now = dt.datetime.now(dt.UTC)
        db.put_item(
            "stripe-webhook-events",
            {
                "event_id": event["id"],
                "event_type": event["type"],
                "payload": json.dumps(event),
                "processed": False,
                "attempts": 1,
                "lease_until": (now + dt.timedelta(minutes=5)).isoformat(),
                "created_at": now.isoformat(),
                "last_attempt_at": now.isoformat(),
            },
        )

        summary = webhooks.replay_unprocessed()

        assert summary.examined == 0
        assert summary.outcomes == []


# === Signature verification ===


class TestProcess:
    def test_signed_payload_is_processed(
        self,
        webhooks: WebhookProcessor,
        pending: CheckoutResult,
        make_event: Callable[..., dict[str, Any]],
        signed: Callable[[dict[str, Any]], tuple[bytes, str]],
        booking_status: Callable[[str], BookingStatus],
    ) -> None:
        payload, signature = signed(
            session_event(make_event, "checkout.session.completed", pending)
        )

        outcome = webhooks.process(payload, signature)

        assert outcome.result == ProcessingResult.PROCESSED
        assert booking_status(pending.booking_id) == BookingStatus.CONFIRMED

    def test_bad_signature(
        self,
        webhooks: WebhookProcessor,
        make_event: Callable[..., dict[str, Any]],
    ) -> None:
        payload = json.dumps(make_event("customer.created", {"id": "cus_1"})).encode("utf-8")

        with pytest.raises(BookingError) as exc_info:
            webhooks.process(payload, "t=1700000000,v1=deadbeef")

        assert exc_info.value.code == ErrorCode.SIGNATURE_ERROR
