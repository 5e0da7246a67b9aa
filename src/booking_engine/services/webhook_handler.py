"""Webhook processing for Stripe events.

Business logic for webhook deliveries, separate from HTTP routing:

- Every delivery is claimed in the ``stripe-webhook-events`` ledger with an
  insert-if-absent put and a short processing lease. A processed event is a
  duplicate; an unprocessed one whose lease is held by another delivery is
  reported as in progress.
- Event types are dispatched through a handler map over WebhookEventKind.
  Types outside the enum are acknowledged and marked processed.
- An applied effect (booking status, payment fields, night-lock release and
  the ledger's processed flag) commits as a single transaction, with the
  booking update conditioned on the status observed before the change.
- Transitions the lifecycle does not allow are never written. The booking
  and payment are flagged for manual review instead.
"""

import datetime as dt
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from boto3.dynamodb.conditions import Attr

from ..config import EngineSettings, get_settings
from ..models.booking import Booking
from ..models.enums import BookingStatus, PaymentStatus, ProcessingResult, WebhookEventKind
from ..models.errors import BookingError, ErrorCode
from ..models.payment import Payment
from ..models.webhook import ReplaySummary, WebhookEvent, WebhookOutcome
from ..utils.logging import log_booking_transition, log_webhook_event
from .audit import AuditLogService
from .bookings import BookingRepository
from .dynamodb import DynamoDBService
from .gateway import PaymentGatewayError, StripeGateway
from .inventory import release_items
from .payment_service import PaymentService
from .state_machine import TransitionDecision, plan_transition

logger = logging.getLogger(__name__)


class _Claim(str, Enum):
    ACQUIRED = "acquired"
    DUPLICATE = "duplicate"
    IN_PROGRESS = "in_progress"


@dataclass
class _Effect:
    """What an event asks for once its booking and payment are resolved."""

    booking: Booking
    payment: Payment | None
    target: BookingStatus | None
    payment_fields: dict[str, Any] = field(default_factory=dict)


def _now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def _set_clause(fields: dict[str, Any], prefix: str) -> tuple[str, dict[str, str], dict[str, Any]]:
    """Build "SET #a = :a, ..." with placeholders for every attribute."""
    parts, names, values = [], {}, {}
    for i, (attr, value) in enumerate(fields.items()):
        names[f"#{prefix}{i}"] = attr
        values[f":{prefix}{i}"] = value
        parts.append(f"#{prefix}{i} = :{prefix}{i}")
    return "SET " + ", ".join(parts), names, values


class WebhookProcessor:
    """Processes verified Stripe events against the booking and payment tables.

    Usage:
        processor = WebhookProcessor(db, bookings, payments, gateway, audit)
        outcome = processor.process(request_body, stripe_signature)
    """

    WEBHOOK_EVENTS_TABLE = "stripe-webhook-events"

    def __init__(
        self,
        db: DynamoDBService,
        bookings: BookingRepository,
        payments: PaymentService,
        gateway: StripeGateway,
        audit: AuditLogService,
        settings: EngineSettings | None = None,
    ) -> None:
        self.db = db
        self.bookings = bookings
        self.payments = payments
        self.gateway = gateway
        self.audit = audit
        self.settings = settings or get_settings()

        self._handlers: dict[WebhookEventKind, Callable[[str, dict[str, Any]], WebhookOutcome]] = {
            WebhookEventKind.CHECKOUT_COMPLETED: self._on_checkout_completed,
            WebhookEventKind.CHECKOUT_EXPIRED: self._on_checkout_expired,
            WebhookEventKind.CHECKOUT_ASYNC_PAYMENT_FAILED: self._on_checkout_async_failed,
            WebhookEventKind.PAYMENT_SUCCEEDED: self._on_payment_succeeded,
            WebhookEventKind.PAYMENT_FAILED: self._on_payment_failed,
            WebhookEventKind.CHARGE_REFUNDED: self._on_charge_refunded,
            WebhookEventKind.DISPUTE_CREATED: self._on_dispute_created,
            WebhookEventKind.INVOICE_PAYMENT_SUCCEEDED: self._on_invoice_event,
            WebhookEventKind.INVOICE_PAYMENT_FAILED: self._on_invoice_event,
        }
        missing = set(WebhookEventKind) - set(self._handlers)
        if missing:
            names = sorted(kind.value for kind in missing)
            raise RuntimeError(f"No webhook handler registered for: {names}")

    # Entry points

    def process(self, payload: bytes, signature: str) -> WebhookOutcome:
        """Verify and process one delivery.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header value

        Returns:
            WebhookOutcome describing what happened

        Raises:
            BookingError: SIGNATURE_ERROR if the signature or payload is invalid
        """
        try:
            event = self.gateway.verify_webhook_signature(payload, signature)
        except PaymentGatewayError as e:
            raise BookingError(ErrorCode.SIGNATURE_ERROR) from e
        return self.process_event(event, payload.decode("utf-8"))

    def process_event(self, event: dict[str, Any], raw_payload: str) -> WebhookOutcome:
        """Claim and dispatch an already-verified event."""
        event_id = event["id"]
        event_type = event["type"]

        claim = self._claim(event_id, event_type, raw_payload)
        if claim is _Claim.DUPLICATE:
            outcome = WebhookOutcome(
                event_id=event_id,
                event_type=event_type,
                result=ProcessingResult.DUPLICATE,
                message="Event already processed",
            )
            log_webhook_event(logger, event_type, event_id, result=outcome.result.value)
            return outcome
        if claim is _Claim.IN_PROGRESS:
            outcome = WebhookOutcome(
                event_id=event_id,
                event_type=event_type,
                result=ProcessingResult.IN_PROGRESS,
                message="Event is being processed by another delivery",
            )
            log_webhook_event(logger, event_type, event_id, result=outcome.result.value)
            return outcome

        return self._dispatch(event_id, event_type, event)

    def replay_unprocessed(self, limit: int = 25) -> ReplaySummary:
        """Re-dispatch stored payloads of unprocessed events whose lease expired.

        Args:
            limit: Maximum number of ledger rows to examine

        Returns:
            ReplaySummary with one outcome per replayed event
        """
        now = _now()
        rows = self.db.scan(
            self.WEBHOOK_EVENTS_TABLE,
            filter_expression=Attr("processed").eq(False) & Attr("lease_until").lt(now.isoformat()),
            limit=limit,
        )
        summary = ReplaySummary(examined=len(rows))
        for row in rows:
            ledger = self._item_to_event(row)
            if not self._take_lease(ledger.event_id, now):
                continue
            event = json.loads(ledger.payload)
            summary.outcomes.append(self._dispatch(ledger.event_id, ledger.event_type, event))
        logger.info(
            "Replayed %d of %d unprocessed webhook events", len(summary.outcomes), summary.examined
        )
        return summary

    def get_event(self, event_id: str) -> WebhookEvent | None:
        item = self.db.get_item(
            self.WEBHOOK_EVENTS_TABLE, {"event_id": event_id}, consistent_read=True
        )
        return self._item_to_event(item) if item else None

    # Ledger

    def _claim(self, event_id: str, event_type: str, raw_payload: str) -> _Claim:
        now = _now()
        lease_until = now + dt.timedelta(seconds=self.settings.webhook_lease_seconds)
        created = self.db.put_item(
            self.WEBHOOK_EVENTS_TABLE,
            {
                "event_id": event_id,
                "event_type": event_type,
                "payload": raw_payload,
                "payload_hash": self.gateway.compute_payload_hash(raw_payload.encode("utf-8")),
                "processed": False,
                "attempts": 1,
                "lease_until": lease_until.isoformat(),
                "created_at": now.isoformat(),
                "last_attempt_at": now.isoformat(),
            },
            condition_expression="attribute_not_exists(event_id)",
        )
        if created:
            return _Claim.ACQUIRED

        existing = self.db.get_item(
            self.WEBHOOK_EVENTS_TABLE, {"event_id": event_id}, consistent_read=True
        )
        if existing is not None and existing.get("processed"):
            return _Claim.DUPLICATE
        if self._take_lease(event_id, now):
            return _Claim.ACQUIRED
        return _Claim.IN_PROGRESS

    def _take_lease(self, event_id: str, now: dt.datetime) -> bool:
        """Take over an unprocessed event whose lease has expired."""
        lease_until = now + dt.timedelta(seconds=self.settings.webhook_lease_seconds)
        taken = self.db.update_item(
            self.WEBHOOK_EVENTS_TABLE,
            {"event_id": event_id},
            "SET attempts = attempts + :one, lease_until = :lease, last_attempt_at = :now",
            {
                ":one": 1,
                ":lease": lease_until.isoformat(),
                ":now": now.isoformat(),
                ":false": False,
            },
            expression_attribute_names={"#processed": "processed"},
            condition_expression="#processed = :false AND lease_until < :now",
        )
        return taken is not None

    def _release_lease(self, event_id: str) -> None:
        """Let the next delivery (or replay) retry immediately."""
        self.db.update_item(
            self.WEBHOOK_EVENTS_TABLE,
            {"event_id": event_id},
            "SET lease_until = :now",
            {":now": _now().isoformat(), ":false": False},
            expression_attribute_names={"#processed": "processed"},
            condition_expression="#processed = :false",
        )

    def _ledger_done_item(
        self,
        event_id: str,
        result: ProcessingResult,
        booking_id: str | None = None,
        payment_id: str | None = None,
    ) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "processed": True,
            "result": result.value,
            "processed_at": _now().isoformat(),
        }
        if booking_id:
            fields["booking_id"] = booking_id
        if payment_id:
            fields["payment_id"] = payment_id
        expression, names, values = _set_clause(fields, "l")
        names["#processed"] = "processed"
        values[":false"] = False
        return self.db.tx_update(
            self.WEBHOOK_EVENTS_TABLE,
            {"event_id": event_id},
            expression,
            expression_attribute_values=values,
            expression_attribute_names=names,
            condition_expression="#processed = :false",
        )

    def _finish(
        self,
        event_id: str,
        event_type: str,
        result: ProcessingResult,
        message: str,
        booking_id: str | None = None,
        payment_id: str | None = None,
    ) -> WebhookOutcome:
        """Mark the event processed without touching any other table."""
        outcome = self.db.transact_write(
            [self._ledger_done_item(event_id, result, booking_id, payment_id)]
        )
        if not outcome.succeeded:
            logger.warning("Ledger row %s was already marked processed", event_id)
        return WebhookOutcome(
            event_id=event_id,
            event_type=event_type,
            result=result,
            booking_id=booking_id,
            payment_id=payment_id,
            message=message,
        )

    # Dispatch

    def _dispatch(self, event_id: str, event_type: str, event: dict[str, Any]) -> WebhookOutcome:
        kind = WebhookEventKind.parse(event_type)
        try:
            if kind is None:
                outcome = self._finish(
                    event_id,
                    event_type,
                    ProcessingResult.UNHANDLED,
                    f"Event type {event_type} is not handled",
                )
            else:
                outcome = self._handlers[kind](event_id, event)
        except Exception:
            self._release_lease(event_id)
            log_webhook_event(logger, event_type, event_id, result="error", error="handler raised")
            raise

        if outcome.result.is_retryable:
            self._release_lease(event_id)
        log_webhook_event(
            logger,
            event_type,
            event_id,
            booking_id=outcome.booking_id,
            payment_id=outcome.payment_id,
            result=outcome.result.value,
            error=outcome.message if outcome.result.is_retryable else None,
        )
        return outcome

    def _deferred(self, event_id: str, event: dict[str, Any], message: str) -> WebhookOutcome:
        return WebhookOutcome(
            event_id=event_id,
            event_type=event["type"],
            result=ProcessingResult.DEFERRED,
            message=message,
        )

    # Correlation

    def _resolve_by_session(self, session: dict[str, Any]) -> tuple[Booking | None, Payment | None]:
        payment = self.payments.get_by_session_id(session["id"])
        if payment is None:
            return self._resolve_by_metadata(session)
        return self.bookings.get_booking(payment.booking_id, consistent_read=True), payment

    def _resolve_by_intent(
        self, payment_intent_id: str | None, metadata: dict[str, Any] | None
    ) -> tuple[Booking | None, Payment | None]:
        payment = (
            self.payments.get_by_transaction_id(payment_intent_id) if payment_intent_id else None
        )
        if payment is None:
            return self._resolve_by_metadata({"metadata": metadata or {}})
        return self.bookings.get_booking(payment.booking_id, consistent_read=True), payment

    def _resolve_by_metadata(self, obj: dict[str, Any]) -> tuple[Booking | None, Payment | None]:
        booking_id = (obj.get("metadata") or {}).get("booking_id")
        if not booking_id:
            return None, None
        booking = self.bookings.get_booking(booking_id, consistent_read=True)
        if booking is None or not booking.active_payment_id:
            return booking, None
        return booking, self.payments.get_payment(booking.active_payment_id, consistent_read=True)

    # Handlers

    def _on_checkout_completed(self, event_id: str, event: dict[str, Any]) -> WebhookOutcome:
        session = event["data"]["object"]
        if session.get("payment_status") != "paid":
            return self._finish(
                event_id,
                event["type"],
                ProcessingResult.SKIPPED,
                f"Session payment_status is {session.get('payment_status')}",
            )

        booking, payment = self._resolve_by_session(session)
        if booking is None or payment is None:
            return self._deferred(
                event_id, event, f"No booking or payment for session {session['id']}"
            )

        fields: dict[str, Any] = {"status": PaymentStatus.COMPLETED.value}
        if payment.payment_date is None:
            fields["payment_date"] = _now().isoformat()
        if session.get("payment_intent"):
            fields["gateway_transaction_id"] = session["payment_intent"]
        effect = _Effect(booking, payment, BookingStatus.CONFIRMED, fields)
        return self._apply(event_id, event, effect)

    def _on_checkout_expired(self, event_id: str, event: dict[str, Any]) -> WebhookOutcome:
        session = event["data"]["object"]
        booking, payment = self._resolve_by_session(session)
        if booking is None or payment is None:
            return self._deferred(
                event_id, event, f"No booking or payment for session {session['id']}"
            )
        fields = {
            "status": PaymentStatus.FAILED.value,
            "failure_reason": "Checkout session expired",
        }
        effect = _Effect(booking, payment, BookingStatus.CANCELLED, fields)
        return self._apply(event_id, event, effect)

    def _on_checkout_async_failed(self, event_id: str, event: dict[str, Any]) -> WebhookOutcome:
        session = event["data"]["object"]
        booking, payment = self._resolve_by_session(session)
        if booking is None or payment is None:
            return self._deferred(
                event_id, event, f"No booking or payment for session {session['id']}"
            )
        fields = {
            "status": PaymentStatus.FAILED.value,
            "failure_reason": "Asynchronous payment failed",
        }
        effect = _Effect(booking, payment, BookingStatus.FAILED, fields)
        return self._apply(event_id, event, effect)

    def _on_payment_succeeded(self, event_id: str, event: dict[str, Any]) -> WebhookOutcome:
        intent = event["data"]["object"]
        booking, payment = self._resolve_by_intent(intent["id"], intent.get("metadata"))
        if booking is None or payment is None:
            return self._deferred(event_id, event, f"No booking or payment for {intent['id']}")

        fields: dict[str, Any] = {
            "status": PaymentStatus.COMPLETED.value,
            "gateway_transaction_id": intent["id"],
        }
        if payment.payment_date is None:
            fields["payment_date"] = _now().isoformat()
        effect = _Effect(booking, payment, BookingStatus.PAID, fields)
        return self._apply(event_id, event, effect)

    def _on_payment_failed(self, event_id: str, event: dict[str, Any]) -> WebhookOutcome:
        intent = event["data"]["object"]
        booking, payment = self._resolve_by_intent(intent["id"], intent.get("metadata"))
        if booking is None or payment is None:
            return self._deferred(event_id, event, f"No booking or payment for {intent['id']}")

        last_error = intent.get("last_payment_error") or {}
        fields = {
            "status": PaymentStatus.FAILED.value,
            "gateway_transaction_id": intent["id"],
            "failure_reason": last_error.get("message") or "Payment failed",
        }
        effect = _Effect(booking, payment, BookingStatus.CANCELLED, fields)
        return self._apply(event_id, event, effect)

    def _on_charge_refunded(self, event_id: str, event: dict[str, Any]) -> WebhookOutcome:
        charge = event["data"]["object"]
        booking, payment = self._resolve_by_intent(
            charge.get("payment_intent"), charge.get("metadata")
        )
        if booking is None or payment is None:
            return self._deferred(
                event_id, event, f"No booking or payment for charge {charge['id']}"
            )

        refunded = int(charge.get("amount_refunded") or 0)
        fully_refunded = bool(charge.get("refunded")) or refunded >= payment.amount
        fields: dict[str, Any] = {"refunded_amount": refunded}
        if fully_refunded:
            fields["status"] = PaymentStatus.REFUNDED.value
        target = BookingStatus.REFUNDED if fully_refunded else None
        return self._apply(event_id, event, _Effect(booking, payment, target, fields))

    def _on_dispute_created(self, event_id: str, event: dict[str, Any]) -> WebhookOutcome:
        dispute = event["data"]["object"]
        booking, payment = self._resolve_by_intent(
            dispute.get("payment_intent"), dispute.get("metadata")
        )
        if booking is None or payment is None:
            return self._deferred(
                event_id, event, f"No booking or payment for dispute {dispute['id']}"
            )

        reason = f"Dispute {dispute['id']} opened ({dispute.get('reason', 'unknown')})"
        return self._escalate(event_id, event, booking, payment, reason, ProcessingResult.ESCALATED)

    def _on_invoice_event(self, event_id: str, event: dict[str, Any]) -> WebhookOutcome:
        invoice = event["data"]["object"]
        logger.info(
            "Invoice event %s for %s has no booking effect", event["type"], invoice.get("id")
        )
        return self._finish(
            event_id, event["type"], ProcessingResult.LOGGED, "Invoice events are logged only"
        )

    # Effects

    def _apply(self, event_id: str, event: dict[str, Any], effect: _Effect) -> WebhookOutcome:
        booking, payment, target = effect.booking, effect.payment, effect.target
        decision = (
            plan_transition(booking.status, target)
            if target is not None
            else TransitionDecision.NOOP
        )

        if target is not None and decision is TransitionDecision.REJECT:
            log_booking_transition(
                logger,
                booking.booking_id,
                booking.status.value,
                target.value,
                applied=False,
                source=event_id,
            )
            reason = (
                f"{event['type']} requested {booking.status.value} -> {target.value}"
            )
            return self._escalate(
                event_id, event, booking, payment, reason, ProcessingResult.REJECTED
            )

        now = _now().isoformat()
        items: list[dict[str, Any]] = []

        if target is not None and decision is TransitionDecision.APPLY:
            items.append(
                self.db.tx_update(
                    BookingRepository.BOOKINGS_TABLE,
                    {"booking_id": booking.booking_id},
                    "SET #status = :target, updated_at = :now",
                    expression_attribute_names={"#status": "status"},
                    expression_attribute_values={
                        ":target": target.value,
                        ":observed": booking.status.value,
                        ":now": now,
                    },
                    condition_expression="#status = :observed",
                )
            )
            if target.is_terminal:
                items.extend(self._lock_release_items(booking.booking_id))

        if payment is not None and effect.payment_fields:
            fields = {**effect.payment_fields, "updated_at": now}
            expression, names, values = _set_clause(fields, "p")
            items.append(
                self.db.tx_update(
                    PaymentService.PAYMENTS_TABLE,
                    {"payment_id": payment.payment_id},
                    expression,
                    expression_attribute_values=values,
                    expression_attribute_names=names,
                    condition_expression="attribute_exists(payment_id)",
                )
            )

        result = (
            ProcessingResult.PROCESSED
            if decision is TransitionDecision.APPLY or target is None
            else ProcessingResult.NOOP
        )
        items.append(
            self._ledger_done_item(
                event_id, result, booking.booking_id, payment.payment_id if payment else None
            )
        )

        outcome = self.db.transact_write(items)
        if not outcome.succeeded:
            logger.warning(
                "Effect transaction for %s cancelled: %s", event_id, outcome.cancellation_reasons
            )
            return self._deferred(event_id, event, "Concurrent update; will retry")

        if target is not None and decision is TransitionDecision.APPLY:
            log_booking_transition(
                logger,
                booking.booking_id,
                booking.status.value,
                target.value,
                applied=True,
                source=event_id,
            )
        return WebhookOutcome(
            event_id=event_id,
            event_type=event["type"],
            result=result,
            booking_id=booking.booking_id,
            payment_id=payment.payment_id if payment else None,
            message=(
                f"Booking {booking.status.value} -> {target.value}"
                if decision is TransitionDecision.APPLY and target
                else "Payment updated"
            ),
        )

    def _lock_release_items(self, booking_id: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        for row in self.bookings.reservations_for_booking(booking_id):
            if row.holds_inventory:
                items.extend(
                    release_items(
                        self.db, row.resource_id, row.start_date, row.end_date, booking_id
                    )
                )
        return items

    def _escalate(
        self,
        event_id: str,
        event: dict[str, Any],
        booking: Booking,
        payment: Payment | None,
        reason: str,
        result: ProcessingResult,
    ) -> WebhookOutcome:
        """Flag booking and payment for manual review and close the event."""
        now = _now().isoformat()
        flag_values = {":true": True, ":reason": reason, ":now": now}
        items = [
            self.db.tx_update(
                BookingRepository.BOOKINGS_TABLE,
                {"booking_id": booking.booking_id},
                "SET review_required = :true, review_reason = :reason, updated_at = :now",
                expression_attribute_values=flag_values,
            )
        ]
        if payment is not None:
            items.append(
                self.db.tx_update(
                    PaymentService.PAYMENTS_TABLE,
                    {"payment_id": payment.payment_id},
                    "SET review_required = :true, review_reason = :reason, updated_at = :now",
                    expression_attribute_values=flag_values,
                )
            )
        items.append(
            self._ledger_done_item(
                event_id, result, booking.booking_id, payment.payment_id if payment else None
            )
        )

        outcome = self.db.transact_write(items)
        if not outcome.succeeded:
            logger.warning(
                "Escalation transaction for %s cancelled: %s",
                event_id,
                outcome.cancellation_reasons,
            )
            return self._deferred(event_id, event, "Concurrent update; will retry")

        self.audit.append(
            "manual_review",
            "booking",
            booking.booking_id,
            details={
                "event_id": event_id,
                "event_type": event["type"],
                "booking_status": booking.status.value,
                "payment_id": payment.payment_id if payment else None,
                "reason": reason,
            },
        )
        return WebhookOutcome(
            event_id=event_id,
            event_type=event["type"],
            result=result,
            booking_id=booking.booking_id,
            payment_id=payment.payment_id if payment else None,
            message=reason,
        )

    def _item_to_event(self, item: dict[str, Any]) -> WebhookEvent:
        def _ts(key: str) -> dt.datetime | None:
            value = item.get(key)
            return dt.datetime.fromisoformat(value) if value else None

        return WebhookEvent(
            event_id=item["event_id"],
            event_type=item["event_type"],
            payload=item["payload"],
            processed=bool(item.get("processed", False)),
            attempts=int(item.get("attempts", 1)),
            lease_until=_ts("lease_until"),
            result=item.get("result"),
            booking_id=item.get("booking_id"),
            payment_id=item.get("payment_id"),
            created_at=dt.datetime.fromisoformat(item["created_at"]),
            last_attempt_at=dt.datetime.fromisoformat(item["last_attempt_at"]),
            processed_at=_ts("processed_at"),
        )
