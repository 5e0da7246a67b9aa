"""Payment ledger repository.

Payments are written inside the checkout and webhook transactions; this
service builds those records and provides the lookups the webhook
processor and the reconciliation sweep need.
"""

import datetime as dt
import uuid
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Attr

from ..models.enums import PaymentStatus
from ..models.payment import Payment
from .bookings import drop_none

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService


class PaymentService:
    """Service for reading and building payment ledger records."""

    PAYMENTS_TABLE = "payments"

    def __init__(self, db: "DynamoDBService") -> None:
        """Initialize payment service.

        Args:
            db: DynamoDB service instance
        """
        self.db = db

    def _generate_payment_id(self, prefix: str = "PAY") -> str:
        """Generate a unique payment ID like PAY-ABC123DEF456."""
        return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"

    def new_pending_payment(
        self,
        booking_id: str,
        amount: int,
        currency: str,
        checkout_session_id: str,
        payment_intent_id: str | None = None,
    ) -> Payment:
        """Build a pending payment record for a Stripe Checkout session.

        The record is not persisted here; checkout writes it in the same
        transaction that moves the booking to pending_payment.

        Args:
            booking_id: Booking being paid for
            amount: Payment amount in minor units
            currency: ISO-4217 code
            checkout_session_id: Stripe Checkout Session ID
            payment_intent_id: Stripe PaymentIntent ID (if already known)

        Returns:
            Payment with PENDING status
        """
        now = dt.datetime.now(dt.UTC)
        return Payment(
            payment_id=self._generate_payment_id(),
            booking_id=booking_id,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING,
            gateway_session_id=checkout_session_id,
            gateway_transaction_id=payment_intent_id,
            created_at=now,
            updated_at=now,
        )

    def get_payment(self, payment_id: str, consistent_read: bool = False) -> Payment | None:
        item = self.db.get_item(
            self.PAYMENTS_TABLE, {"payment_id": payment_id}, consistent_read=consistent_read
        )
        return self.item_to_payment(item) if item else None

    def get_by_session_id(self, session_id: str) -> Payment | None:
        """Find the payment created for a Stripe Checkout session."""
        items = self.db.query_by_gsi(
            self.PAYMENTS_TABLE, "session-index", "gateway_session_id", session_id
        )
        return self.item_to_payment(items[0]) if items else None

    def get_by_transaction_id(self, payment_intent_id: str) -> Payment | None:
        """Find the payment correlated to a Stripe PaymentIntent."""
        items = self.db.query_by_gsi(
            self.PAYMENTS_TABLE, "transaction-index", "gateway_transaction_id", payment_intent_id
        )
        return self.item_to_payment(items[0]) if items else None

    def get_payments_for_booking(self, booking_id: str) -> list[Payment]:
        items = self.db.query_by_gsi(
            self.PAYMENTS_TABLE, "booking-index", "booking_id", booking_id
        )
        payments = [self.item_to_payment(item) for item in items]
        return sorted(payments, key=lambda p: p.created_at)

    def list_in_window(
        self,
        date_from: dt.datetime,
        date_to: dt.datetime,
        limit: int,
    ) -> list[Payment]:
        """Payments created in a window that carry a PaymentIntent id.

        Args:
            date_from: Window start (inclusive)
            date_to: Window end (inclusive)
            limit: Maximum number of payments

        Returns:
            Payments ordered by creation time
        """
        items = self.db.scan(
            self.PAYMENTS_TABLE,
            filter_expression=Attr("created_at").between(
                date_from.isoformat(), date_to.isoformat()
            )
            & Attr("gateway_transaction_id").begins_with("pi_"),
            limit=limit,
        )
        payments = [self.item_to_payment(item) for item in items]
        return sorted(payments, key=lambda p: p.created_at)

    def update_field_if(
        self,
        payment_id: str,
        attribute: str,
        observed: Any,
        value: Any,
    ) -> bool:
        """Set one attribute only if it still holds the observed value.

        Args:
            payment_id: Payment to update
            attribute: Attribute name (amount, status, refunded_amount)
            observed: Value read before deciding to update
            value: New value

        Returns:
            True if updated, False if the attribute changed in the meantime
        """
        updated = self.db.update_item(
            self.PAYMENTS_TABLE,
            {"payment_id": payment_id},
            "SET #field = :value, updated_at = :now",
            {
                ":value": value,
                ":observed": observed,
                ":now": dt.datetime.now(dt.UTC).isoformat(),
            },
            expression_attribute_names={"#field": attribute},
            condition_expression="#field = :observed",
        )
        return updated is not None

    # Conversion helpers

    def payment_to_item(self, payment: Payment) -> dict[str, Any]:
        return drop_none(
            {
                "payment_id": payment.payment_id,
                "booking_id": payment.booking_id,
                "amount": payment.amount,
                "currency": payment.currency,
                "status": payment.status.value,
                "gateway_session_id": payment.gateway_session_id,
                "gateway_transaction_id": payment.gateway_transaction_id,
                "refunded_amount": payment.refunded_amount,
                "failure_reason": payment.failure_reason,
                "payment_date": payment.payment_date.isoformat() if payment.payment_date else None,
                "review_required": payment.review_required,
                "review_reason": payment.review_reason,
                "created_at": payment.created_at.isoformat(),
                "updated_at": payment.updated_at.isoformat(),
            }
        )

    def item_to_payment(self, item: dict[str, Any]) -> Payment:
        payment_date = item.get("payment_date")
        return Payment(
            payment_id=item["payment_id"],
            booking_id=item["booking_id"],
            amount=int(item["amount"]),
            currency=item["currency"],
            status=PaymentStatus(item["status"]),
            gateway_session_id=item.get("gateway_session_id"),
            gateway_transaction_id=item.get("gateway_transaction_id"),
            refunded_amount=int(item.get("refunded_amount", 0)),
            failure_reason=item.get("failure_reason"),
            payment_date=dt.datetime.fromisoformat(payment_date) if payment_date else None,
            review_required=bool(item.get("review_required", False)),
            review_reason=item.get("review_reason"),
            created_at=dt.datetime.fromisoformat(item["created_at"]),
            updated_at=dt.datetime.fromisoformat(item["updated_at"]),
        )
