"""Operator-initiated refunds.

A refund is requested at Stripe only; the booking and payment rows change
when the resulting ``charge.refunded`` webhook is processed.
"""

import logging

from ..models.enums import BookingStatus, PaymentStatus
from ..models.errors import BookingError, ErrorCode, get_user_friendly_stripe_message
from ..models.refund import RefundRequest, RefundResult
from ..utils.logging import log_payment_operation
from .audit import AuditLogService
from .bookings import BookingRepository
from .gateway import PaymentGatewayError, StripeGateway
from .payment_service import PaymentService

logger = logging.getLogger(__name__)


class RefundService:
    """Creates Stripe refunds for paid bookings."""

    def __init__(
        self,
        bookings: BookingRepository,
        payments: PaymentService,
        gateway: StripeGateway,
        audit: AuditLogService,
    ) -> None:
        self.bookings = bookings
        self.payments = payments
        self.gateway = gateway
        self.audit = audit

    def refund_booking(self, booking_id: str, request: RefundRequest, actor: str) -> RefundResult:
        """Refund all or part of a booking's payment.

        Args:
            booking_id: Booking to refund
            request: Amount (defaults to the remaining refundable amount),
                reason and notes
            actor: Operator subject, recorded in metadata and the audit log

        Returns:
            RefundResult; the booking status is unchanged until the webhook arrives

        Raises:
            BookingError: NOT_FOUND, VALIDATION_ERROR or GATEWAY_ERROR
        """
        booking = self.bookings.get_booking(booking_id, consistent_read=True)
        if booking is None:
            raise BookingError(ErrorCode.NOT_FOUND, {"booking_id": booking_id})
        if booking.status != BookingStatus.PAID:
            raise BookingError(
                ErrorCode.VALIDATION_ERROR,
                {
                    "booking_id": booking_id,
                    "status": f"Booking is {booking.status.value}, not paid",
                },
            )

        payment = (
            self.payments.get_payment(booking.active_payment_id, consistent_read=True)
            if booking.active_payment_id
            else None
        )
        if (
            payment is None
            or payment.status != PaymentStatus.COMPLETED
            or not payment.gateway_transaction_id
        ):
            raise BookingError(
                ErrorCode.VALIDATION_ERROR,
                {"booking_id": booking_id, "payment": "No completed payment to refund"},
            )

        refundable = payment.amount - payment.refunded_amount
        amount = request.amount if request.amount is not None else refundable
        if refundable <= 0 or amount > refundable:
            raise BookingError(
                ErrorCode.VALIDATION_ERROR,
                {"amount": f"Refundable amount is {max(refundable, 0)}"},
            )

        try:
            refund = self.gateway.create_refund(
                payment_intent_id=payment.gateway_transaction_id,
                amount=amount,
                reason=request.reason.stripe_reason,
                metadata={
                    "booking_id": booking_id,
                    "payment_id": payment.payment_id,
                    "reason": request.reason.value,
                    "requested_by": actor,
                },
                idempotency_key=(
                    f"refund_{payment.payment_id}_{payment.refunded_amount}_{amount}"
                ),
            )
        except PaymentGatewayError as e:
            log_payment_operation(
                logger,
                "refund",
                payment_id=payment.payment_id,
                booking_id=booking_id,
                amount=amount,
                error=str(e),
            )
            raise BookingError(
                ErrorCode.GATEWAY_ERROR,
                {"reason": get_user_friendly_stripe_message(e.stripe_error_code)},
            ) from e

        log_payment_operation(
            logger,
            "refund",
            payment_id=payment.payment_id,
            booking_id=booking_id,
            amount=amount,
            status=refund.status,
            refund_id=refund.refund_id,
        )
        self.audit.append(
            "refund_requested",
            "booking",
            booking_id,
            actor=actor,
            details={
                "refund_id": refund.refund_id,
                "payment_id": payment.payment_id,
                "amount": amount,
                "reason": request.reason.value,
                "notes": request.notes,
            },
        )
        return RefundResult(
            refund_id=refund.refund_id,
            booking_id=booking_id,
            payment_id=payment.payment_id,
            amount_refunded=amount,
            refundable_remaining=refundable - amount,
            currency=payment.currency,
            gateway_status=refund.status,
            booking_status=booking.status,
        )
