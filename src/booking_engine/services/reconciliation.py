"""Payment reconciliation between the local ledger and Stripe.

The sweep compares each local payment that carries a PaymentIntent id with
Stripe's view of it and reports drift. With ``auto_correct`` it also fixes
amount, status and refund fields on the payment row, each update
conditioned on the value the sweep observed. Booking rows are never
touched; booking state only moves through webhooks.
"""

import datetime as dt
import logging
import time
import uuid
from typing import Any

from ..config import EngineSettings, get_settings
from ..models.enums import DiscrepancyType, PaymentStatus, Severity
from ..models.errors import BookingError, ErrorCode
from ..models.payment import GatewayPayment, Payment
from ..models.reconciliation import (
    Discrepancy,
    ReconciliationMetadata,
    ReconciliationParams,
    ReconciliationReport,
    ReconciliationSummary,
)
from .audit import SYSTEM_ACTOR, AuditLogService
from .gateway import PaymentGatewayError, StripeGateway
from .payment_service import PaymentService

logger = logging.getLogger(__name__)


def canonical_status(gateway_payment: GatewayPayment) -> PaymentStatus:
    """Translate a Stripe PaymentIntent status into the local vocabulary."""
    if gateway_payment.status == "succeeded":
        if gateway_payment.amount and gateway_payment.refunded_amount >= gateway_payment.amount:
            return PaymentStatus.REFUNDED
        return PaymentStatus.COMPLETED
    if gateway_payment.status == "canceled":
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


class ReconciliationSweep:
    """Detects (and optionally corrects) drift between payments and Stripe."""

    def __init__(
        self,
        payments: PaymentService,
        gateway: StripeGateway,
        audit: AuditLogService,
        settings: EngineSettings | None = None,
    ) -> None:
        self.payments = payments
        self.gateway = gateway
        self.audit = audit
        self.settings = settings or get_settings()

    def reconcile(
        self,
        params: ReconciliationParams | None = None,
        actor: str = SYSTEM_ACTOR,
    ) -> ReconciliationReport:
        """Run one sweep.

        Args:
            params: Window, limit and flags; unset values take configured defaults
            actor: Operator subject recorded in the audit log

        Returns:
            ReconciliationReport with summary, discrepancies and metadata

        Raises:
            BookingError: VALIDATION_ERROR for a limit above the configured
                maximum; GATEWAY_ERROR if listing gateway payments fails
        """
        params = params or ReconciliationParams()
        limit = params.limit or self.settings.reconciliation_default_limit
        if limit > self.settings.reconciliation_max_limit:
            raise BookingError(
                ErrorCode.VALIDATION_ERROR,
                {"limit": f"Must be at most {self.settings.reconciliation_max_limit}"},
            )

        started = time.monotonic()
        executed_at = dt.datetime.now(dt.UTC)
        date_to = params.date_to or executed_at
        date_from = params.date_from or date_to - dt.timedelta(
            days=self.settings.reconciliation_window_days
        )
        run_id = f"RCN-{uuid.uuid4().hex[:12].upper()}"

        discrepancies: list[Discrepancy] = []
        checked = 0
        calls = 0
        error: str | None = None

        logger.info(
            "Reconciliation %s: %s to %s, limit=%d, auto_correct=%s",
            run_id,
            date_from.isoformat(),
            date_to.isoformat(),
            limit,
            params.auto_correct,
        )
        try:
            local = self.payments.list_in_window(date_from, date_to, limit)
            for payment in local:
                checked += 1
                calls += 1
                discrepancies.extend(self._check_payment(payment, params.auto_correct))

            if params.include_orphans:
                orphans, list_calls = self._find_orphans(date_from, date_to, limit, local)
                calls += list_calls
                discrepancies.extend(orphans)
        except Exception as e:
            error = str(e)
            logger.error("Reconciliation %s failed: %s", run_id, e)
            raise
        finally:
            summary = ReconciliationSummary(
                total_payments_checked=checked,
                discrepancies_found=len(discrepancies),
                auto_corrected=sum(1 for d in discrepancies if d.auto_corrected),
                manual_review_required=sum(
                    1
                    for d in discrepancies
                    if d.severity == Severity.HIGH and not d.auto_corrected
                ),
                execution_time_ms=int((time.monotonic() - started) * 1000),
            )
            self.audit.append(
                "payment_reconciliation",
                "system",
                run_id,
                actor=actor,
                details={
                    "date_from": date_from.isoformat(),
                    "date_to": date_to.isoformat(),
                    "limit": limit,
                    "auto_correct": params.auto_correct,
                    "summary": summary.model_dump(),
                    "error": error,
                },
            )

        logger.info(
            "Reconciliation %s done: checked=%d found=%d corrected=%d manual=%d",
            run_id,
            summary.total_payments_checked,
            summary.discrepancies_found,
            summary.auto_corrected,
            summary.manual_review_required,
        )
        return ReconciliationReport(
            summary=summary,
            discrepancies=discrepancies,
            metadata=ReconciliationMetadata(
                run_id=run_id,
                date_from=date_from,
                date_to=date_to,
                limit=limit,
                auto_correct=params.auto_correct,
                execution_timestamp=executed_at,
                gateway_api_calls=calls,
            ),
        )

    def _check_payment(self, payment: Payment, auto_correct: bool) -> list[Discrepancy]:
        intent_id = payment.gateway_transaction_id or ""
        try:
            remote = self.gateway.retrieve_payment(intent_id)
            lookup_problem = "not found at the gateway"
        except PaymentGatewayError as e:
            remote = None
            lookup_problem = f"could not be retrieved ({e})"

        if remote is None:
            return [
                Discrepancy(
                    type=DiscrepancyType.MISSING_PAYMENT,
                    severity=Severity.HIGH,
                    booking_id=payment.booking_id,
                    gateway_payment_id=intent_id,
                    local_payment_id=payment.payment_id,
                    description=f"Payment intent {intent_id} {lookup_problem}",
                    suggested_action=(
                        "Investigate why the payment exists locally but not at the gateway"
                    ),
                )
            ]

        found: list[Discrepancy] = []

        if abs(remote.amount - payment.amount) > self.settings.amount_tolerance_minor:
            found.append(
                self._discrepancy(
                    payment,
                    remote,
                    DiscrepancyType.AMOUNT_MISMATCH,
                    Severity.HIGH,
                    "Amount mismatch",
                    "Update local payment amount to match the gateway",
                    "amount",
                    payment.amount,
                    remote.amount,
                    auto_correct,
                )
            )

        if remote.refunded_amount != payment.refunded_amount:
            found.append(
                self._discrepancy(
                    payment,
                    remote,
                    DiscrepancyType.REFUND_MISMATCH,
                    Severity.MEDIUM,
                    "Refund amount mismatch",
                    "Update local refunded amount to match the gateway",
                    "refunded_amount",
                    payment.refunded_amount,
                    remote.refunded_amount,
                    auto_correct,
                )
            )

        expected = canonical_status(remote)
        partially_refunded = (
            payment.status == PaymentStatus.REFUNDED
            and remote.status == "succeeded"
            and 0 < remote.refunded_amount < remote.amount
        )
        if expected != payment.status and not partially_refunded:
            found.append(
                self._discrepancy(
                    payment,
                    remote,
                    DiscrepancyType.STATUS_MISMATCH,
                    Severity.MEDIUM,
                    "Status mismatch",
                    "Update local payment status to match the gateway",
                    "status",
                    payment.status.value,
                    expected.value,
                    auto_correct,
                )
            )

        return found

    def _discrepancy(
        self,
        payment: Payment,
        remote: GatewayPayment,
        kind: DiscrepancyType,
        severity: Severity,
        title: str,
        action: str,
        attribute: str,
        local_value: Any,
        gateway_value: Any,
        auto_correct: bool,
    ) -> Discrepancy:
        corrected = False
        if auto_correct:
            corrected = self.payments.update_field_if(
                payment.payment_id, attribute, local_value, gateway_value
            )
            if corrected:
                logger.info(
                    "Corrected %s on %s: %s -> %s",
                    attribute,
                    payment.payment_id,
                    local_value,
                    gateway_value,
                )
            else:
                logger.warning(
                    "Skipped correcting %s on %s: value changed during the sweep",
                    attribute,
                    payment.payment_id,
                )

        return Discrepancy(
            type=kind,
            severity=severity,
            booking_id=payment.booking_id,
            gateway_payment_id=remote.payment_intent_id,
            local_payment_id=payment.payment_id,
            description=f"{title}: local={local_value}, gateway={gateway_value}",
            suggested_action=action,
            local_value=str(local_value),
            gateway_value=str(gateway_value),
            auto_corrected=corrected,
        )

    def _find_orphans(
        self,
        date_from: dt.datetime,
        date_to: dt.datetime,
        limit: int,
        local: list[Payment],
    ) -> tuple[list[Discrepancy], int]:
        """Succeeded gateway payments in the window with no local payment."""
        try:
            remote_payments, calls = self.gateway.list_payments(date_from, date_to, limit)
        except PaymentGatewayError as e:
            raise BookingError(ErrorCode.GATEWAY_ERROR) from e

        known = {p.gateway_transaction_id for p in local}
        orphans = []
        for remote in remote_payments:
            if remote.status != "succeeded" or remote.payment_intent_id in known:
                continue
            if self.payments.get_by_transaction_id(remote.payment_intent_id) is not None:
                continue
            orphans.append(
                Discrepancy(
                    type=DiscrepancyType.ORPHANED_GATEWAY_PAYMENT,
                    severity=Severity.HIGH,
                    booking_id=remote.metadata.get("booking_id"),
                    gateway_payment_id=remote.payment_intent_id,
                    description=(
                        f"Gateway payment {remote.payment_intent_id} of {remote.amount} "
                        f"{remote.currency} has no local payment record"
                    ),
                    suggested_action="Match the payment to a booking or refund it",
                    gateway_value=str(remote.amount),
                )
            )
        return orphans, calls
