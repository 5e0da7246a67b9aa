"""Checkout orchestration: reserve inventory, then open a payment session.

The local writes happen first, in one DynamoDB transaction that also claims
every (unit, night) lock. Stripe is only called after that commit; if the
session cannot be created, or cannot be linked back to the booking, the
reservation is rolled back by a compensating transaction.
"""

import datetime as dt
import logging
import uuid
from typing import Any, NamedTuple, assert_never

from botocore.exceptions import ClientError

from ..config import EngineSettings, get_settings
from ..models.booking import AddOnLineRecord, Booking, PromoApplication, ReservationRecord
from ..models.checkout import CheckoutRequest, CheckoutResult
from ..models.conflicts import ConflictCandidate
from ..models.enums import BookingStatus, ReservationKind
from ..models.errors import BookingError, ErrorCode, get_user_friendly_stripe_message
from ..models.line_items import AddOnLine, CampLine, RoomLine
from ..models.payment import Payment
from ..models.quote import Quote
from ..utils.logging import log_payment_operation
from .audit import AuditLogService
from .bookings import BookingRepository
from .catalog import CatalogService
from .conflicts import ConflictChecker
from .customers import CustomerService
from .dynamodb import MAX_TRANSACTION_ITEMS, DynamoDBService
from .gateway import PaymentGatewayError, StripeGateway
from .inventory import lock_items, release_items
from .payment_service import PaymentService
from .pricing import PricingEngine

logger = logging.getLogger(__name__)


class _Unit(NamedTuple):
    """A reservation row to write, derived from the selection."""

    kind: ReservationKind
    resource_id: str
    start_date: dt.date
    end_date: dt.date
    guest_count: int
    camp_session_id: str | None = None


class CheckoutOrchestrator:
    """Turns a checkout request into a draft booking and a Stripe session."""

    def __init__(
        self,
        db: DynamoDBService,
        customers: CustomerService,
        catalog: CatalogService,
        pricing: PricingEngine,
        conflicts: ConflictChecker,
        bookings: BookingRepository,
        payments: PaymentService,
        gateway: StripeGateway,
        audit: AuditLogService,
        settings: EngineSettings | None = None,
    ) -> None:
        self.db = db
        self.customers = customers
        self.catalog = catalog
        self.pricing = pricing
        self.conflicts = conflicts
        self.bookings = bookings
        self.payments = payments
        self.gateway = gateway
        self.audit = audit
        self.settings = settings or get_settings()

    def create_checkout(
        self,
        request: CheckoutRequest,
        quote: Quote | None = None,
    ) -> CheckoutResult:
        """Reserve the selection and open a Stripe Checkout session.

        Args:
            request: Customer, selection, promo code and redirect URLs
            quote: A quote previously shown to the customer; recomputed if stale

        Returns:
            CheckoutResult with the session URL

        Raises:
            BookingError: VALIDATION_ERROR, NOT_FOUND, CONFLICT, GATEWAY_ERROR
                (retryable; nothing was kept) or SERVER_ERROR
        """
        customer = self.customers.upsert_by_email(request.customer)

        if quote is None:
            quote = self.pricing.quote(request.selection, promo_code=request.promo_code)
        quote = self.pricing.ensure_fresh(quote)

        units = self._units_for(quote)
        if not any(unit.kind != ReservationKind.CAMP for unit in units):
            raise BookingError(
                ErrorCode.VALIDATION_ERROR,
                {"selection": "Selection must include a room or camp stay"},
            )
        self._reject_overlapping_units(units)
        warnings = list(quote.warnings) + self._precheck(units)

        booking_id = f"BKG-{uuid.uuid4().hex[:12].upper()}"
        now = dt.datetime.now(dt.UTC)
        booking = Booking(
            booking_id=booking_id,
            customer_id=customer.customer_id,
            resource_ids=[u.resource_id for u in units if u.kind != ReservationKind.CAMP],
            status=BookingStatus.DRAFT,
            subtotal=quote.subtotal,
            discounts_total=quote.discounts_total,
            taxes_total=quote.taxes_total,
            total_amount=quote.grand_total,
            currency=quote.currency,
            check_in_date=min(u.start_date for u in units),
            check_out_date=max(u.end_date for u in units),
            promo_code=quote.promo_applied.code if quote.promo_applied else None,
            quote_id=quote.quote_id,
            special_requests=request.special_requests,
            # Provisional; replaced by the session expiry once linked
            expires_at=now + dt.timedelta(minutes=self.settings.checkout_session_ttl_minutes),
            created_at=now,
            updated_at=now,
        )
        reservations, addon_lines, promo_application = self._child_rows(booking_id, units, quote)

        self._reserve(booking, reservations, addon_lines, promo_application)
        logger.info("Draft booking %s reserved %d unit(s)", booking_id, len(reservations))

        try:
            session = self.gateway.create_checkout_session(
                booking_id=booking_id,
                customer_id=customer.customer_id,
                customer_email=customer.email,
                amount=quote.grand_total,
                currency=quote.currency,
                description="; ".join(line.description for line in quote.lines)[:500],
                success_url=request.success_url,
                cancel_url=request.cancel_url,
                metadata={"quote_id": quote.quote_id},
            )
        except PaymentGatewayError as e:
            log_payment_operation(
                logger,
                "create_checkout_session",
                booking_id=booking_id,
                amount=quote.grand_total,
                error=str(e),
            )
            self._compensate(
                booking, reservations, addon_lines, promo_application, "session_failed", str(e)
            )
            raise BookingError(
                ErrorCode.GATEWAY_ERROR,
                {"reason": get_user_friendly_stripe_message(e.stripe_error_code)},
            ) from e

        payment = self.payments.new_pending_payment(
            booking_id=booking_id,
            amount=quote.grand_total,
            currency=quote.currency,
            checkout_session_id=session.session_id,
            payment_intent_id=session.payment_intent_id,
        )
        if not self._link_session(booking, payment, session.expires_at):
            try:
                self.gateway.expire_checkout_session(session.session_id)
            except PaymentGatewayError as e:
                logger.error("Could not expire session %s: %s", session.session_id, e)
            self._compensate(
                booking,
                reservations,
                addon_lines,
                promo_application,
                "link_failed",
                session.session_id,
            )
            raise BookingError(ErrorCode.SERVER_ERROR)

        log_payment_operation(
            logger,
            "create_checkout_session",
            payment_id=payment.payment_id,
            booking_id=booking_id,
            amount=payment.amount,
            status=payment.status.value,
            session_id=session.session_id,
        )
        return CheckoutResult(
            checkout_url=session.checkout_url,
            session_id=session.session_id,
            booking_id=booking_id,
            expires_at=session.expires_at,
            customer_email=customer.email,
            amount_total=quote.grand_total,
            currency=quote.currency,
            warnings=warnings,
        )

    def _units_for(self, quote: Quote) -> list[_Unit]:
        units: list[_Unit] = []
        for item in quote.selection:
            if isinstance(item, RoomLine):
                units.append(
                    _Unit(
                        ReservationKind.ROOM,
                        item.room_id,
                        item.check_in,
                        item.check_out,
                        item.guests,
                    )
                )
            elif isinstance(item, CampLine):
                session = self.catalog.require_camp_session(item.camp_session_id)
                start = item.check_in or session.start_date
                end = item.check_out or session.end_date
                units.extend(
                    _Unit(ReservationKind.BED, bed_id, start, end, 1, session.camp_session_id)
                    for bed_id in item.bed_ids
                )
                units.append(
                    _Unit(
                        ReservationKind.CAMP,
                        session.camp_session_id,
                        start,
                        end,
                        item.guests,
                        session.camp_session_id,
                    )
                )
            elif isinstance(item, AddOnLine):
                continue
            else:
                assert_never(item)
        return units

    @staticmethod
    def _reject_overlapping_units(units: list[_Unit]) -> None:
        """A selection may not reserve the same unit twice on one night."""
        held = [u for u in units if u.kind != ReservationKind.CAMP]
        for i, first in enumerate(held):
            for second in held[i + 1 :]:
                if (
                    first.resource_id == second.resource_id
                    and first.start_date < second.end_date
                    and second.start_date < first.end_date
                ):
                    raise BookingError(
                        ErrorCode.VALIDATION_ERROR,
                        {"selection": f"{first.resource_id} is selected twice for the same nights"},
                    )

    def _precheck(self, units: list[_Unit]) -> list[str]:
        """Advisory conflict check per unit; raises CONFLICT on the first hit."""
        warnings: list[str] = []
        for unit in units:
            if unit.kind == ReservationKind.CAMP:
                candidate = ConflictCandidate(
                    start_date=unit.start_date,
                    end_date=unit.end_date,
                    camp_session_id=unit.camp_session_id,
                    guest_count=unit.guest_count,
                )
            else:
                candidate = ConflictCandidate(
                    start_date=unit.start_date,
                    end_date=unit.end_date,
                    resource_ids=[unit.resource_id],
                )
            check = self.conflicts.check_conflicts(candidate)
            if check.has_conflict:
                raise BookingError(
                    ErrorCode.CONFLICT,
                    {
                        "resource_id": unit.resource_id,
                        "conflicts": [c.model_dump(mode="json") for c in check.conflicts],
                    },
                )
            warnings.extend(w for w in check.warnings if w not in warnings)
        return warnings

    def _child_rows(
        self,
        booking_id: str,
        units: list[_Unit],
        quote: Quote,
    ) -> tuple[list[ReservationRecord], list[AddOnLineRecord], PromoApplication | None]:
        reservations = [
            ReservationRecord(
                reservation_id=f"RES-{uuid.uuid4().hex[:12].upper()}",
                booking_id=booking_id,
                kind=unit.kind,
                resource_id=unit.resource_id,
                camp_session_id=unit.camp_session_id,
                start_date=unit.start_date,
                end_date=unit.end_date,
                guest_count=unit.guest_count,
            )
            for unit in units
        ]
        addon_lines = [
            AddOnLineRecord(
                line_id=f"ADL-{uuid.uuid4().hex[:12].upper()}",
                booking_id=booking_id,
                addon_id=line.reference_id,
                quantity=line.quantity,
                unit_price=line.unit_amount,
                total_price=line.amount,
            )
            for line in quote.lines
            if line.kind == "addon"
        ]
        promo = quote.promo_applied
        promo_application = (
            PromoApplication(
                application_id=f"PRA-{uuid.uuid4().hex[:12].upper()}",
                booking_id=booking_id,
                promo_code=promo.code,
                discount_type=promo.discount_type,
                discount_value=promo.value,
                discount_amount=promo.amount,
            )
            if promo
            else None
        )
        return reservations, addon_lines, promo_application

    def _reserve(
        self,
        booking: Booking,
        reservations: list[ReservationRecord],
        addon_lines: list[AddOnLineRecord],
        promo_application: PromoApplication | None,
    ) -> None:
        """Write the draft booking and claim its nights in one transaction."""
        items: list[dict[str, Any]] = []
        labels: list[str] = []

        items.append(
            self.db.tx_put(
                BookingRepository.BOOKINGS_TABLE,
                self.bookings.booking_to_item(booking),
                condition_expression="attribute_not_exists(booking_id)",
            )
        )
        labels.append("booking")

        for reservation in reservations:
            items.append(
                self.db.tx_put(
                    BookingRepository.RESERVATIONS_TABLE,
                    self.bookings.reservation_to_item(reservation),
                )
            )
            labels.append("reservation")
            if reservation.holds_inventory:
                locks = lock_items(
                    self.db,
                    reservation.resource_id,
                    reservation.start_date,
                    reservation.end_date,
                    booking.booking_id,
                )
                items.extend(locks)
                labels.extend([f"lock:{reservation.resource_id}"] * len(locks))

        for line in addon_lines:
            items.append(
                self.db.tx_put(
                    BookingRepository.ADDON_LINES_TABLE, self.bookings.addon_line_to_item(line)
                )
            )
            labels.append("addon")

        if promo_application:
            items.append(
                self.db.tx_put(
                    BookingRepository.PROMO_APPLICATIONS_TABLE,
                    self.bookings.promo_application_to_item(promo_application),
                )
            )
            labels.append("promo")
            items.append(
                self.db.tx_update(
                    CatalogService.PROMO_CODES_TABLE,
                    {"code": promo_application.promo_code},
                    "SET used_count = if_not_exists(used_count, :zero) + :one",
                    expression_attribute_values={":zero": 0, ":one": 1},
                    expression_attribute_names={"#code": "code"},
                    condition_expression=(
                        "attribute_exists(#code) AND (attribute_not_exists(max_uses) "
                        "OR attribute_not_exists(used_count) OR used_count < max_uses)"
                    ),
                )
            )
            labels.append("promo")

        if len(items) > MAX_TRANSACTION_ITEMS:
            raise BookingError(
                ErrorCode.VALIDATION_ERROR,
                {"selection": "Too many nights and units for a single booking; split it up"},
            )

        result = self.db.transact_write(items)
        if result.succeeded:
            return

        failed = [labels[i] for i in result.failed_indexes() if i < len(labels)]
        logger.warning("Reservation transaction for %s cancelled: %s", booking.booking_id, failed)
        if "TransactionConflict" in result.cancellation_reasons:
            # Another transaction touched the same rows; nothing is known to be held
            raise BookingError(
                ErrorCode.SERVER_ERROR,
                {"reason": "Concurrent update on the selected dates; retry the checkout"},
            )
        if "promo" in failed:
            raise BookingError(
                ErrorCode.VALIDATION_ERROR,
                {"promo_code": "This promo code is no longer available"},
            )
        lock = next((label for label in failed if label.startswith("lock:")), None)
        details: dict[str, Any] = {"reason": "Another booking holds these dates"}
        if lock:
            details["resource_id"] = lock.split(":", 1)[1]
        raise BookingError(ErrorCode.CONFLICT, details)

    def _link_session(self, booking: Booking, payment: Payment, expires_at: dt.datetime) -> bool:
        """Move the draft to pending_payment and record the pending payment."""
        items = [
            self.db.tx_update(
                BookingRepository.BOOKINGS_TABLE,
                {"booking_id": booking.booking_id},
                "SET #status = :pending, gateway_session_id = :sid, expires_at = :exp, "
                "active_payment_id = :pid, updated_at = :now",
                expression_attribute_names={"#status": "status"},
                expression_attribute_values={
                    ":pending": BookingStatus.PENDING_PAYMENT.value,
                    ":draft": BookingStatus.DRAFT.value,
                    ":sid": payment.gateway_session_id,
                    ":exp": expires_at.isoformat(),
                    ":pid": payment.payment_id,
                    ":now": dt.datetime.now(dt.UTC).isoformat(),
                },
                condition_expression="#status = :draft",
            ),
            self.db.tx_put(
                PaymentService.PAYMENTS_TABLE,
                self.payments.payment_to_item(payment),
                condition_expression="attribute_not_exists(payment_id)",
            ),
        ]
        try:
            result = self.db.transact_write(items)
        except ClientError as e:
            logger.error("Linking session for %s failed: %s", booking.booking_id, e)
            return False
        if not result.succeeded:
            logger.error(
                "Linking session for %s cancelled: %s",
                booking.booking_id,
                result.cancellation_reasons,
            )
        return result.succeeded

    def _compensate(
        self,
        booking: Booking,
        reservations: list[ReservationRecord],
        addon_lines: list[AddOnLineRecord],
        promo_application: PromoApplication | None,
        stage: str,
        reason: str,
    ) -> None:
        """Delete everything ``_reserve`` wrote and revert the promo counter."""
        items: list[dict[str, Any]] = [
            self.db.tx_delete(BookingRepository.BOOKINGS_TABLE, {"booking_id": booking.booking_id})
        ]
        for reservation in reservations:
            items.append(
                self.db.tx_delete(
                    BookingRepository.RESERVATIONS_TABLE,
                    {"reservation_id": reservation.reservation_id},
                )
            )
            if reservation.holds_inventory:
                items.extend(
                    release_items(
                        self.db,
                        reservation.resource_id,
                        reservation.start_date,
                        reservation.end_date,
                        booking.booking_id,
                    )
                )
        for line in addon_lines:
            items.append(
                self.db.tx_delete(BookingRepository.ADDON_LINES_TABLE, {"line_id": line.line_id})
            )
        if promo_application:
            items.append(
                self.db.tx_delete(
                    BookingRepository.PROMO_APPLICATIONS_TABLE,
                    {"application_id": promo_application.application_id},
                )
            )
            items.append(
                self.db.tx_update(
                    CatalogService.PROMO_CODES_TABLE,
                    {"code": promo_application.promo_code},
                    "SET used_count = used_count - :one",
                    expression_attribute_values={":one": 1, ":zero": 0},
                    condition_expression="used_count > :zero",
                )
            )

        rolled_back = False
        try:
            result = self.db.transact_write(items)
            rolled_back = result.succeeded
            if not rolled_back:
                logger.error(
                    "Compensation for %s cancelled: %s",
                    booking.booking_id,
                    result.cancellation_reasons,
                )
        except ClientError as e:
            logger.error("Compensation for %s failed: %s", booking.booking_id, e)
        finally:
            if rolled_back:
                logger.info("Compensated booking %s (%s)", booking.booking_id, stage)
            else:
                logger.warning(
                    "Draft %s left for the expiry reaper (expires %s)",
                    booking.booking_id,
                    booking.expires_at,
                )
            self._audit_compensation(booking, stage, reason, rolled_back)

    def _audit_compensation(
        self, booking: Booking, stage: str, reason: str, rolled_back: bool
    ) -> None:
        try:
            self.audit.append(
                "checkout_compensated",
                "booking",
                booking.booking_id,
                details={
                    "stage": stage,
                    "reason": reason,
                    "rolled_back": rolled_back,
                    "customer_id": booking.customer_id,
                    "amount": booking.total_amount,
                    "expires_at": booking.expires_at.isoformat() if booking.expires_at else None,
                },
            )
        except ClientError as e:
            logger.error("Could not audit compensation for %s: %s", booking.booking_id, e)
