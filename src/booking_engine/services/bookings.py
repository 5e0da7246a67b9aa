"""Booking repository: bookings and their child rows."""

import datetime as dt
from typing import TYPE_CHECKING, Any, Iterable

from boto3.dynamodb.conditions import Attr, Key

from ..models.booking import AddOnLineRecord, Booking, PromoApplication, ReservationRecord
from ..models.enums import BookingStatus, DiscountType, ReservationKind

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService


def drop_none(item: dict[str, Any]) -> dict[str, Any]:
    """Remove unset attributes; DynamoDB index keys may not be NULL."""
    return {key: value for key, value in item.items() if value is not None}


class BookingRepository:
    """Reads and item conversion for bookings, reservations, add-on lines
    and promo applications."""

    BOOKINGS_TABLE = "bookings"
    RESERVATIONS_TABLE = "reservations"
    ADDON_LINES_TABLE = "addon-lines"
    PROMO_APPLICATIONS_TABLE = "promo-applications"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    def get_booking(self, booking_id: str, consistent_read: bool = False) -> Booking | None:
        item = self.db.get_item(
            self.BOOKINGS_TABLE, {"booking_id": booking_id}, consistent_read=consistent_read
        )
        return self.item_to_booking(item) if item else None

    def get_bookings(self, booking_ids: Iterable[str]) -> dict[str, Booking]:
        """Batch-load bookings keyed by id."""
        keys = [{"booking_id": booking_id} for booking_id in sorted(set(booking_ids))]
        items = self.db.batch_get(self.BOOKINGS_TABLE, keys)
        return {item["booking_id"]: self.item_to_booking(item) for item in items}

    def reservations_for_booking(self, booking_id: str) -> list[ReservationRecord]:
        items = self.db.query_by_gsi(
            self.RESERVATIONS_TABLE, "booking-index", "booking_id", booking_id
        )
        return [self.item_to_reservation(item) for item in items]

    def reservations_overlapping(
        self,
        resource_id: str,
        start: dt.date,
        end: dt.date,
    ) -> list[ReservationRecord]:
        """Reservation rows on a resource whose [start, end) overlaps the range.

        The index sort key bounds ``start_date < end``; the filter keeps rows
        with ``end_date > start``.
        """
        items = self.db.query_by_gsi(
            self.RESERVATIONS_TABLE,
            "resource-index",
            "resource_id",
            resource_id,
            sort_key_condition=Key("start_date").lt(end.isoformat()),
            filter_expression=Attr("end_date").gt(start.isoformat()),
        )
        return [self.item_to_reservation(item) for item in items]

    def addon_lines_for_booking(self, booking_id: str) -> list[AddOnLineRecord]:
        items = self.db.query_by_gsi(
            self.ADDON_LINES_TABLE, "booking-index", "booking_id", booking_id
        )
        return [self.item_to_addon_line(item) for item in items]

    def promo_applications_for_booking(self, booking_id: str) -> list[PromoApplication]:
        items = self.db.query_by_gsi(
            self.PROMO_APPLICATIONS_TABLE, "booking-index", "booking_id", booking_id
        )
        return [self.item_to_promo_application(item) for item in items]

    # Conversion helpers

    def booking_to_item(self, booking: Booking) -> dict[str, Any]:
        return drop_none(
            {
                "booking_id": booking.booking_id,
                "customer_id": booking.customer_id,
                "resource_ids": list(booking.resource_ids),
                "status": booking.status.value,
                "subtotal": booking.subtotal,
                "discounts_total": booking.discounts_total,
                "taxes_total": booking.taxes_total,
                "total_amount": booking.total_amount,
                "currency": booking.currency,
                "check_in_date": booking.check_in_date.isoformat(),
                "check_out_date": booking.check_out_date.isoformat(),
                "promo_code": booking.promo_code,
                "quote_id": booking.quote_id,
                "special_requests": booking.special_requests,
                "gateway_session_id": booking.gateway_session_id,
                "active_payment_id": booking.active_payment_id,
                "expires_at": booking.expires_at.isoformat() if booking.expires_at else None,
                "review_required": booking.review_required,
                "review_reason": booking.review_reason,
                "created_at": booking.created_at.isoformat(),
                "updated_at": booking.updated_at.isoformat(),
            }
        )

    def item_to_booking(self, item: dict[str, Any]) -> Booking:
        expires_at = item.get("expires_at")
        return Booking(
            booking_id=item["booking_id"],
            customer_id=item["customer_id"],
            resource_ids=[str(r) for r in item.get("resource_ids", [])],
            status=BookingStatus(item["status"]),
            subtotal=int(item["subtotal"]),
            discounts_total=int(item.get("discounts_total", 0)),
            taxes_total=int(item.get("taxes_total", 0)),
            total_amount=int(item["total_amount"]),
            currency=item["currency"],
            check_in_date=dt.date.fromisoformat(item["check_in_date"]),
            check_out_date=dt.date.fromisoformat(item["check_out_date"]),
            promo_code=item.get("promo_code"),
            quote_id=item.get("quote_id"),
            special_requests=item.get("special_requests"),
            gateway_session_id=item.get("gateway_session_id"),
            active_payment_id=item.get("active_payment_id"),
            expires_at=dt.datetime.fromisoformat(expires_at) if expires_at else None,
            review_required=bool(item.get("review_required", False)),
            review_reason=item.get("review_reason"),
            created_at=dt.datetime.fromisoformat(item["created_at"]),
            updated_at=dt.datetime.fromisoformat(item["updated_at"]),
        )

    def reservation_to_item(self, reservation: ReservationRecord) -> dict[str, Any]:
        return drop_none(
            {
                "reservation_id": reservation.reservation_id,
                "booking_id": reservation.booking_id,
                "kind": reservation.kind.value,
                "resource_id": reservation.resource_id,
                "camp_session_id": reservation.camp_session_id,
                "start_date": reservation.start_date.isoformat(),
                "end_date": reservation.end_date.isoformat(),
                "guest_count": reservation.guest_count,
            }
        )

    def item_to_reservation(self, item: dict[str, Any]) -> ReservationRecord:
        return ReservationRecord(
            reservation_id=item["reservation_id"],
            booking_id=item["booking_id"],
            kind=ReservationKind(item["kind"]),
            resource_id=item["resource_id"],
            camp_session_id=item.get("camp_session_id"),
            start_date=dt.date.fromisoformat(item["start_date"]),
            end_date=dt.date.fromisoformat(item["end_date"]),
            guest_count=int(item.get("guest_count", 1)),
        )

    def addon_line_to_item(self, line: AddOnLineRecord) -> dict[str, Any]:
        return {
            "line_id": line.line_id,
            "booking_id": line.booking_id,
            "addon_id": line.addon_id,
            "quantity": line.quantity,
            "unit_price": line.unit_price,
            "total_price": line.total_price,
        }

    def item_to_addon_line(self, item: dict[str, Any]) -> AddOnLineRecord:
        return AddOnLineRecord(
            line_id=item["line_id"],
            booking_id=item["booking_id"],
            addon_id=item["addon_id"],
            quantity=int(item["quantity"]),
            unit_price=int(item["unit_price"]),
            total_price=int(item["total_price"]),
        )

    def promo_application_to_item(self, application: PromoApplication) -> dict[str, Any]:
        return {
            "application_id": application.application_id,
            "booking_id": application.booking_id,
            "promo_code": application.promo_code,
            "discount_type": application.discount_type.value,
            "discount_value": application.discount_value,
            "discount_amount": application.discount_amount,
        }

    def item_to_promo_application(self, item: dict[str, Any]) -> PromoApplication:
        return PromoApplication(
            application_id=item["application_id"],
            booking_id=item["booking_id"],
            promo_code=item["promo_code"],
            discount_type=DiscountType(item["discount_type"]),
            discount_value=item["discount_value"],
            discount_amount=int(item["discount_amount"]),
        )
