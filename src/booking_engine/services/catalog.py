"""Read access to catalog tables: rooms, beds, camp sessions, add-ons,
promo codes and calendar events."""

import datetime as dt
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Attr

from ..models.catalog import AddOn, Bed, CalendarEvent, CampSession, PromoCode, Room
from ..models.enums import DiscountType
from ..models.errors import BookingError, ErrorCode

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService


class CatalogService:
    """Typed lookups over the catalog tables."""

    ROOMS_TABLE = "rooms"
    BEDS_TABLE = "beds"
    CAMP_SESSIONS_TABLE = "camp-sessions"
    ADDONS_TABLE = "addons"
    PROMO_CODES_TABLE = "promo-codes"
    CALENDAR_EVENTS_TABLE = "calendar-events"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    def get_room(self, room_id: str) -> Room | None:
        item = self.db.get_item(self.ROOMS_TABLE, {"room_id": room_id})
        return self._item_to_room(item) if item else None

    def get_bed(self, bed_id: str) -> Bed | None:
        item = self.db.get_item(self.BEDS_TABLE, {"bed_id": bed_id})
        return self._item_to_bed(item) if item else None

    def get_camp_session(self, camp_session_id: str) -> CampSession | None:
        item = self.db.get_item(self.CAMP_SESSIONS_TABLE, {"camp_session_id": camp_session_id})
        return self._item_to_camp_session(item) if item else None

    def get_addon(self, addon_id: str) -> AddOn | None:
        item = self.db.get_item(self.ADDONS_TABLE, {"addon_id": addon_id})
        return self._item_to_addon(item) if item else None

    def get_promo_code(self, code: str) -> PromoCode | None:
        """Look up a promo code; codes are stored upper-case."""
        item = self.db.get_item(self.PROMO_CODES_TABLE, {"code": code.strip().upper()})
        return self._item_to_promo(item) if item else None

    def require_room(self, room_id: str) -> Room:
        """Get a room or raise NOT_FOUND."""
        room = self.get_room(room_id)
        if room is None:
            raise BookingError(ErrorCode.NOT_FOUND, {"room_id": room_id})
        return room

    def require_bed(self, bed_id: str) -> Bed:
        bed = self.get_bed(bed_id)
        if bed is None:
            raise BookingError(ErrorCode.NOT_FOUND, {"bed_id": bed_id})
        return bed

    def require_camp_session(self, camp_session_id: str) -> CampSession:
        session = self.get_camp_session(camp_session_id)
        if session is None:
            raise BookingError(ErrorCode.NOT_FOUND, {"camp_session_id": camp_session_id})
        return session

    def require_addon(self, addon_id: str) -> AddOn:
        addon = self.get_addon(addon_id)
        if addon is None:
            raise BookingError(ErrorCode.NOT_FOUND, {"addon_id": addon_id})
        return addon

    def camp_sessions_overlapping(self, start: dt.date, end: dt.date) -> list[CampSession]:
        """Camp sessions whose [start, end) range overlaps the given one."""
        items = self.db.scan(
            self.CAMP_SESSIONS_TABLE,
            filter_expression=Attr("start_date").lt(end.isoformat())
            & Attr("end_date").gt(start.isoformat()),
        )
        return [self._item_to_camp_session(item) for item in items]

    def calendar_events_overlapping(self, start: dt.date, end: dt.date) -> list[CalendarEvent]:
        """Calendar events whose [start, end) range overlaps the given one."""
        items = self.db.scan(
            self.CALENDAR_EVENTS_TABLE,
            filter_expression=Attr("start_date").lt(end.isoformat())
            & Attr("end_date").gt(start.isoformat()),
        )
        return [self._item_to_calendar_event(item) for item in items]

    # Conversion helpers

    def _item_to_room(self, item: dict[str, Any]) -> Room:
        return Room(
            room_id=item["room_id"],
            name=item["name"],
            base_rate=int(item["base_rate"]),
            currency=item.get("currency", "EUR"),
            max_guests=int(item.get("max_guests", 2)),
            base_occupancy=int(item.get("base_occupancy", 2)),
            extra_guest_fee=int(item.get("extra_guest_fee", 0)),
        )

    def _item_to_bed(self, item: dict[str, Any]) -> Bed:
        return Bed(
            bed_id=item["bed_id"],
            room_id=item["room_id"],
            name=item["name"],
            price_modifier=int(item.get("price_modifier", 0)),
        )

    def _item_to_camp_session(self, item: dict[str, Any]) -> CampSession:
        return CampSession(
            camp_session_id=item["camp_session_id"],
            name=item["name"],
            start_date=dt.date.fromisoformat(item["start_date"]),
            end_date=dt.date.fromisoformat(item["end_date"]),
            nightly_rate=int(item["nightly_rate"]),
            currency=item.get("currency", "EUR"),
            capacity=int(item["capacity"]),
        )

    def _item_to_addon(self, item: dict[str, Any]) -> AddOn:
        max_quantity = item.get("max_quantity")
        return AddOn(
            addon_id=item["addon_id"],
            name=item["name"],
            price=int(item["price"]),
            currency=item.get("currency", "EUR"),
            max_quantity=int(max_quantity) if max_quantity is not None else None,
        )

    def _item_to_promo(self, item: dict[str, Any]) -> PromoCode:
        def _date(key: str) -> dt.date | None:
            value = item.get(key)
            return dt.date.fromisoformat(value) if value else None

        def _int(key: str) -> int | None:
            value = item.get(key)
            return int(value) if value is not None else None

        return PromoCode(
            code=item["code"],
            discount_type=DiscountType(item["discount_type"]),
            value=Decimal(str(item["value"])),
            valid_from=_date("valid_from"),
            valid_until=_date("valid_until"),
            max_uses=_int("max_uses"),
            used_count=int(item.get("used_count", 0)),
            min_subtotal=_int("min_subtotal"),
            is_active=bool(item.get("is_active", True)),
        )

    def _item_to_calendar_event(self, item: dict[str, Any]) -> CalendarEvent:
        return CalendarEvent(
            event_id=item["event_id"],
            title=item.get("title", "Calendar event"),
            start_date=dt.date.fromisoformat(item["start_date"]),
            end_date=dt.date.fromisoformat(item["end_date"]),
            resource_ids=list(item.get("resource_ids", [])),
            blocks_inventory=bool(item.get("blocks_inventory", True)),
        )
