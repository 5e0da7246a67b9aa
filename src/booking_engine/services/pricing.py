"""Pricing engine: deterministic quotes for a selection of line items.

All arithmetic is on integer minor units. Rates (percent promos, taxes) go
through ``apply_rate`` so rounding is explicit and configurable.
"""

import datetime as dt
import logging
import uuid
from decimal import Decimal
from typing import assert_never

from ..config import EngineSettings, get_settings
from ..models.catalog import PromoCode
from ..models.enums import DiscountType
from ..models.errors import BookingError, ErrorCode
from ..models.line_items import AddOnLine, CampLine, LineItem, RoomLine
from ..models.quote import DiscountLine, Quote, QuoteLine, TaxLine
from ..utils.money import apply_rate
from .catalog import CatalogService

logger = logging.getLogger(__name__)


class PricingEngine:
    """Computes quotes from catalog prices, promo codes and tax rules.

    Usage:
        engine = PricingEngine(catalog)
        quote = engine.quote(
            [RoomLine(room_id="ROOM-OCEAN-1", check_in=d1, check_out=d2, guests=2)],
            promo_code="SUMMER25",
        )
    """

    def __init__(self, catalog: CatalogService, settings: EngineSettings | None = None) -> None:
        self.catalog = catalog
        self.settings = settings or get_settings()

    def quote(
        self,
        selection: list[LineItem],
        promo_code: str | None = None,
        check_in: dt.date | None = None,
        check_out: dt.date | None = None,
        now: dt.datetime | None = None,
    ) -> Quote:
        """Price a selection.

        Args:
            selection: Room, camp and add-on lines
            promo_code: Optional promo code; an unusable code becomes a warning
            check_in: Stay start shown on the quote (defaults to the earliest line)
            check_out: Stay end shown on the quote (defaults to the latest line)
            now: Calculation time (defaults to the current time)

        Returns:
            A Quote valid for the configured TTL

        Raises:
            BookingError: VALIDATION_ERROR for bad quantities, dates or mixed
                currencies; NOT_FOUND for unknown catalog ids
        """
        if not selection:
            raise BookingError(
                ErrorCode.VALIDATION_ERROR, {"selection": "At least one item is required"}
            )

        calculated_at = now or dt.datetime.now(dt.UTC)
        lines: list[QuoteLine] = []
        currencies: set[str] = set()
        ranges: list[tuple[dt.date, dt.date]] = []
        warnings: list[str] = []

        for item in selection:
            if isinstance(item, RoomLine):
                line, currency = self._price_room(item)
                lines.append(line)
                ranges.append((item.check_in, item.check_out))
            elif isinstance(item, CampLine):
                camp_lines, currency, stay = self._price_camp(item)
                lines.extend(camp_lines)
                ranges.append(stay)
            elif isinstance(item, AddOnLine):
                line, currency = self._price_addon(item)
                lines.append(line)
            else:
                assert_never(item)
            currencies.add(currency)

        if len(currencies) > 1:
            raise BookingError(
                ErrorCode.VALIDATION_ERROR,
                {"currency": f"Selection mixes currencies: {', '.join(sorted(currencies))}"},
            )
        currency = currencies.pop() if currencies else self.settings.currency

        subtotal = sum(line.amount for line in lines)

        discounts: list[DiscountLine] = []
        if promo_code:
            discount = self._apply_promo(promo_code, subtotal, calculated_at.date(), warnings)
            if discount is not None:
                discounts.append(discount)
        discounts_total = sum(d.amount for d in discounts)

        taxable = subtotal - discounts_total
        taxes = [
            TaxLine(
                name=rule.name,
                rate=rule.rate,
                amount=apply_rate(
                    taxable,
                    rule.rate,
                    increment=self.settings.tax_rounding_increment,
                    mode=self.settings.tax_rounding_mode,
                ),
            )
            for rule in self.settings.tax_rules
        ]
        taxes_total = sum(t.amount for t in taxes)

        quote = Quote(
            quote_id=f"QTE-{uuid.uuid4().hex[:12].upper()}",
            currency=currency,
            lines=lines,
            subtotal=subtotal,
            discounts=discounts,
            discounts_total=discounts_total,
            taxes=taxes,
            taxes_total=taxes_total,
            grand_total=subtotal - discounts_total + taxes_total,
            warnings=warnings,
            check_in=check_in or (min(start for start, _ in ranges) if ranges else None),
            check_out=check_out or (max(end for _, end in ranges) if ranges else None),
            calculated_at=calculated_at,
            valid_until=calculated_at + dt.timedelta(minutes=self.settings.quote_ttl_minutes),
            selection=list(selection),
            promo_code=promo_code,
            requested_check_in=check_in,
            requested_check_out=check_out,
        )
        logger.info(
            "Quote %s: subtotal=%d discounts=%d taxes=%d total=%d %s",
            quote.quote_id,
            subtotal,
            discounts_total,
            taxes_total,
            quote.grand_total,
            currency,
        )
        return quote

    def ensure_fresh(self, quote: Quote, now: dt.datetime | None = None) -> Quote:
        """Return the quote, or a recomputed one if it has expired."""
        if not quote.is_expired(now):
            return quote
        logger.info("Quote %s expired at %s, recomputing", quote.quote_id, quote.valid_until)
        return self.quote(
            quote.selection,
            promo_code=quote.promo_code,
            check_in=quote.requested_check_in,
            check_out=quote.requested_check_out,
            now=now,
        )

    def _price_room(self, item: RoomLine) -> tuple[QuoteLine, str]:
        room = self.catalog.require_room(item.room_id)
        if item.guests > room.max_guests:
            raise BookingError(
                ErrorCode.VALIDATION_ERROR,
                {
                    "room_id": room.room_id,
                    "guests": f"{item.guests} guests exceeds the maximum of {room.max_guests}",
                },
            )

        extra_guests = max(0, item.guests - room.base_occupancy)
        nightly = room.base_rate + room.extra_guest_fee * extra_guests
        line = QuoteLine(
            kind="room",
            reference_id=room.room_id,
            description=f"{room.name}, {item.nights} night(s)",
            quantity=1,
            nights=item.nights,
            unit_amount=nightly,
            amount=nightly * item.nights,
        )
        return line, room.currency

    def _price_camp(self, item: CampLine) -> tuple[list[QuoteLine], str, tuple[dt.date, dt.date]]:
        session = self.catalog.require_camp_session(item.camp_session_id)
        start = item.check_in or session.start_date
        end = item.check_out or session.end_date
        if start < session.start_date or end > session.end_date or end <= start:
            raise BookingError(
                ErrorCode.VALIDATION_ERROR,
                {
                    "camp_session_id": session.camp_session_id,
                    "dates": (
                        f"Stay must lie within the session "
                        f"({session.start_date} to {session.end_date})"
                    ),
                },
            )

        nights = (end - start).days
        lines = []
        for bed_id in item.bed_ids:
            bed = self.catalog.require_bed(bed_id)
            nightly = max(0, session.nightly_rate + bed.price_modifier)
            lines.append(
                QuoteLine(
                    kind="camp",
                    reference_id=bed.bed_id,
                    description=f"{session.name}, {bed.name}",
                    quantity=1,
                    nights=nights,
                    unit_amount=nightly,
                    amount=nightly * nights,
                )
            )
        return lines, session.currency, (start, end)

    def _price_addon(self, item: AddOnLine) -> tuple[QuoteLine, str]:
        addon = self.catalog.require_addon(item.addon_id)
        if addon.max_quantity is not None and item.quantity > addon.max_quantity:
            raise BookingError(
                ErrorCode.VALIDATION_ERROR,
                {
                    "addon_id": addon.addon_id,
                    "quantity": f"At most {addon.max_quantity} allowed",
                },
            )
        line = QuoteLine(
            kind="addon",
            reference_id=addon.addon_id,
            description=addon.name,
            quantity=item.quantity,
            unit_amount=addon.price,
            amount=addon.price * item.quantity,
        )
        return line, addon.currency

    def _apply_promo(
        self,
        code: str,
        subtotal: int,
        today: dt.date,
        warnings: list[str],
    ) -> DiscountLine | None:
        promo = self.catalog.get_promo_code(code)
        problem = promo_problem(promo, subtotal, today)
        if promo is None or problem:
            warnings.append(f"Promo code {code.strip().upper()} {problem}; no discount applied")
            logger.info("Promo code %s not applied: %s", code, problem)
            return None

        if promo.discount_type == DiscountType.PERCENTAGE:
            amount = apply_rate(subtotal, promo.value / Decimal(100))
        else:
            amount = int(promo.value)
        amount = min(amount, subtotal)

        return DiscountLine(
            code=promo.code,
            discount_type=promo.discount_type,
            value=promo.value,
            amount=amount,
        )


def promo_problem(promo: PromoCode | None, subtotal: int, today: dt.date) -> str | None:
    """Why a promo code cannot be used, or None if it can."""
    if promo is None:
        return "is not valid"
    if not promo.is_active:
        return "is not active"
    if promo.valid_from and today < promo.valid_from:
        return "is not valid yet"
    if promo.valid_until and today > promo.valid_until:
        return "has expired"
    if promo.max_uses is not None and promo.used_count >= promo.max_uses:
        return "has reached its usage limit"
    if promo.min_subtotal is not None and subtotal < promo.min_subtotal:
        return "requires a higher order total"
    return None
