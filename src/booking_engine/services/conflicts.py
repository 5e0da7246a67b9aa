"""Conflict checking for bookings, camp sessions and calendar events.

All date ranges are half-open ``[start, end)``: a departure on day X and an
arrival on day X do not conflict. The checks here are advisory; the
per-night lock rows written with a booking are what actually prevent
double-booking.
"""

import datetime as dt
import logging
from typing import Callable, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from ..config import ConflictFailurePolicy, EngineSettings, get_settings
from ..models.booking import ReservationRecord
from ..models.conflicts import (
    ConflictCandidate,
    ConflictCheck,
    ConflictDetail,
    ResourceAvailability,
)
from ..models.enums import CandidateKind, ConflictType, ReservationKind
from ..models.errors import BookingError, ErrorCode
from .bookings import BookingRepository
from .catalog import CatalogService

logger = logging.getLogger(__name__)

CHECK_FAILED_WARNING = "Unable to check for conflicts. Please verify manually."

T = TypeVar("T")


def intervals_overlap(
    start_a: dt.date, end_a: dt.date, start_b: dt.date, end_b: dt.date
) -> bool:
    """Half-open interval overlap."""
    return start_a < end_b and start_b < end_a


class ConflictChecker:
    """Validates a candidate range against reservations, calendar events and
    camp sessions."""

    def __init__(
        self,
        bookings: BookingRepository,
        catalog: CatalogService,
        settings: EngineSettings | None = None,
    ) -> None:
        self.bookings = bookings
        self.catalog = catalog
        self.settings = settings or get_settings()

    @property
    def failure_policy(self) -> ConflictFailurePolicy:
        return self.settings.conflict_failure_policy

    def check_conflicts(self, candidate: ConflictCandidate) -> ConflictCheck:
        """Report everything that overlaps the candidate.

        Args:
            candidate: Range, kind and resources to validate

        Returns:
            ConflictCheck with one ConflictDetail per overlapping item and any
            warnings (capacity excess, failed sub-checks under fail-open)

        Raises:
            BookingError: SERVER_ERROR when a datastore read fails and the
                policy is fail-closed
        """
        result = ConflictCheck()

        for resource_id in candidate.resource_ids:
            rows = self._guarded(
                result,
                "reservations",
                lambda rid=resource_id: self._live_reservations(
                    rid, candidate.start_date, candidate.end_date, candidate.exclude_id
                ),
                [],
            )
            result.conflicts.extend(
                ConflictDetail(
                    type=ConflictType.RESERVATION,
                    reference_id=row.booking_id,
                    title=f"Booking {row.booking_id}",
                    resource_id=row.resource_id,
                    start_date=row.start_date,
                    end_date=row.end_date,
                )
                for row in rows
            )

        result.conflicts.extend(
            self._guarded(result, "calendar events", lambda: self._event_conflicts(candidate), [])
        )

        if candidate.kind == CandidateKind.CAMP_SESSION:
            result.conflicts.extend(
                self._guarded(
                    result, "camp sessions", lambda: self._session_conflicts(candidate), []
                )
            )
        if candidate.camp_session_id or (
            candidate.kind == CandidateKind.CAMP_SESSION and candidate.capacity is not None
        ):
            warning = self._guarded(
                result, "camp capacity", lambda: self._capacity_warning(candidate), None
            )
            if warning:
                result.warnings.append(warning)

        result.has_conflict = bool(result.conflicts)
        if result.has_conflict:
            logger.info(
                "Conflict check found %d conflict(s) for %s %s..%s",
                len(result.conflicts),
                candidate.kind.value,
                candidate.start_date,
                candidate.end_date,
            )
        return result

    def check_resource_availability(
        self,
        resource_ids: list[str],
        start_date: dt.date,
        end_date: dt.date,
        exclude_id: str | None = None,
    ) -> ResourceAvailability:
        """Split resources into available and unavailable for a range.

        A resource is unavailable when a live reservation or a blocking
        calendar event covers it.
        """
        availability = ResourceAvailability(start_date=start_date, end_date=end_date)
        for resource_id in resource_ids:
            check = self.check_conflicts(
                ConflictCandidate(
                    start_date=start_date,
                    end_date=end_date,
                    resource_ids=[resource_id],
                    exclude_id=exclude_id,
                )
            )
            if check.has_conflict:
                availability.unavailable.append(resource_id)
            else:
                availability.available.append(resource_id)
            for warning in check.warnings:
                if warning not in availability.warnings:
                    availability.warnings.append(warning)
        return availability

    def _guarded(
        self,
        result: ConflictCheck,
        label: str,
        check: Callable[[], T],
        fallback: T,
    ) -> T:
        try:
            return check()
        except (ClientError, BotoCoreError) as e:
            if self.failure_policy == ConflictFailurePolicy.FAIL_CLOSED:
                logger.error("Conflict check (%s) failed, rejecting: %s", label, e)
                raise BookingError(ErrorCode.SERVER_ERROR, {"check": label}) from e
            logger.warning("Conflict check (%s) failed, continuing: %s", label, e)
            if CHECK_FAILED_WARNING not in result.warnings:
                result.warnings.append(CHECK_FAILED_WARNING)
            return fallback

    def _live_reservations(
        self,
        resource_id: str,
        start_date: dt.date,
        end_date: dt.date,
        exclude_id: str | None,
    ) -> list[ReservationRecord]:
        """Overlapping rows on a resource whose booking is not terminal."""
        rows = [
            row
            for row in self.bookings.reservations_overlapping(resource_id, start_date, end_date)
            if row.booking_id != exclude_id
            and intervals_overlap(row.start_date, row.end_date, start_date, end_date)
        ]
        if not rows:
            return []

        owners = self.bookings.get_bookings(row.booking_id for row in rows)
        return [
            row
            for row in rows
            if row.booking_id in owners and not owners[row.booking_id].status.is_terminal
        ]

    def _event_conflicts(self, candidate: ConflictCandidate) -> list[ConflictDetail]:
        conflicts = []
        for event in self.catalog.calendar_events_overlapping(
            candidate.start_date, candidate.end_date
        ):
            if event.event_id == candidate.exclude_id:
                continue
            if candidate.kind != CandidateKind.CUSTOM_EVENT:
                if not event.blocks_inventory:
                    continue
                covered = [r for r in candidate.resource_ids if r in event.resource_ids]
                if event.resource_ids and not covered:
                    continue
            conflicts.append(
                ConflictDetail(
                    type=ConflictType.CUSTOM_EVENT,
                    reference_id=event.event_id,
                    title=event.title,
                    start_date=event.start_date,
                    end_date=event.end_date,
                )
            )
        return conflicts

    def _session_conflicts(self, candidate: ConflictCandidate) -> list[ConflictDetail]:
        return [
            ConflictDetail(
                type=ConflictType.CAMP_SESSION,
                reference_id=session.camp_session_id,
                title=session.name,
                start_date=session.start_date,
                end_date=session.end_date,
            )
            for session in self.catalog.camp_sessions_overlapping(
                candidate.start_date, candidate.end_date
            )
            if session.camp_session_id not in (candidate.exclude_id, candidate.camp_session_id)
        ]

    def _capacity_warning(self, candidate: ConflictCandidate) -> str | None:
        """Warn when reserved camp guests plus the candidate's exceed capacity."""
        sessions = self.catalog.camp_sessions_overlapping(candidate.start_date, candidate.end_date)
        capacity = candidate.capacity
        if capacity is None:
            own = next(
                (s for s in sessions if s.camp_session_id == candidate.camp_session_id), None
            )
            if own is None:
                return None
            capacity = own.capacity

        reserved = 0
        for session in sessions:
            rows = self._live_reservations(
                session.camp_session_id,
                candidate.start_date,
                candidate.end_date,
                candidate.exclude_id,
            )
            reserved += sum(row.guest_count for row in rows if row.kind == ReservationKind.CAMP)

        requested = reserved + candidate.guest_count
        if requested > capacity:
            logger.warning(
                "Camp capacity exceeded: %d guests for capacity %d", requested, capacity
            )
            return (
                f"Camp capacity exceeded: {requested} guests for a capacity of {capacity}"
            )
        return None
