"""Booking status transitions.

Statuses only move forward. A requested transition is applied when the
table allows it, ignored when the booking already sits at or past the
target on the success path, and rejected otherwise. Rejected transitions
are never written; callers escalate them for manual review.
"""

from enum import Enum

from ..models.enums import BookingStatus

ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.DRAFT: frozenset({BookingStatus.PENDING_PAYMENT}),
    BookingStatus.PENDING_PAYMENT: frozenset(
        {
            BookingStatus.CONFIRMED,
            BookingStatus.PAID,
            BookingStatus.CANCELLED,
            BookingStatus.FAILED,
        }
    ),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.PAID}),
    BookingStatus.PAID: frozenset({BookingStatus.REFUNDED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.FAILED: frozenset(),
    BookingStatus.REFUNDED: frozenset(),
}

# Position along the success path draft -> pending_payment -> confirmed -> paid -> refunded
_SUCCESS_PATH_RANK: dict[BookingStatus, int] = {
    BookingStatus.DRAFT: 0,
    BookingStatus.PENDING_PAYMENT: 1,
    BookingStatus.CONFIRMED: 2,
    BookingStatus.PAID: 3,
    BookingStatus.REFUNDED: 4,
}


class TransitionDecision(str, Enum):
    APPLY = "apply"
    NOOP = "noop"
    REJECT = "reject"


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def plan_transition(current: BookingStatus, target: BookingStatus) -> TransitionDecision:
    """Decide what to do with a requested status change.

    Args:
        current: Status observed on the booking
        target: Status the event asks for

    Returns:
        APPLY if the edge exists; NOOP if the booking is already at the
        target, or is live and further along the success path (a late
        "confirmed" after "paid"); REJECT otherwise, including any move out
        of a terminal status.
    """
    if current == target:
        return TransitionDecision.NOOP
    if can_transition(current, target):
        return TransitionDecision.APPLY
    if current.is_terminal:
        return TransitionDecision.REJECT
    if current in _SUCCESS_PATH_RANK and target in _SUCCESS_PATH_RANK:
        if (
            _SUCCESS_PATH_RANK[current] > _SUCCESS_PATH_RANK[target]
            and target in (BookingStatus.CONFIRMED, BookingStatus.PAID)
        ):
            return TransitionDecision.NOOP
    return TransitionDecision.REJECT
