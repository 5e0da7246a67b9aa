"""Per-night inventory locks.

Every room or bed night held by a live booking is a row in the
resource-nights table keyed by (resource_id, night). The rows are put with
``attribute_not_exists`` inside the booking transaction, so two bookings can
never hold the same unit on the same night however their requests
interleave. Locks are deleted when the booking reaches a terminal status.
"""

import datetime as dt
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

NIGHTS_TABLE = "resource-nights"


def nights_between(start_date: dt.date, end_date: dt.date) -> list[dt.date]:
    """Nights occupied by a stay (end date exclusive).

    Args:
        start_date: Check-in date
        end_date: Check-out date (exclusive)

    Returns:
        List of dates in range
    """
    return [
        start_date + dt.timedelta(days=offset)
        for offset in range((end_date - start_date).days)
    ]


def lock_items(
    db: "DynamoDBService",
    resource_id: str,
    start_date: dt.date,
    end_date: dt.date,
    booking_id: str,
) -> list[dict[str, Any]]:
    """Transaction items that claim each night of a stay for a booking.

    Each put fails with ConditionalCheckFailed if any booking already holds
    the night, cancelling the surrounding transaction.
    """
    now = dt.datetime.now(dt.UTC).isoformat()
    return [
        db.tx_put(
            NIGHTS_TABLE,
            {
                "resource_id": resource_id,
                "night": night.isoformat(),
                "booking_id": booking_id,
                "created_at": now,
            },
            condition_expression="attribute_not_exists(resource_id)",
        )
        for night in nights_between(start_date, end_date)
    ]


def release_items(
    db: "DynamoDBService",
    resource_id: str,
    start_date: dt.date,
    end_date: dt.date,
    booking_id: str,
) -> list[dict[str, Any]]:
    """Transaction items that release the nights a booking holds.

    Only rows owned by ``booking_id`` are deleted; nights that are already
    free are left alone.
    """
    return [
        db.tx_delete(
            NIGHTS_TABLE,
            {"resource_id": resource_id, "night": night.isoformat()},
            condition_expression="attribute_not_exists(resource_id) OR booking_id = :bid",
            expression_attribute_values={":bid": booking_id},
        )
        for night in nights_between(start_date, end_date)
    ]


def holder_of(db: "DynamoDBService", resource_id: str, night: dt.date) -> str | None:
    """Booking id holding a night, if any."""
    item = db.get_item(
        NIGHTS_TABLE,
        {"resource_id": resource_id, "night": night.isoformat()},
        consistent_read=True,
    )
    return item["booking_id"] if item else None
