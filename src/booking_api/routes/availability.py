"""Availability and conflict-check endpoints.

Availability is public and answers which resources are free for a range.
The full conflict check (reservations, camp sessions, calendar events) is
an operator tool used when editing sessions and events.
"""

from fastapi import APIRouter, Depends

from booking_api.dependencies import get_conflict_checker
from booking_api.models.requests import AvailabilityRequest
from booking_api.security import Principal, require_permission
from booking_engine.models.conflicts import ConflictCandidate, ConflictCheck, ResourceAvailability
from booking_engine.services.conflicts import ConflictChecker

router = APIRouter(tags=["availability"])


@router.post(
    "/availability",
    summary="Check resource availability",
    description="""
Split the requested resources into available and unavailable for a range.

Dates are half-open: `end_date` is the departure day and is not occupied,
so a stay ending on a date never conflicts with one starting on it.
""",
    response_model=ResourceAvailability,
    responses={
        200: {"description": "Availability computed"},
        400: {"description": "Invalid date range"},
    },
)
async def check_availability(
    body: AvailabilityRequest,
    checker: ConflictChecker = Depends(get_conflict_checker),
) -> ResourceAvailability:
    return checker.check_resource_availability(
        body.resource_ids,
        body.start_date,
        body.end_date,
        exclude_id=body.exclude_id,
    )


@router.post(
    "/conflicts/check",
    summary="Check a candidate for conflicts",
    description="""
Report every live reservation, camp session and calendar event that overlaps
the candidate. Capacity excess is reported as a warning.

**Requires operator role `viewer` or higher.**
""",
    response_model=ConflictCheck,
    responses={
        200: {"description": "Conflict check completed"},
        401: {"description": "Authentication required"},
        403: {"description": "Insufficient role"},
        500: {"description": "Datastore unavailable and the policy is fail-closed"},
    },
)
async def check_conflicts(
    body: ConflictCandidate,
    principal: Principal = Depends(require_permission("conflicts:check")),
    checker: ConflictChecker = Depends(get_conflict_checker),
) -> ConflictCheck:
    return checker.check_conflicts(body)
