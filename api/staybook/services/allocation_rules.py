"""Allocation rules: interval overlap, range validation and status transitions.

Pure calculation module: no database, no async, no FastAPI dependencies.
Everything that decides whether two reservations collide, or whether a
booking may move from one status to another, lives here so that the
ledger, the engine and the SQL filters all agree on the same definitions.
"""

import math
from datetime import UTC, datetime

from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement

from staybook.models.booking import AvailabilityStatus, Booking, BookingStatus


class AllocationViolation(Exception):
    """Base class for rule violations. `code` is the machine-readable error."""

    code = "violation"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidDateRange(AllocationViolation):
    code = "invalid_range"


class IllegalTransition(AllocationViolation):
    """Raised when a status change is not in the transition table."""

    code = "illegal_transition"

    def __init__(self, current: str | None, target: str, kind: str = "availability"):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {kind} status from {current or 'unallocated'} to {target}")


# ---------------------------------------------------------------------------
# Time ranges
# ---------------------------------------------------------------------------


def ensure_utc(value: datetime) -> datetime:
    """Normalise to an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def validate_range(check_in: datetime, check_out: datetime) -> tuple[datetime, datetime]:
    """Return the range in UTC, or raise InvalidDateRange if it is empty or inverted."""
    start, end = ensure_utc(check_in), ensure_utc(check_out)
    if start >= end:
        raise InvalidDateRange(
            f"Check-in {start.isoformat()} must be before check-out {end.isoformat()}."
        )
    return start, end


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap: [a_start, a_end) and [b_start, b_end) share an instant.

    Touching ranges (a_end == b_start) do not overlap.
    """
    return a_start < b_end and b_start < a_end


def overlap_clause(check_in: datetime, check_out: datetime) -> ColumnElement[bool]:
    """SQL filter for bookings whose range overlaps [check_in, check_out).

    Written as the three classic cases so the query planner can use the
    range index on either column. Every boundary matches overlaps(): a
    booking starting exactly at check_out, or ending exactly at check_in,
    is not a conflict.
    """
    return or_(
        # starts during the requested range
        and_(Booking.check_in_date >= check_in, Booking.check_in_date < check_out),
        # ends during the requested range
        and_(Booking.check_out_date > check_in, Booking.check_out_date <= check_out),
        # encompasses the requested range
        and_(Booking.check_in_date <= check_in, Booking.check_out_date >= check_out),
    )


def calc_nights(check_in: datetime, check_out: datetime) -> int:
    """Whole nights between two instants, rounded up, never less than one."""
    seconds = (ensure_utc(check_out) - ensure_utc(check_in)).total_seconds()
    return max(1, math.ceil(seconds / 86400))


# ---------------------------------------------------------------------------
# Allocation status
# ---------------------------------------------------------------------------

_ADMIN_HOLDS = {AvailabilityStatus.MAINTENANCE, AvailabilityStatus.BLOCKED}

AVAILABILITY_TRANSITIONS: dict[AvailabilityStatus | None, frozenset[AvailabilityStatus]] = {
    None: frozenset({AvailabilityStatus.ALLOCATED}),
    AvailabilityStatus.AVAILABLE: frozenset({AvailabilityStatus.ALLOCATED} | _ADMIN_HOLDS),
    AvailabilityStatus.ALLOCATED: frozenset(
        {AvailabilityStatus.ALLOCATED, AvailabilityStatus.OCCUPIED, AvailabilityStatus.AVAILABLE} | _ADMIN_HOLDS
    ),
    AvailabilityStatus.OCCUPIED: frozenset({AvailabilityStatus.AVAILABLE} | _ADMIN_HOLDS),
    AvailabilityStatus.MAINTENANCE: frozenset({AvailabilityStatus.AVAILABLE, AvailabilityStatus.BLOCKED}),
    AvailabilityStatus.BLOCKED: frozenset({AvailabilityStatus.AVAILABLE, AvailabilityStatus.MAINTENANCE}),
}


def can_transition(current: AvailabilityStatus | None, target: AvailabilityStatus) -> bool:
    return target in AVAILABILITY_TRANSITIONS.get(current, frozenset())


def transition(current: AvailabilityStatus | None, target: AvailabilityStatus) -> AvailabilityStatus:
    """Return target if current -> target is allowed, else raise IllegalTransition."""
    if not can_transition(current, target):
        raise IllegalTransition(current.value if current else None, target.value)
    return target


# ---------------------------------------------------------------------------
# Ledger status
# ---------------------------------------------------------------------------

BOOKING_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}


def transition_booking(current: BookingStatus, target: BookingStatus) -> BookingStatus:
    """Return target if the ledger may move current -> target, else raise IllegalTransition."""
    if target not in BOOKING_TRANSITIONS[current]:
        raise IllegalTransition(current.value, target.value, kind="booking")
    return target
