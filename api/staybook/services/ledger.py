"""Booking ledger: create, read, search and update booking records.

The ledger is the source of truth for occupancy but does not enforce
capacity itself; that is the Availability Engine's job. Every function here
takes the caller's session and leaves commit to the caller, so the engine
can compose ledger writes into its own guarded transaction.

Single-booking updates are atomic: Booking carries a version counter, and a
flush against a row someone else changed raises StaleDataError.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from staybook.core.config import settings
from staybook.models.booking import ALLOCATION_FIELDS, Booking, BookingStatus, BookingType
from staybook.models.resource import ResourceType
from staybook.schemas import BookingCreate
from staybook.services.allocation_rules import (
    AllocationViolation,
    calc_nights,
    ensure_utc,
    overlap_clause,
    transition_booking,
    validate_range,
)

logger = logging.getLogger(__name__)


class BookingNotFound(AllocationViolation):
    code = "not_found"

    def __init__(self, booking_id: int | str):
        self.booking_id = booking_id
        super().__init__("Booking not found")


class ProtectedFieldError(AllocationViolation):
    """Raised when a caller tries to write allocation fields outside the engine."""

    code = "protected_field"


class ReservationNumberExhausted(AllocationViolation):
    code = "reservation_number"


@dataclass
class BookingFilter:
    resource_id: str | None = None
    resource_type: ResourceType | None = None
    user_id: str | None = None
    booking_type: BookingType | None = None
    statuses: list[BookingStatus] = field(default_factory=list)
    exclude_statuses: list[BookingStatus] = field(default_factory=list)
    start: datetime | None = None
    end: datetime | None = None
    limit: int = 100


def generate_reservation_number(now: datetime | None = None, prefix: str | None = None) -> str:
    """Human-readable reference, e.g. SB-202501-004217."""
    now = now or datetime.now(UTC)
    prefix = prefix or settings.reservation_prefix
    return f"{prefix}-{now:%Y%m}-{secrets.randbelow(10**6):06d}"


async def _unique_reservation_number(db: AsyncSession) -> str:
    for _ in range(settings.reservation_number_attempts):
        candidate = generate_reservation_number()
        result = await db.execute(select(Booking.id).where(Booking.reservation_number == candidate))
        if result.scalar_one_or_none() is None:
            return candidate
    raise ReservationNumberExhausted("Could not generate a unique reservation number.")


async def create_booking(db: AsyncSession, booking_in: BookingCreate) -> Booking:
    """Insert a new booking (unallocated) and flush so it has an id."""
    check_in, check_out = validate_range(booking_in.check_in_date, booking_in.check_out_date)
    booking_type, target_id, target_detail = booking_in.target.reference()
    status = BookingStatus(booking_in.status)

    booking = Booking(
        reservation_number=await _unique_reservation_number(db),
        user_id=booking_in.user_id,
        booking_type=booking_type,
        target_id=target_id,
        target_detail=target_detail,
        check_in_date=check_in,
        check_out_date=check_out,
        nights=calc_nights(check_in, check_out),
        status=status,
        confirmed_at=datetime.now(UTC) if status == BookingStatus.CONFIRMED else None,
        allocated_quantity=0,
        payment_status=booking_in.payment_status,
        total_amount=booking_in.total_amount,
        currency=booking_in.currency.upper(),
        notes=booking_in.notes,
        extra={},
    )
    db.add(booking)
    await db.flush()
    logger.info("Booking %s created (%s %s)", booking.reservation_number, booking_type.value, target_id)
    return booking


async def get_booking(db: AsyncSession, booking_id: int, for_update: bool = False) -> Booking | None:
    query = select(Booking).where(Booking.id == booking_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def require_booking(db: AsyncSession, booking_id: int, for_update: bool = False) -> Booking:
    booking = await get_booking(db, booking_id, for_update=for_update)
    if booking is None:
        raise BookingNotFound(booking_id)
    return booking


async def get_booking_by_reference(db: AsyncSession, reservation_number: str) -> Booking | None:
    result = await db.execute(select(Booking).where(Booking.reservation_number == reservation_number))
    return result.scalar_one_or_none()


def build_filter_query(flt: BookingFilter) -> Select:
    query = select(Booking)
    if flt.resource_id is not None:
        query = query.where(Booking.resource_id == flt.resource_id)
    if flt.resource_type is not None:
        query = query.where(Booking.resource_type == flt.resource_type)
    if flt.user_id is not None:
        query = query.where(Booking.user_id == flt.user_id)
    if flt.booking_type is not None:
        query = query.where(Booking.booking_type == flt.booking_type)
    if flt.statuses:
        query = query.where(Booking.status.in_(flt.statuses))
    if flt.exclude_statuses:
        query = query.where(Booking.status.not_in(flt.exclude_statuses))
    if flt.start is not None and flt.end is not None:
        start, end = validate_range(flt.start, flt.end)
        query = query.where(overlap_clause(start, end))
    elif flt.start is not None:
        query = query.where(Booking.check_out_date > ensure_utc(flt.start))
    elif flt.end is not None:
        query = query.where(Booking.check_in_date < ensure_utc(flt.end))
    return query.order_by(Booking.check_in_date, Booking.id).limit(flt.limit)


async def find_bookings(db: AsyncSession, flt: BookingFilter) -> list[Booking]:
    result = await db.execute(build_filter_query(flt))
    return list(result.scalars().all())


async def update_booking(db: AsyncSession, booking: Booking, **fields) -> Booking:
    """Apply ledger field updates in place.

    Allocation fields are refused: they change only through the engine.
    """
    protected = ALLOCATION_FIELDS.intersection(fields)
    if protected:
        raise ProtectedFieldError(f"Allocation fields are managed by the availability engine: {sorted(protected)}")

    for name, value in fields.items():
        setattr(booking, name, value)
    await db.flush()
    return booking


async def transition_booking_status(
    db: AsyncSession,
    booking: Booking,
    target: BookingStatus,
    reason: str | None = None,
) -> Booking:
    """Move the ledger status along the transition table and stamp the time."""
    booking.status = transition_booking(booking.status, target)
    now = datetime.now(UTC)
    if target == BookingStatus.CONFIRMED:
        booking.confirmed_at = now
    elif target == BookingStatus.CANCELLED:
        booking.cancelled_at = now
        booking.cancellation_reason = reason
    elif target == BookingStatus.COMPLETED:
        booking.checked_out_at = booking.checked_out_at or now
    await db.flush()
    logger.info("Booking %s -> %s", booking.reservation_number, target.value)
    return booking
