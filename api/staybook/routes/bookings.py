"""Booking routes: create, read, update and move bookings through their lifecycle.

A create request that carries an allocation is handed to the Availability
Engine so the booking and its allocation commit together or not at all.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from staybook.core.database import get_db
from staybook.core.dependencies import get_actor, get_availability_engine
from staybook.core.errors import http_error
from staybook.models.booking import BookingStatus, BookingType
from staybook.models.resource import ResourceType
from staybook.schemas import BookingCreate, BookingOut, BookingUpdate, CancelRequest
from staybook.services import ledger
from staybook.services.allocation_rules import AllocationViolation
from staybook.services.availability import AllocationResult, AvailabilityEngine

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _booking_or_raise(result: AllocationResult) -> BookingOut:
    if not result.success:
        raise http_error(result.error, result.message)
    return BookingOut.model_validate(result.booking)


@router.post("", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
async def create_booking(
    body: BookingCreate,
    db: AsyncSession = Depends(get_db),
    engine: AvailabilityEngine = Depends(get_availability_engine),
    actor: str | None = Depends(get_actor),
):
    if body.allocation is not None:
        result = await engine.reserve(body, body.allocation, assigned_by=actor)
        return _booking_or_raise(result)

    try:
        booking = await ledger.create_booking(db, body)
    except AllocationViolation as exc:
        raise http_error(exc.code, exc.message)
    return booking


@router.get("", response_model=list[BookingOut])
async def list_bookings(
    user_id: str | None = None,
    resource_id: str | None = None,
    resource_type: ResourceType | None = None,
    booking_type: BookingType | None = None,
    status_filter: list[BookingStatus] | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, gt=0, le=500),
    db: AsyncSession = Depends(get_db),
):
    flt = ledger.BookingFilter(
        user_id=user_id,
        resource_id=resource_id,
        resource_type=resource_type,
        booking_type=booking_type,
        statuses=status_filter or [],
        limit=limit,
    )
    return await ledger.find_bookings(db, flt)


@router.get("/reference/{reservation_number}", response_model=BookingOut)
async def get_booking_by_reference(reservation_number: str, db: AsyncSession = Depends(get_db)):
    booking = await ledger.get_booking_by_reference(db, reservation_number)
    if booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


@router.get("/{booking_id}", response_model=BookingOut)
async def get_booking(booking_id: int, db: AsyncSession = Depends(get_db)):
    booking = await ledger.get_booking(db, booking_id)
    if booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


@router.patch("/{booking_id}", response_model=BookingOut)
async def update_booking(booking_id: int, body: BookingUpdate, db: AsyncSession = Depends(get_db)):
    try:
        booking = await ledger.require_booking(db, booking_id, for_update=True)
        return await ledger.update_booking(db, booking, **body.model_dump(exclude_unset=True))
    except AllocationViolation as exc:
        raise http_error(exc.code, exc.message)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post("/{booking_id}/confirm", response_model=BookingOut)
async def confirm_booking(booking_id: int, engine: AvailabilityEngine = Depends(get_availability_engine)):
    return _booking_or_raise(await engine.confirm_booking(booking_id))


@router.post("/{booking_id}/check-in", response_model=BookingOut)
async def check_in(booking_id: int, engine: AvailabilityEngine = Depends(get_availability_engine)):
    return _booking_or_raise(await engine.check_in(booking_id))


@router.post("/{booking_id}/check-out", response_model=BookingOut)
async def check_out(booking_id: int, engine: AvailabilityEngine = Depends(get_availability_engine)):
    return _booking_or_raise(await engine.check_out(booking_id))


@router.post("/{booking_id}/cancel", response_model=BookingOut)
async def cancel_booking(
    booking_id: int,
    body: CancelRequest | None = None,
    engine: AvailabilityEngine = Depends(get_availability_engine),
):
    reason = body.reason if body else None
    return _booking_or_raise(await engine.cancel_booking(booking_id, reason))


@router.post("/{booking_id}/no-show", response_model=BookingOut)
async def mark_no_show(booking_id: int, engine: AvailabilityEngine = Depends(get_availability_engine)):
    return _booking_or_raise(await engine.mark_no_show(booking_id))
