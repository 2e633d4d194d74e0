"""Resource routes: availability checks, allocation, status changes and reports.

All capacity decisions go through the Availability Engine. Catalog
registration is a plain ledger-style write through get_db().
"""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from staybook.core.database import get_db
from staybook.core.dependencies import get_actor, get_availability_engine
from staybook.core.errors import http_error
from staybook.models.booking import AvailabilityStatus
from staybook.models.resource import ResourceType
from staybook.schemas import (
    AllocateRequest,
    AvailabilityCheckRequest,
    AvailabilityOut,
    AvailableResourcesOut,
    BookingOut,
    OccupancyStatOut,
    OccupancyStatsOut,
    ResourceCreate,
    ResourceOut,
    ResourceSummaryOut,
    SeatAvailabilityOut,
    StatusUpdateRequest,
)
from staybook.services import catalog
from staybook.services.availability import AllocationResult, AvailabilityEngine, SearchResult

router = APIRouter(prefix="/resources", tags=["resources"])


def _booking_or_raise(result: AllocationResult) -> BookingOut:
    if not result.success:
        raise http_error(result.error, result.message)
    return BookingOut.model_validate(result.booking)


def _search_out(result: SearchResult) -> AvailableResourcesOut:
    if not result.success:
        raise http_error(result.error, result.message)
    return AvailableResourcesOut(available=bool(result.resources), count=len(result.resources), resources=result.resources)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@router.post("", response_model=ResourceOut, status_code=status.HTTP_201_CREATED)
async def register_resource(body: ResourceCreate, db: AsyncSession = Depends(get_db)):
    return await catalog.register_resource(db, body)


@router.get("", response_model=list[ResourceOut])
async def list_catalog(
    resource_type: ResourceType | None = None,
    category: str | None = None,
    parent_ref: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    return await catalog.list_catalog(db, resource_type=resource_type, category=category, parent_ref=parent_ref)


@router.delete("/{resource_type}/{resource_id}", response_model=ResourceOut)
async def deactivate_resource(resource_type: ResourceType, resource_id: str, db: AsyncSession = Depends(get_db)):
    """Take a resource out of service. Existing bookings are kept."""
    resource = await catalog.deactivate_resource(db, resource_id, resource_type)
    if resource is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Resource not found")
    return resource


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


@router.post("/check-availability", response_model=AvailabilityOut)
async def check_availability(
    body: AvailabilityCheckRequest,
    engine: AvailabilityEngine = Depends(get_availability_engine),
):
    result = await engine.check_availability(
        body.resource_id,
        body.resource_type,
        body.check_in_date,
        body.check_out_date,
        exclude_booking_id=body.exclude_booking_id,
    )
    if not result.success:
        raise http_error(result.error, result.message)
    return AvailabilityOut.model_validate(result)


@router.get("/rooms/available", response_model=AvailableResourcesOut)
async def available_rooms(
    property_id: str,
    room_type: str,
    check_in_date: datetime,
    check_out_date: datetime,
    quantity: int = Query(default=1, gt=0),
    engine: AvailabilityEngine = Depends(get_availability_engine),
):
    result = await engine.find_available_rooms(property_id, room_type, check_in_date, check_out_date, quantity)
    return _search_out(result)


@router.get("/vehicles/available", response_model=AvailableResourcesOut)
async def available_vehicles(
    vehicle_type: str,
    pickup_date: datetime,
    return_date: datetime,
    engine: AvailabilityEngine = Depends(get_availability_engine),
):
    result = await engine.find_available_vehicles(vehicle_type, pickup_date, return_date)
    return _search_out(result)


@router.get("/seats/available", response_model=SeatAvailabilityOut)
async def available_seats(
    flight_id: str,
    seat_class: str,
    required_seats: int = Query(default=1, gt=0),
    engine: AvailabilityEngine = Depends(get_availability_engine),
):
    result = await engine.find_available_seats(flight_id, seat_class, required_seats)
    if not result.success:
        raise http_error(result.error, "Failed to search seats")
    return SeatAvailabilityOut.model_validate(result)


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------


@router.post("/allocate", response_model=BookingOut)
async def allocate_resource(
    body: AllocateRequest,
    engine: AvailabilityEngine = Depends(get_availability_engine),
    actor: str | None = Depends(get_actor),
):
    result = await engine.allocate_resource(
        body.booking_id,
        body.resource_id,
        body.resource_type,
        resource_name=body.resource_name,
        capacity=body.capacity,
        quantity=body.quantity,
        assigned_by=actor,
        notes=body.notes,
    )
    return _booking_or_raise(result)


@router.patch("/{booking_id}/status", response_model=BookingOut)
async def update_resource_status(
    booking_id: int,
    body: StatusUpdateRequest,
    engine: AvailabilityEngine = Depends(get_availability_engine),
):
    result = await engine.update_resource_status(booking_id, body.status)
    return _booking_or_raise(result)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


@router.get("/occupancy/stats", response_model=OccupancyStatsOut)
async def occupancy_stats(
    resource_type: ResourceType,
    start_date: datetime,
    end_date: datetime,
    engine: AvailabilityEngine = Depends(get_availability_engine),
):
    result = await engine.get_occupancy_stats(resource_type, start_date, end_date)
    if not result.success:
        raise http_error(result.error, result.message)
    return OccupancyStatsOut(
        resource_type=resource_type,
        start_date=start_date,
        end_date=end_date,
        stats=[OccupancyStatOut.model_validate(s) for s in result.items],
    )


@router.get("/list", response_model=list[ResourceSummaryOut])
async def list_resources(
    resource_type: ResourceType | None = None,
    status_filter: AvailabilityStatus | None = Query(default=None, alias="status"),
    engine: AvailabilityEngine = Depends(get_availability_engine),
):
    result = await engine.list_resources(resource_type, status_filter)
    if not result.success:
        raise http_error(result.error, result.message)
    return [ResourceSummaryOut.model_validate(s) for s in result.items]


@router.get("/{resource_id}/bookings", response_model=list[BookingOut])
async def resource_bookings(
    resource_id: str,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    engine: AvailabilityEngine = Depends(get_availability_engine),
):
    result = await engine.get_resource_bookings(resource_id, start_date, end_date)
    if not result.success:
        raise http_error(result.error, result.message)
    return [BookingOut.model_validate(b) for b in result.items]
