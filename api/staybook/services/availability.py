"""Availability Engine: capacity checks, allocation and occupancy status.

This is the only component that answers "is this resource free?" and the
only writer of a booking's allocation fields.

Every operation returns a result object with `success`; none of them raise.
Database errors are logged and reported as error="persistence_error".

Allocation is check-and-reserve in one step. For a given resource the
engine holds an in-process lock keyed by (resource_id, resource_type),
opens a transaction, locks the catalog row (SELECT ... FOR UPDATE, which
serialises writers in other processes on PostgreSQL), re-counts overlapping
allocations and only then writes. Two requests racing for the last unit
therefore cannot both succeed. A lost race on first registration of a
resource (unique key violation) is retried once.
"""

import asyncio
import logging
import weakref
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from staybook.core.config import Settings, settings as default_settings
from staybook.models.booking import ACTIVE_STATUSES, AvailabilityStatus, Booking, BookingStatus
from staybook.models.resource import Resource, ResourceType
from staybook.schemas import AllocationRequest, BookingCreate
from staybook.services import catalog, ledger
from staybook.services.allocation_rules import (
    AllocationViolation,
    IllegalTransition,
    overlap_clause,
    transition,
    validate_range,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ResourceKey = tuple[str, ResourceType]

_CENTS = Decimal("0.01")


class CapacityExceeded(AllocationViolation):
    code = "capacity_exceeded"


class BookingNotActive(AllocationViolation):
    code = "booking_not_active"


class ResourceInactive(AllocationViolation):
    code = "resource_inactive"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class AvailabilityResult:
    success: bool
    available: bool
    conflicting_bookings: list[Booking]
    available_quantity: int
    total_capacity: int
    message: str
    error: str | None = None


@dataclass
class AllocationResult:
    success: bool
    message: str
    error: str | None = None
    booking: Booking | None = None


@dataclass
class SearchResult:
    success: bool
    resources: list[str] = field(default_factory=list)
    message: str = ""
    error: str | None = None


@dataclass
class SeatAvailability:
    success: bool
    available: bool
    seat_ids: list[str] = field(default_factory=list)
    free_seats: int = 0
    error: str | None = None


@dataclass
class ResourceBooking:
    booking_id: int
    check_in_date: datetime
    check_out_date: datetime
    status: BookingStatus


@dataclass
class ResourceSummary:
    resource_id: str
    resource_type: ResourceType
    resource_name: str | None
    capacity: int
    status: AvailabilityStatus | None
    bookings: list[ResourceBooking] = field(default_factory=list)


@dataclass
class OccupancyStat:
    resource_id: str
    total_bookings: int
    total_nights: int
    total_revenue: Decimal
    average_revenue: Decimal


@dataclass
class ListResult:
    """Generic list payload (bookings, stats or resource summaries)."""

    success: bool
    items: list = field(default_factory=list)
    message: str = ""
    error: str | None = None


# ---------------------------------------------------------------------------
# Per-resource locks
# ---------------------------------------------------------------------------


class ResourceLocks:
    """One asyncio.Lock per resource key, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[ResourceKey, asyncio.Lock] = weakref.WeakValueDictionary()

    def get(self, resource_id: str, resource_type: ResourceType) -> asyncio.Lock:
        key = (resource_id, resource_type)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


def _fail_allocation(exc: AllocationViolation) -> AllocationResult:
    return AllocationResult(success=False, message=exc.message, error=exc.code)


def _money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(_CENTS)


class AvailabilityEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or default_settings
        self._locks = ResourceLocks()

    # ------------------------------------------------------------------
    # Capacity
    # ------------------------------------------------------------------

    async def _conflicts(
        self,
        session: AsyncSession,
        resource_id: str,
        resource_type: ResourceType,
        check_in: datetime,
        check_out: datetime,
        exclude_booking_id: int | None = None,
    ) -> list[Booking]:
        query = select(Booking).where(
            Booking.resource_id == resource_id,
            Booking.resource_type == resource_type,
            Booking.status.in_(ACTIVE_STATUSES),
            overlap_clause(check_in, check_out),
        )
        if exclude_booking_id is not None:
            query = query.where(Booking.id != exclude_booking_id)
        result = await session.execute(query.order_by(Booking.check_in_date, Booking.id))
        return list(result.scalars().all())

    async def _evaluate(
        self,
        session: AsyncSession,
        resource_id: str,
        resource_type: ResourceType,
        check_in: datetime,
        check_out: datetime,
        exclude_booking_id: int | None = None,
        resource: Resource | None = None,
    ) -> AvailabilityResult:
        """Count capacity left for the range. Range must already be validated."""
        conflicts = await self._conflicts(session, resource_id, resource_type, check_in, check_out, exclude_booking_id)

        if resource is None:
            resource = await catalog.get_resource(session, resource_id, resource_type)
        if resource is not None:
            capacity = resource.capacity
        elif conflicts and conflicts[0].capacity:
            # Uncatalogued resource: fall back to the snapshot on a conflicting booking
            capacity = conflicts[0].capacity
        else:
            capacity = self._settings.default_resource_capacity

        allocated = sum(b.allocated_quantity or 0 for b in conflicts)
        available_quantity = capacity - allocated

        if resource is not None and not resource.is_active:
            return AvailabilityResult(
                success=True,
                available=False,
                conflicting_bookings=conflicts,
                available_quantity=0,
                total_capacity=capacity,
                message=f"Resource {resource_id} is not bookable",
                error=ResourceInactive.code,
            )

        available = available_quantity > 0
        if available:
            message = f"Resource {resource_id} is available ({available_quantity}/{capacity} units free)"
        else:
            message = f"Resource {resource_id} is fully booked ({len(conflicts)} conflicting bookings)"

        return AvailabilityResult(
            success=True,
            available=available,
            conflicting_bookings=conflicts,
            available_quantity=available_quantity,
            total_capacity=capacity,
            message=message,
        )

    async def check_availability(
        self,
        resource_id: str,
        resource_type: ResourceType,
        check_in: datetime,
        check_out: datetime,
        exclude_booking_id: int | None = None,
    ) -> AvailabilityResult:
        """Report whether any capacity remains on a resource for [check_in, check_out). Read-only."""
        try:
            start, end = validate_range(check_in, check_out)
        except AllocationViolation as exc:
            return AvailabilityResult(False, False, [], 0, 0, exc.message, error=exc.code)

        try:
            async with self._session_factory() as session:
                return await self._evaluate(session, resource_id, resource_type, start, end, exclude_booking_id)
        except SQLAlchemyError:
            logger.exception("Availability check failed for %s:%s", resource_type.value, resource_id)
            return AvailabilityResult(
                False, False, [], 0, 0, "Failed to check availability", error="persistence_error"
            )

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    async def _guarded(
        self,
        resource_id: str,
        resource_type: ResourceType,
        work: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        """Run work(session) in one transaction while holding the resource's lock."""
        async with self._locks.get(resource_id, resource_type):
            for attempt in (1, 2):
                try:
                    async with self._session_factory() as session, session.begin():
                        return await work(session)
                except IntegrityError:
                    if attempt == 2:
                        raise
                    logger.info("Retrying allocation on %s:%s after concurrent registration", resource_type.value, resource_id)
        raise RuntimeError("unreachable")  # pragma: no cover

    async def _allocate(
        self,
        session: AsyncSession,
        booking_id: int,
        allocation: AllocationRequest,
        assigned_by: str | None,
    ) -> Booking:
        resource, _ = await catalog.lock_or_register(
            session,
            allocation.resource_id,
            allocation.resource_type,
            allocation.capacity,
            allocation.resource_name,
        )
        if not resource.is_active:
            raise ResourceInactive(f"Resource {resource.resource_id} is not bookable")

        booking = await ledger.require_booking(session, booking_id, for_update=True)
        if not booking.is_active:
            raise BookingNotActive(f"Booking {booking.reservation_number} is {booking.status.value}")
        new_status = transition(booking.availability_status, AvailabilityStatus.ALLOCATED)

        start, end = validate_range(booking.check_in_date, booking.check_out_date)
        availability = await self._evaluate(
            session,
            allocation.resource_id,
            allocation.resource_type,
            start,
            end,
            exclude_booking_id=booking.id,
            resource=resource,
        )
        if availability.available_quantity < allocation.quantity:
            raise CapacityExceeded(
                f"Resource {allocation.resource_id} has {max(availability.available_quantity, 0)} of "
                f"{availability.total_capacity} units free; {allocation.quantity} requested"
            )

        booking.resource_id = allocation.resource_id
        booking.resource_type = allocation.resource_type
        booking.resource_name = allocation.resource_name or resource.name
        booking.capacity = resource.capacity
        booking.allocated_quantity = allocation.quantity
        booking.availability_status = new_status
        booking.assigned_by = assigned_by
        booking.assigned_at = datetime.now(UTC)
        booking.allocation_notes = allocation.notes
        await session.flush()

        logger.info(
            "Allocated %s x %s:%s to booking %s",
            allocation.quantity,
            allocation.resource_type.value,
            allocation.resource_id,
            booking.reservation_number,
        )
        return booking

    async def allocate_resource(
        self,
        booking_id: int,
        resource_id: str,
        resource_type: ResourceType,
        resource_name: str | None = None,
        capacity: int = 1,
        quantity: int = 1,
        assigned_by: str | None = None,
        notes: str | None = None,
    ) -> AllocationResult:
        """Allocate `quantity` units of a resource to an existing booking.

        Capacity is re-validated inside the write. `capacity` only matters
        the first time a resource is seen; after that the catalog value wins.
        """
        allocation = AllocationRequest(
            resource_id=resource_id,
            resource_type=resource_type,
            resource_name=resource_name,
            capacity=capacity,
            quantity=quantity,
            notes=notes,
        )

        async def work(session: AsyncSession) -> Booking:
            return await self._allocate(session, booking_id, allocation, assigned_by)

        try:
            booking = await self._guarded(resource_id, resource_type, work)
        except AllocationViolation as exc:
            logger.warning("Allocation refused for booking %s: %s", booking_id, exc.message)
            return _fail_allocation(exc)
        except SQLAlchemyError:
            logger.exception("Error allocating resource %s:%s to booking %s", resource_type.value, resource_id, booking_id)
            return AllocationResult(False, "Failed to allocate resource", error="persistence_error")
        return AllocationResult(True, "Resource allocated successfully", booking=booking)

    async def reserve(
        self,
        booking_in: BookingCreate,
        allocation: AllocationRequest,
        assigned_by: str | None = None,
    ) -> AllocationResult:
        """Create a booking and allocate it in one transaction. Nothing is written on failure."""
        try:
            validate_range(booking_in.check_in_date, booking_in.check_out_date)
        except AllocationViolation as exc:
            return _fail_allocation(exc)

        async def work(session: AsyncSession) -> Booking:
            booking = await ledger.create_booking(session, booking_in)
            return await self._allocate(session, booking.id, allocation, assigned_by)

        try:
            booking = await self._guarded(allocation.resource_id, allocation.resource_type, work)
        except AllocationViolation as exc:
            logger.warning("Reservation refused on %s: %s", allocation.resource_id, exc.message)
            return _fail_allocation(exc)
        except SQLAlchemyError:
            logger.exception("Error reserving %s:%s", allocation.resource_type.value, allocation.resource_id)
            return AllocationResult(False, "Failed to create reservation", error="persistence_error")
        return AllocationResult(True, "Reservation created", booking=booking)

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def _mutate(
        self,
        booking_id: int,
        change: Callable[[AsyncSession, Booking], Awaitable[None]],
        done: str,
    ) -> AllocationResult:
        try:
            async with self._session_factory() as session, session.begin():
                booking = await ledger.require_booking(session, booking_id, for_update=True)
                await change(session, booking)
                await session.flush()
        except AllocationViolation as exc:
            return _fail_allocation(exc)
        except SQLAlchemyError:
            logger.exception("Error updating booking %s", booking_id)
            return AllocationResult(False, "Failed to update booking", error="persistence_error")
        return AllocationResult(True, done, booking=booking)

    async def update_resource_status(self, booking_id: int, status: AvailabilityStatus) -> AllocationResult:
        """Set a booking's allocation status, following the transition table.

        Entering `allocated` needs a resource and a capacity check, so it only
        happens through allocate_resource/reserve.
        """

        async def change(session: AsyncSession, booking: Booking) -> None:
            if status == AvailabilityStatus.ALLOCATED:
                current = booking.availability_status
                raise IllegalTransition(current.value if current else None, status.value)
            if not booking.is_active:
                raise BookingNotActive(f"Booking {booking.reservation_number} is {booking.status.value}")
            booking.availability_status = transition(booking.availability_status, status)

        return await self._mutate(booking_id, change, "Resource status updated successfully")

    async def confirm_booking(self, booking_id: int) -> AllocationResult:
        async def change(session: AsyncSession, booking: Booking) -> None:
            await ledger.transition_booking_status(session, booking, BookingStatus.CONFIRMED)

        return await self._mutate(booking_id, change, "Booking confirmed")

    async def check_in(self, booking_id: int) -> AllocationResult:
        """allocated -> occupied. A pending booking is confirmed on the way in."""

        async def change(session: AsyncSession, booking: Booking) -> None:
            booking.availability_status = transition(booking.availability_status, AvailabilityStatus.OCCUPIED)
            if booking.status == BookingStatus.PENDING:
                await ledger.transition_booking_status(session, booking, BookingStatus.CONFIRMED)
            elif booking.status != BookingStatus.CONFIRMED:
                raise BookingNotActive(f"Booking {booking.reservation_number} is {booking.status.value}")
            booking.checked_in_at = datetime.now(UTC)

        return await self._mutate(booking_id, change, "Checked in")

    async def check_out(self, booking_id: int) -> AllocationResult:
        """occupied -> available, and the ledger entry is completed."""

        async def change(session: AsyncSession, booking: Booking) -> None:
            if booking.availability_status != AvailabilityStatus.OCCUPIED:
                raise BookingNotActive(f"Booking {booking.reservation_number} is not checked in")
            booking.availability_status = transition(booking.availability_status, AvailabilityStatus.AVAILABLE)
            booking.checked_out_at = datetime.now(UTC)
            await ledger.transition_booking_status(session, booking, BookingStatus.COMPLETED)

        return await self._mutate(booking_id, change, "Checked out")

    async def _close(self, booking_id: int, target: BookingStatus, reason: str | None, done: str) -> AllocationResult:
        async def change(session: AsyncSession, booking: Booking) -> None:
            await ledger.transition_booking_status(session, booking, target, reason=reason)
            if booking.availability_status in (AvailabilityStatus.ALLOCATED, AvailabilityStatus.OCCUPIED):
                booking.availability_status = transition(booking.availability_status, AvailabilityStatus.AVAILABLE)

        return await self._mutate(booking_id, change, done)

    async def cancel_booking(self, booking_id: int, reason: str | None = None) -> AllocationResult:
        """Cancel and release. The booking stops counting against capacity."""
        return await self._close(booking_id, BookingStatus.CANCELLED, reason, "Booking cancelled")

    async def mark_no_show(self, booking_id: int) -> AllocationResult:
        return await self._close(booking_id, BookingStatus.NO_SHOW, None, "Booking marked as no-show")

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def _search(
        self,
        resource_type: ResourceType,
        category: str,
        parent_ref: str | None,
        check_in: datetime,
        check_out: datetime,
        quantity: int,
    ) -> SearchResult:
        try:
            start, end = validate_range(check_in, check_out)
        except AllocationViolation as exc:
            return SearchResult(False, message=exc.message, error=exc.code)

        try:
            async with self._session_factory() as session:
                candidates = await catalog.list_catalog(
                    session, resource_type=resource_type, category=category, parent_ref=parent_ref
                )
                found: list[str] = []
                for resource in candidates:
                    result = await self._evaluate(
                        session, resource.resource_id, resource_type, start, end, resource=resource
                    )
                    if result.available and result.available_quantity >= quantity:
                        found.append(resource.resource_id)
        except SQLAlchemyError:
            logger.exception("Search failed for %s/%s", resource_type.value, category)
            return SearchResult(False, message="Failed to search resources", error="persistence_error")

        return SearchResult(True, found, f"{len(found)} of {len(candidates)} {resource_type.value}s available")

    async def find_available_rooms(
        self,
        property_id: str,
        room_type: str,
        check_in: datetime,
        check_out: datetime,
        quantity: int = 1,
    ) -> SearchResult:
        return await self._search(ResourceType.ROOM, room_type, property_id, check_in, check_out, quantity)

    async def find_available_vehicles(
        self,
        vehicle_type: str,
        pickup_date: datetime,
        return_date: datetime,
    ) -> SearchResult:
        return await self._search(ResourceType.VEHICLE, vehicle_type, None, pickup_date, return_date, 1)

    async def find_available_seats(self, flight_id: str, seat_class: str, required_seats: int = 1) -> SeatAvailability:
        """Free seats of a class on a flight. A seat is held by any active booking on it."""
        try:
            async with self._session_factory() as session:
                seats = await catalog.list_catalog(
                    session, resource_type=ResourceType.SEAT, category=seat_class, parent_ref=flight_id
                )
                seat_ids = [s.resource_id for s in seats]
                used: dict[str, int] = {}
                if seat_ids:
                    result = await session.execute(
                        select(Booking.resource_id, func.coalesce(func.sum(Booking.allocated_quantity), 0))
                        .where(
                            Booking.resource_type == ResourceType.SEAT,
                            Booking.resource_id.in_(seat_ids),
                            Booking.status.in_(ACTIVE_STATUSES),
                        )
                        .group_by(Booking.resource_id)
                    )
                    used = {row[0]: int(row[1]) for row in result.all()}
        except SQLAlchemyError:
            logger.exception("Seat search failed for flight %s", flight_id)
            return SeatAvailability(False, False, error="persistence_error")

        free_ids: list[str] = []
        free_total = 0
        for seat in seats:
            free = seat.capacity - used.get(seat.resource_id, 0)
            if free > 0:
                free_ids.append(seat.resource_id)
                free_total += free
        return SeatAvailability(True, free_total >= required_seats, free_ids, free_total)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def get_resource_bookings(
        self,
        resource_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> ListResult:
        """Non-cancelled bookings holding a resource, optionally within a window."""
        flt = ledger.BookingFilter(
            resource_id=resource_id,
            exclude_statuses=[BookingStatus.CANCELLED],
            start=start,
            end=end,
            limit=500,
        )
        try:
            async with self._session_factory() as session:
                bookings = await ledger.find_bookings(session, flt)
        except AllocationViolation as exc:
            return ListResult(False, message=exc.message, error=exc.code)
        except SQLAlchemyError:
            logger.exception("Failed to load bookings for resource %s", resource_id)
            return ListResult(False, message="Failed to load bookings", error="persistence_error")
        return ListResult(True, bookings, f"{len(bookings)} bookings")

    async def list_resources(
        self,
        resource_type: ResourceType | None = None,
        status: AvailabilityStatus | None = None,
    ) -> ListResult:
        """Catalog entries with the active bookings currently allocated to them."""
        try:
            async with self._session_factory() as session:
                resources = await catalog.list_catalog(session, resource_type=resource_type, active_only=False)
                query = select(Booking).where(Booking.resource_id.is_not(None), Booking.status.in_(ACTIVE_STATUSES))
                if resource_type is not None:
                    query = query.where(Booking.resource_type == resource_type)
                if status is not None:
                    query = query.where(Booking.availability_status == status)
                result = await session.execute(query.order_by(Booking.check_in_date))
                bookings = result.scalars().all()
        except SQLAlchemyError:
            logger.exception("Failed to list resources")
            return ListResult(False, message="Failed to list resources", error="persistence_error")

        by_key: dict[ResourceKey, list[Booking]] = {}
        for booking in bookings:
            by_key.setdefault((booking.resource_id, booking.resource_type), []).append(booking)

        summaries: list[ResourceSummary] = []
        for resource in resources:
            held = by_key.get((resource.resource_id, resource.resource_type), [])
            if status is not None and not held:
                continue
            summaries.append(
                ResourceSummary(
                    resource_id=resource.resource_id,
                    resource_type=resource.resource_type,
                    resource_name=resource.name,
                    capacity=resource.capacity,
                    status=held[-1].availability_status if held else None,
                    bookings=[
                        ResourceBooking(b.id, b.check_in_date, b.check_out_date, b.status) for b in held
                    ],
                )
            )
        return ListResult(True, summaries, f"{len(summaries)} resources")

    async def get_occupancy_stats(
        self,
        resource_type: ResourceType,
        start: datetime,
        end: datetime,
    ) -> ListResult:
        """Per-resource booking count, nights and revenue for confirmed bookings in a window."""
        try:
            window_start, window_end = validate_range(start, end)
        except AllocationViolation as exc:
            return ListResult(False, message=exc.message, error=exc.code)

        revenue = func.coalesce(func.sum(Booking.total_amount), 0)
        query = (
            select(
                Booking.resource_id,
                func.count(Booking.id),
                func.coalesce(func.sum(Booking.nights), 0),
                revenue,
                func.avg(Booking.total_amount),
            )
            .where(
                Booking.resource_type == resource_type,
                Booking.resource_id.is_not(None),
                Booking.status == BookingStatus.CONFIRMED,
                overlap_clause(window_start, window_end),
            )
            .group_by(Booking.resource_id)
            .order_by(revenue.desc(), Booking.resource_id)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(query)).all()
        except SQLAlchemyError:
            logger.exception("Occupancy stats failed for %s", resource_type.value)
            return ListResult(False, message="Failed to compute occupancy statistics", error="persistence_error")

        stats = [
            OccupancyStat(
                resource_id=row[0],
                total_bookings=int(row[1]),
                total_nights=int(row[2]),
                total_revenue=_money(row[3]),
                average_revenue=_money(row[4]),
            )
            for row in rows
        ]
        return ListResult(True, stats, f"{len(stats)} resources")
