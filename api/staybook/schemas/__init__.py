"""Pydantic schemas for API serialisation."""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from staybook.models.booking import AvailabilityStatus, BookingStatus, BookingType, PaymentStatus
from staybook.models.resource import ResourceType
from staybook.services.allocation_rules import ensure_utc

# Stored values come back naive from some backends; responses are always UTC
UTCDatetime = Annotated[datetime, AfterValidator(ensure_utc)]

# --- Booking targets ---
#
# One variant per booking type. The `kind` tag picks the variant, so a
# booking can never reference a flight and a property at the same time.


class PropertyTarget(BaseModel):
    kind: Literal["property"] = "property"
    property_id: str
    room_type: str | None = None

    def reference(self) -> tuple[BookingType, str, str | None]:
        return BookingType.PROPERTY, self.property_id, self.room_type


class ServiceTarget(BaseModel):
    kind: Literal["service"] = "service"
    service_id: str

    def reference(self) -> tuple[BookingType, str, str | None]:
        return BookingType.SERVICE, self.service_id, None


class FlightTarget(BaseModel):
    kind: Literal["flight"] = "flight"
    flight_id: str
    seat_class: Literal["economy", "business", "first"] | None = None

    def reference(self) -> tuple[BookingType, str, str | None]:
        return BookingType.FLIGHT, self.flight_id, self.seat_class


class CarRentalTarget(BaseModel):
    kind: Literal["car-rental"] = "car-rental"
    car_rental_id: str

    def reference(self) -> tuple[BookingType, str, str | None]:
        return BookingType.CAR_RENTAL, self.car_rental_id, None


class TransferTarget(BaseModel):
    kind: Literal["transfer"] = "transfer"
    transfer_id: str

    def reference(self) -> tuple[BookingType, str, str | None]:
        return BookingType.TRANSFER, self.transfer_id, None


class PackageTarget(BaseModel):
    kind: Literal["package"] = "package"
    package_id: str

    def reference(self) -> tuple[BookingType, str, str | None]:
        return BookingType.PACKAGE, self.package_id, None


BookingTarget = Annotated[
    Union[PropertyTarget, ServiceTarget, FlightTarget, CarRentalTarget, TransferTarget, PackageTarget],
    Field(discriminator="kind"),
]


# --- Resources ---


class ResourceCreate(BaseModel):
    resource_id: str = Field(min_length=1, max_length=100)
    resource_type: ResourceType
    name: str | None = None
    category: str | None = None
    parent_ref: str | None = None
    capacity: int = Field(default=1, gt=0)
    is_active: bool = True


class ResourceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    resource_id: str
    resource_type: ResourceType
    name: str | None
    category: str | None
    parent_ref: str | None
    capacity: int
    is_active: bool


class AllocationRequest(BaseModel):
    """What to allocate. Used standalone and embedded in BookingCreate."""

    resource_id: str = Field(min_length=1, max_length=100)
    resource_type: ResourceType
    resource_name: str | None = None
    capacity: int = Field(default=1, gt=0)
    quantity: int = Field(default=1, gt=0)
    notes: str | None = None


class AllocateRequest(AllocationRequest):
    booking_id: int


class StatusUpdateRequest(BaseModel):
    status: AvailabilityStatus


class AvailabilityCheckRequest(BaseModel):
    resource_id: str
    resource_type: ResourceType
    check_in_date: datetime
    check_out_date: datetime
    exclude_booking_id: int | None = None


class ConflictOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    reservation_number: str
    status: BookingStatus
    check_in_date: UTCDatetime
    check_out_date: UTCDatetime
    allocated_quantity: int
    capacity: int | None


class AvailabilityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    success: bool
    available: bool
    conflicting_bookings: list[ConflictOut]
    available_quantity: int
    total_capacity: int
    message: str
    error: str | None = None


class AvailableResourcesOut(BaseModel):
    available: bool
    count: int
    resources: list[str]


class SeatAvailabilityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    available: bool
    seat_ids: list[str]
    free_seats: int


class OccupancyStatOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    resource_id: str
    total_bookings: int
    total_nights: int
    total_revenue: Decimal
    average_revenue: Decimal


class OccupancyStatsOut(BaseModel):
    resource_type: ResourceType
    start_date: datetime
    end_date: datetime
    stats: list[OccupancyStatOut]


class ResourceBookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: int
    check_in_date: UTCDatetime
    check_out_date: UTCDatetime
    status: BookingStatus


class ResourceSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    resource_id: str
    resource_type: ResourceType
    resource_name: str | None
    capacity: int
    status: AvailabilityStatus | None
    bookings: list[ResourceBookingOut]


# --- Booking ---


class BookingCreate(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    target: BookingTarget
    check_in_date: datetime
    check_out_date: datetime
    status: Literal["pending", "confirmed"] = "pending"
    total_amount: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = Field(default="VUV", min_length=3, max_length=3)
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    notes: str | None = None
    # When present the booking is created and allocated in one transaction
    allocation: AllocationRequest | None = None


class BookingUpdate(BaseModel):
    notes: str | None = None
    payment_status: PaymentStatus | None = None
    total_amount: Decimal | None = Field(default=None, ge=0)
    extra: dict | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    reservation_number: str
    user_id: str
    booking_type: BookingType
    target_id: str
    target_detail: str | None
    check_in_date: UTCDatetime
    check_out_date: UTCDatetime
    nights: int
    status: BookingStatus

    resource_id: str | None
    resource_type: ResourceType | None
    resource_name: str | None
    capacity: int | None
    allocated_quantity: int
    availability_status: AvailabilityStatus | None
    assigned_by: str | None
    assigned_at: UTCDatetime | None

    payment_status: PaymentStatus
    total_amount: Decimal
    currency: str
    notes: str | None
    cancelled_at: UTCDatetime | None
    cancellation_reason: str | None
    created_at: UTCDatetime
