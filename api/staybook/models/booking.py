"""Booking model.

A booking reserves a resource for a guest over a half-open date range
[check_in_date, check_out_date). This is the core transactional entity:
the ledger of record for occupancy.

What was booked is a tagged reference: booking_type is the tag, target_id
the referenced entity and target_detail the optional sub-selector (room type
for properties, seat class for flights). Which resource unit ended up
holding the booking is the embedded allocation (resource_* columns), written
only by the Availability Engine.
"""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Enum, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from staybook.models.base import Base, JSONType, TimestampMixin
from staybook.models.resource import ResourceType


class BookingType(str, enum.Enum):
    PROPERTY = "property"
    SERVICE = "service"
    FLIGHT = "flight"
    CAR_RENTAL = "car-rental"
    TRANSFER = "transfer"
    PACKAGE = "package"


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no-show"


class AvailabilityStatus(str, enum.Enum):
    AVAILABLE = "available"
    ALLOCATED = "allocated"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"
    BLOCKED = "blocked"


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


# Only these ledger statuses hold capacity
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)

# Columns owned by the Availability Engine
ALLOCATION_FIELDS = frozenset(
    {
        "resource_id",
        "resource_type",
        "resource_name",
        "capacity",
        "allocated_quantity",
        "availability_status",
        "assigned_by",
        "assigned_at",
        "allocation_notes",
    }
)


def _enum(cls: type[enum.Enum], name: str) -> Enum:
    return Enum(cls, name=name, values_callable=lambda e: [x.value for x in e])


class Booking(TimestampMixin, Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(primary_key=True)
    reservation_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # What
    booking_type: Mapped[BookingType] = mapped_column(_enum(BookingType, "booking_type"), nullable=False)
    target_id: Mapped[str] = mapped_column(String(100), nullable=False)
    target_detail: Mapped[str | None] = mapped_column(String(100))

    # When
    check_in_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    check_out_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    nights: Mapped[int] = mapped_column(default=1, nullable=False)

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus, "booking_status"),
        default=BookingStatus.PENDING,
        nullable=False,
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[str | None] = mapped_column(Text)
    checked_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    checked_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Allocation
    resource_id: Mapped[str | None] = mapped_column(String(100))
    resource_type: Mapped[ResourceType | None] = mapped_column(_enum(ResourceType, "resource_type"))
    resource_name: Mapped[str | None] = mapped_column(String(200))
    capacity: Mapped[int | None] = mapped_column()
    allocated_quantity: Mapped[int] = mapped_column(default=0, nullable=False)
    availability_status: Mapped[AvailabilityStatus | None] = mapped_column(
        _enum(AvailabilityStatus, "availability_status")
    )
    assigned_by: Mapped[str | None] = mapped_column(String(64))
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    allocation_notes: Mapped[str | None] = mapped_column(Text)

    # Payment summary (owned by the payments service, read-only here)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, "payment_status"),
        default=PaymentStatus.UNPAID,
        nullable=False,
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="VUV", nullable=False)

    # Metadata
    notes: Mapped[str | None] = mapped_column(Text)
    extra: Mapped[dict | None] = mapped_column(JSONType, default=dict)

    version: Mapped[int] = mapped_column(default=1, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("check_in_date < check_out_date", name="ck_bookings_range"),
        CheckConstraint("allocated_quantity >= 0", name="ck_bookings_quantity"),
        # Conflict lookups: resource + range, filtered by status
        Index("ix_bookings_resource_range", "resource_id", "resource_type", "check_in_date", "check_out_date"),
        Index("ix_bookings_user", "user_id", "check_in_date"),
        Index("ix_bookings_type_status", "resource_type", "status"),
        Index("ix_bookings_target", "booking_type", "target_id"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_allocated(self) -> bool:
        return self.resource_id is not None and self.availability_status is not None

    def __repr__(self) -> str:
        return f"<Booking {self.reservation_number} {self.check_in_date}-{self.check_out_date} resource={self.resource_id}>"
