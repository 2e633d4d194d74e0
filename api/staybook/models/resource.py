"""Resource catalog model.

A resource is anything a booking can hold: a room type at a property, a
vehicle, a seat class on a flight, a staff slot, a piece of equipment.
Capacity lives here, not on the bookings that reference it. The catalog
row doubles as the per-resource lock row for allocation.
"""

import enum

from sqlalchemy import Boolean, CheckConstraint, Enum, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from staybook.models.base import Base, JSONType, TimestampMixin


class ResourceType(str, enum.Enum):
    ROOM = "room"
    SEAT = "seat"
    VEHICLE = "vehicle"
    STAFF = "staff"
    EQUIPMENT = "equipment"


class Resource(TimestampMixin, Base):
    __tablename__ = "resources"

    id: Mapped[int] = mapped_column(primary_key=True)
    resource_id: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_type: Mapped[ResourceType] = mapped_column(
        Enum(ResourceType, name="resource_type", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    name: Mapped[str | None] = mapped_column(String(200))

    # Room type for rooms, vehicle type for vehicles, seat class for seats
    category: Mapped[str | None] = mapped_column(String(100))
    # Property id for rooms, flight id for seats
    parent_ref: Mapped[str | None] = mapped_column(String(100))

    capacity: Mapped[int] = mapped_column(default=1, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    config: Mapped[dict | None] = mapped_column(JSONType, default=dict)

    __table_args__ = (
        Index("ix_resources_key", "resource_id", "resource_type", unique=True),
        Index("ix_resources_search", "resource_type", "parent_ref", "category"),
        CheckConstraint("capacity > 0", name="ck_resources_capacity_positive"),
    )

    def __repr__(self) -> str:
        return f"<Resource {self.resource_type.value}:{self.resource_id} capacity={self.capacity}>"
