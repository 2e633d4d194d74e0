"""All models imported here for Alembic autogenerate discovery."""

from staybook.models.base import Base
from staybook.models.booking import (
    ACTIVE_STATUSES,
    AvailabilityStatus,
    Booking,
    BookingStatus,
    BookingType,
    PaymentStatus,
)
from staybook.models.resource import Resource, ResourceType

__all__ = [
    "Base",
    "Resource",
    "ResourceType",
    "Booking",
    "BookingType",
    "BookingStatus",
    "AvailabilityStatus",
    "PaymentStatus",
    "ACTIVE_STATUSES",
]
