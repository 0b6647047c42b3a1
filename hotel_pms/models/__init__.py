"""Database models."""

from hotel_pms.models.account import HotelAccount, SequenceCounter
from hotel_pms.models.booking import (
    HOLDING_STATUSES,
    Booking,
    BookingEvent,
    BookingNight,
    BookingSource,
    BookingStatus,
    PaymentStatus,
    unit_key_for,
)
from hotel_pms.models.property import (
    OUT_OF_SERVICE_STATUSES,
    Bed,
    BedStatus,
    Hotel,
    Room,
    RoomStatus,
    Vendor,
)
from hotel_pms.models.role import Role, RoleType

__all__ = [
    "Bed",
    "BedStatus",
    "Booking",
    "BookingEvent",
    "BookingNight",
    "BookingSource",
    "BookingStatus",
    "HOLDING_STATUSES",
    "Hotel",
    "HotelAccount",
    "OUT_OF_SERVICE_STATUSES",
    "PaymentStatus",
    "Role",
    "RoleType",
    "Room",
    "RoomStatus",
    "SequenceCounter",
    "Vendor",
    "unit_key_for",
]
