"""Vendors, hotels and their inventory (rooms and beds)."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hotel_pms.db.base import Base, TimestampMixin


class RoomStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"
    OUT_OF_ORDER = "out_of_order"


class BedStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"


# Static statuses that take a unit out of service regardless of dates
OUT_OF_SERVICE_STATUSES = {"maintenance", "out_of_order"}


class Vendor(Base, TimestampMixin):
    """Operator owning one or more hotels."""

    __tablename__ = "vendors"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    hotels: Mapped[List["Hotel"]] = relationship(back_populates="vendor")


class Hotel(Base, TimestampMixin):
    """A property. Never deleted, only deactivated."""

    __tablename__ = "hotels"

    id: Mapped[int] = mapped_column(primary_key=True)
    hotel_id: Mapped[str] = mapped_column(String(10), unique=True, index=True, nullable=False)
    vendor_id: Mapped[Optional[int]] = mapped_column(ForeignKey("vendors.id"), nullable=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    vendor: Mapped[Optional[Vendor]] = relationship(back_populates="hotels")
    rooms: Mapped[List["Room"]] = relationship(back_populates="hotel")

    @property
    def entity_id(self) -> int:
        """Ownership prefix for booking references: vendor if any, else hotel."""
        return self.vendor_id or self.id


class Room(Base, TimestampMixin):
    __tablename__ = "rooms"
    __table_args__ = (UniqueConstraint("hotel_id", "room_number", name="uq_room_number_per_hotel"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    hotel_id: Mapped[int] = mapped_column(ForeignKey("hotels.id"), index=True, nullable=False)
    room_number: Mapped[str] = mapped_column(String(50), nullable=False)
    room_type: Mapped[str] = mapped_column(String(100), default="standard", nullable=False)
    floor_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_occupancy: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    is_dormitory: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[RoomStatus] = mapped_column(
        SQLEnum(RoomStatus), default=RoomStatus.AVAILABLE, nullable=False, index=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    hotel: Mapped[Hotel] = relationship(back_populates="rooms")
    beds: Mapped[List["Bed"]] = relationship(back_populates="room")


class Bed(Base, TimestampMixin):
    """A bed inside a room.

    Beds are bookable units only when their room is a dormitory; a bed in a
    private room is inventory detail and the room is booked as a whole.
    """

    __tablename__ = "beds"
    __table_args__ = (UniqueConstraint("room_id", "bed_number", name="uq_bed_number_per_room"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id"), index=True, nullable=False)
    bed_number: Mapped[str] = mapped_column(String(50), nullable=False)
    bed_type: Mapped[str] = mapped_column(String(20), default="single", nullable=False)
    status: Mapped[BedStatus] = mapped_column(
        SQLEnum(BedStatus), default=BedStatus.AVAILABLE, nullable=False, index=True
    )
    min_stay_nights: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_stay_nights: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    room: Mapped[Room] = relationship(back_populates="beds")
