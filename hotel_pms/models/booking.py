"""Reservations, their held nights, and the transition audit trail."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hotel_pms.db.base import Base, TimestampMixin, VersionMixin


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class BookingSource(str, Enum):
    DIRECT = "direct"
    OTA = "ota"
    PHONE = "phone"
    WALK_IN = "walk_in"
    AGENT = "agent"
    WEBSITE = "website"


# Statuses that block the unit for the booking's nights
HOLDING_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN}
)


def unit_key_for(room_id: int, bed_id: Optional[int] = None) -> str:
    """Inventory key: a bed when one is given, otherwise the room."""
    return f"bed:{bed_id}" if bed_id is not None else f"room:{room_id}"


class Booking(Base, TimestampMixin, VersionMixin):
    """Room or bed reservation. Never deleted; cancellation is a status."""

    __tablename__ = "hotel_bookings"
    __table_args__ = (
        CheckConstraint("check_out_date > check_in_date", name="ck_booking_positive_stay"),
        Index("ix_booking_unit_status", "unit_key", "status"),
        Index("ix_booking_hotel_dates", "hotel_pk", "check_in_date", "check_out_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_reference: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)
    hotel_pk: Mapped[int] = mapped_column(ForeignKey("hotels.id"), nullable=False)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id"), nullable=False)
    bed_id: Mapped[Optional[int]] = mapped_column(ForeignKey("beds.id"), nullable=True)
    unit_key: Mapped[str] = mapped_column(String(32), nullable=False)

    guest_details: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    adults: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    children: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    check_in_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_out_date: Mapped[date] = mapped_column(Date, nullable=False)
    nights: Mapped[int] = mapped_column(Integer, nullable=False)

    nightly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    service_charge: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)

    status: Mapped[BookingStatus] = mapped_column(
        SQLEnum(BookingStatus), default=BookingStatus.PENDING, nullable=False
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    due_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    booking_source: Mapped[BookingSource] = mapped_column(
        SQLEnum(BookingSource), default=BookingSource.DIRECT, nullable=False
    )
    special_requests: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    checked_in_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    checked_out_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    checked_out_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    no_show_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    held_nights: Mapped[List["BookingNight"]] = relationship(
        back_populates="booking", cascade="all, delete-orphan"
    )
    events: Mapped[List["BookingEvent"]] = relationship(
        back_populates="booking", order_by="BookingEvent.id"
    )

    @property
    def holds_inventory(self) -> bool:
        return self.status in HOLDING_STATUSES


class BookingNight(Base):
    """One held night of one accommodation unit.

    The unique constraint is the store-level guard against double booking:
    two holding reservations for overlapping dates would need the same
    (unit_key, night) row. Rows exist only while the booking holds inventory.
    """

    __tablename__ = "booking_nights"
    __table_args__ = (UniqueConstraint("unit_key", "night", name="uq_booking_night_per_unit"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_id: Mapped[int] = mapped_column(
        ForeignKey("hotel_bookings.id", ondelete="CASCADE"), index=True, nullable=False
    )
    unit_key: Mapped[str] = mapped_column(String(32), nullable=False)
    night: Mapped[date] = mapped_column(Date, nullable=False)

    booking: Mapped[Booking] = relationship(back_populates="held_nights")


class BookingEvent(Base):
    """Audit record of one lifecycle step."""

    __tablename__ = "booking_events"

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("hotel_bookings.id"), index=True, nullable=False)
    from_status: Mapped[Optional[BookingStatus]] = mapped_column(SQLEnum(BookingStatus), nullable=True)
    to_status: Mapped[BookingStatus] = mapped_column(SQLEnum(BookingStatus), nullable=False)
    actor: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    booking: Mapped[Booking] = relationship(back_populates="events")
