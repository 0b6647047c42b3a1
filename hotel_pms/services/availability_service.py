"""Availability of rooms and beds over half-open date ranges.

A stay occupies the nights ``[check_in, check_out)``: a booking ending on
the 5th and another starting on the 5th do not overlap. Only reservations
in a holding status (pending, confirmed, checked_in) block a unit.

This service only answers questions. Making the answer stick is the
booking service's job (see ``BookingNight``).
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from hotel_pms.core.exceptions import InvalidInput, NotFound
from hotel_pms.models.booking import HOLDING_STATUSES, Booking, unit_key_for
from hotel_pms.models.property import OUT_OF_SERVICE_STATUSES, Bed, Room

logger = logging.getLogger(__name__)


def coerce_date(value: Any, field_name: str) -> date:
    """Accept a calendar date or ISO string; timestamps are rejected."""
    if isinstance(value, datetime):
        raise InvalidInput(
            f"{field_name} must be a calendar date, not a timestamp",
            {"field": field_name},
        )
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
    raise InvalidInput(f"{field_name} is not a valid date: {value!r}", {"field": field_name})


def validate_stay(check_in: Any, check_out: Any) -> Tuple[date, date]:
    check_in = coerce_date(check_in, "check_in_date")
    check_out = coerce_date(check_out, "check_out_date")
    if check_out == check_in:
        raise InvalidInput(
            "Zero-night stay: check_out_date must be after check_in_date",
            {"check_in_date": check_in.isoformat(), "check_out_date": check_out.isoformat()},
        )
    if check_out < check_in:
        raise InvalidInput(
            "check_out_date must be after check_in_date",
            {"check_in_date": check_in.isoformat(), "check_out_date": check_out.isoformat()},
        )
    return check_in, check_out


def stay_nights(check_in: date, check_out: date) -> List[date]:
    return [check_in + timedelta(days=i) for i in range((check_out - check_in).days)]


@dataclass(frozen=True)
class AccommodationRef:
    room_id: int
    bed_id: Optional[int] = None

    @property
    def unit_key(self) -> str:
        return unit_key_for(self.room_id, self.bed_id)

    @property
    def accommodation_id(self) -> int:
        return self.bed_id if self.bed_id is not None else self.room_id


@dataclass
class AvailabilityResult:
    unit: AccommodationRef
    available: bool
    conflicts: List[str] = field(default_factory=list)
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit": self.unit.unit_key,
            "available": self.available,
            "conflicts": self.conflicts,
            "reason": self.reason,
        }


class AvailabilityService:
    """Answers availability questions against stored reservations."""

    def __init__(self, db: Session):
        self.db = db

    def load_unit(self, room_id: int, bed_id: Optional[int] = None) -> Tuple[Room, Optional[Bed]]:
        room = self.db.get(Room, room_id)
        if room is None:
            raise NotFound("Room", room_id)
        bed = None
        if bed_id is not None:
            bed = self.db.get(Bed, bed_id)
            if bed is None:
                raise NotFound("Bed", bed_id)
            if bed.room_id != room.id:
                raise InvalidInput(
                    f"Bed {bed_id} does not belong to room {room_id}",
                    {"room_id": room_id, "bed_id": bed_id},
                )
            # Private rooms are held as a whole under their room key
            if not room.is_dormitory:
                raise InvalidInput(
                    f"Room {room.room_number} is not a dormitory; book the room, not bed {bed.bed_number}",
                    {"room_id": room_id, "bed_id": bed_id},
                )
        return room, bed

    @staticmethod
    def out_of_service_reason(room: Room, bed: Optional[Bed]) -> Optional[str]:
        if room.status.value in OUT_OF_SERVICE_STATUSES:
            return f"room_{room.status.value}"
        if bed is not None and bed.status.value in OUT_OF_SERVICE_STATUSES:
            return f"bed_{bed.status.value}"
        return None

    def overlapping_references(
        self,
        unit_key: str,
        check_in: date,
        check_out: date,
        exclude_booking_id: Optional[int] = None,
    ) -> List[str]:
        stmt = (
            select(Booking.booking_reference)
            .where(
                Booking.unit_key == unit_key,
                Booking.status.in_(HOLDING_STATUSES),
                Booking.check_in_date < check_out,
                check_in < Booking.check_out_date,
            )
            .order_by(Booking.check_in_date)
        )
        if exclude_booking_id is not None:
            stmt = stmt.where(Booking.id != exclude_booking_id)
        return list(self.db.execute(stmt).scalars())

    def check_availability(
        self,
        room_id: int,
        check_in: Any,
        check_out: Any,
        bed_id: Optional[int] = None,
    ) -> AvailabilityResult:
        check_in, check_out = validate_stay(check_in, check_out)
        room, bed = self.load_unit(room_id, bed_id)
        unit = AccommodationRef(room.id, bed.id if bed else None)

        reason = self.out_of_service_reason(room, bed)
        if reason:
            return AvailabilityResult(unit, available=False, reason=reason)

        conflicts = self.overlapping_references(unit.unit_key, check_in, check_out)
        if conflicts:
            return AvailabilityResult(unit, available=False, conflicts=conflicts, reason="overlap")
        return AvailabilityResult(unit, available=True)

    # ===== HOTEL-WIDE QUERIES =====

    def _holding_in_window(self, hotel_pk: int, start: date, end: date) -> List[Booking]:
        stmt = select(Booking).where(
            Booking.hotel_pk == hotel_pk,
            Booking.status.in_(HOLDING_STATUSES),
            Booking.check_in_date < end,
            start < Booking.check_out_date,
        )
        return list(self.db.execute(stmt).scalars())

    def find_available_units(
        self,
        hotel_pk: int,
        check_in: Any,
        check_out: Any,
        room_type: Optional[str] = None,
    ) -> List[AccommodationRef]:
        """Units (rooms, or beds of dormitory rooms) free for the whole stay."""
        check_in, check_out = validate_stay(check_in, check_out)
        busy: Set[str] = {b.unit_key for b in self._holding_in_window(hotel_pk, check_in, check_out)}

        stmt = select(Room).where(Room.hotel_id == hotel_pk).order_by(Room.room_number)
        if room_type:
            stmt = stmt.where(Room.room_type == room_type)

        units: List[AccommodationRef] = []
        for room in self.db.execute(stmt).scalars():
            if self.out_of_service_reason(room, None):
                continue
            if room.is_dormitory:
                for bed in sorted(room.beds, key=lambda b: b.bed_number):
                    ref = AccommodationRef(room.id, bed.id)
                    if not self.out_of_service_reason(room, bed) and ref.unit_key not in busy:
                        units.append(ref)
            else:
                ref = AccommodationRef(room.id)
                if ref.unit_key not in busy:
                    units.append(ref)
        return units

    def occupancy_report(self, hotel_pk: int, start: Any, end: Any) -> Dict[str, Any]:
        """Occupied and available nights per room over ``[start, end)``.

        Dormitory rooms count bed-nights, so their capacity is nights x beds.
        """
        start, end = validate_stay(start, end)
        window_nights = (end - start).days
        bookings = self._holding_in_window(hotel_pk, start, end)

        occupied_by_room: Dict[int, int] = {}
        count_by_room: Dict[int, int] = {}
        for booking in bookings:
            overlap = (min(booking.check_out_date, end) - max(booking.check_in_date, start)).days
            occupied_by_room[booking.room_id] = occupied_by_room.get(booking.room_id, 0) + max(0, overlap)
            count_by_room[booking.room_id] = count_by_room.get(booking.room_id, 0) + 1

        rooms = self.db.execute(
            select(Room).where(Room.hotel_id == hotel_pk).order_by(Room.room_number)
        ).scalars().all()

        rows = []
        for room in rooms:
            capacity = window_nights * (len(room.beds) if room.is_dormitory else 1)
            occupied = occupied_by_room.get(room.id, 0)
            rows.append({
                "room_id": room.id,
                "room_number": room.room_number,
                "room_type": room.room_type,
                "total_nights": capacity,
                "occupied_nights": occupied,
                "available_nights": capacity - occupied,
                "occupancy_rate": round(occupied / capacity * 100, 2) if capacity else 0.0,
                "bookings": count_by_room.get(room.id, 0),
            })

        total = sum(r["total_nights"] for r in rows)
        occupied_total = sum(r["occupied_nights"] for r in rows)
        return {
            "hotel_id": hotel_pk,
            "period": {"start_date": start.isoformat(), "end_date": end.isoformat()},
            "summary": {
                "total_rooms": len(rows),
                "total_nights": total,
                "occupied_nights": occupied_total,
                "available_nights": total - occupied_total,
                "overall_occupancy_rate": round(occupied_total / total * 100, 2) if total else 0.0,
            },
            "rooms": rows,
        }

    def calendar(self, hotel_pk: int, start: Any, end: Any) -> List[Dict[str, Any]]:
        """Holding reservations intersecting ``[start, end)``, one event each."""
        start, end = validate_stay(start, end)
        events = []
        for booking in sorted(self._holding_in_window(hotel_pk, start, end), key=lambda b: (b.check_in_date, b.id)):
            guest = booking.guest_details or {}
            events.append({
                "id": booking.booking_reference,
                "title": f"{guest.get('first_name', '')} {guest.get('last_name', '')}".strip(),
                "start": booking.check_in_date.isoformat(),
                "end": booking.check_out_date.isoformat(),
                "room_id": booking.room_id,
                "bed_id": booking.bed_id,
                "status": booking.status.value,
            })
        return events
