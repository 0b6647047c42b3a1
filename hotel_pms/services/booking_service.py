"""Booking lifecycle: creation and the reservation state machine.

    pending -> confirmed -> checked_in -> checked_out
    pending | confirmed -> cancelled
    confirmed -> no_show            (only once the check-in date has passed)

Creation is atomic with respect to overlapping stays: besides the
availability query, every held night is written to ``booking_nights`` whose
UNIQUE(unit_key, night) rejects a concurrent overlapping insert, and that
violation is reported as ``RoomNotAvailable``.

Status writes are conditional on the status and version read beforehand.
A transition that loses a race fails with ``IllegalTransition`` carrying the
status actually stored.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hotel_pms.core.exceptions import IllegalTransition, InvalidInput, NotFound, RoomNotAvailable
from hotel_pms.db.session import translate_store_errors
from hotel_pms.models.booking import (
    HOLDING_STATUSES,
    Booking,
    BookingEvent,
    BookingNight,
    BookingStatus,
    PaymentStatus,
)
from hotel_pms.models.property import Hotel
from hotel_pms.schemas.booking import (
    BookingCreate,
    BookingFilters,
    BookingPage,
    BookingResponse,
    BookingStats,
)
from hotel_pms.services.availability_service import AvailabilityService, stay_nights
from hotel_pms.services.identity_service import IdentityService

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("audit")

CENT = Decimal("0.01")

ALLOWED_TRANSITIONS: Dict[BookingStatus, frozenset] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.CHECKED_IN, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.CHECKED_IN: frozenset({BookingStatus.CHECKED_OUT}),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _money(value: Any, field_name: str) -> Decimal:
    try:
        amount = Decimal(str(value)).quantize(CENT)
    except (InvalidOperation, ValueError) as exc:
        raise InvalidInput(f"{field_name} is not a valid amount", {"field": field_name}) from exc
    if amount < 0:
        raise InvalidInput(f"{field_name} cannot be negative", {"field": field_name})
    return amount


def _payment_status(paid: Decimal, total: Decimal) -> PaymentStatus:
    if paid <= 0:
        return PaymentStatus.PENDING
    if paid >= total:
        return PaymentStatus.PAID
    return PaymentStatus.PARTIAL


def _capture(paid: Decimal, total: Decimal, value: Any, field_name: str) -> Decimal:
    """Validate a captured amount against what is still due on the booking."""
    amount = _money(value, field_name)
    if paid + amount > total:
        raise InvalidInput(
            f"{field_name} {amount} exceeds the amount due ({total - paid})",
            {"field": field_name, "amount": str(amount), "due_amount": str(total - paid)},
        )
    return amount


def _validation_details(exc: ValidationError) -> Dict[str, Any]:
    return {
        "errors": [
            {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
            for err in exc.errors()
        ]
    }


class BookingService:
    """Creates reservations and moves them through their lifecycle."""

    def __init__(
        self,
        db: Session,
        identity: Optional[IdentityService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.identity = identity or IdentityService(db)
        self.availability = AvailabilityService(db)
        self.clock = clock

    # ===== CREATE =====

    def create_booking(
        self,
        data: Union[BookingCreate, Mapping[str, Any]],
        created_by: Optional[str] = None,
    ) -> Booking:
        """Persist a new ``pending`` reservation.

        Raises InvalidInput for malformed requests, RoomNotAvailable when the
        unit is taken or out of service, GenerationExhausted when no unique
        reference could be allocated.
        """
        request = self._parse_request(data)
        with translate_store_errors("create_booking"):
            try:
                booking = self._create(request, created_by)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(booking)
        logger.info(
            "Booking %s created for %s, %s -> %s",
            booking.booking_reference, booking.unit_key, booking.check_in_date, booking.check_out_date,
        )
        return booking

    def _parse_request(self, data: Union[BookingCreate, Mapping[str, Any]]) -> BookingCreate:
        if isinstance(data, BookingCreate):
            return data
        try:
            return BookingCreate.model_validate(data)
        except ValidationError as exc:
            raise InvalidInput("Invalid booking request", _validation_details(exc)) from exc

    def _create(self, request: BookingCreate, created_by: Optional[str]) -> Booking:
        hotel = self.db.get(Hotel, request.hotel_id)
        if hotel is None:
            raise NotFound("Hotel", request.hotel_id)
        if not hotel.is_active:
            raise InvalidInput(f"Hotel {hotel.hotel_id} is not active", {"hotel_id": hotel.hotel_id})

        room, bed = self.availability.load_unit(request.room_id, request.bed_id)
        if room.hotel_id != hotel.id:
            raise InvalidInput(
                f"Room {room.id} does not belong to hotel {hotel.hotel_id}",
                {"room_id": room.id, "hotel_id": hotel.hotel_id},
            )

        guests = request.adults + request.children
        nights = request.nights
        if bed is None:
            if room.is_dormitory:
                raise InvalidInput(
                    f"Room {room.room_number} is a dormitory; book an individual bed",
                    {"room_id": room.id},
                )
            if guests > room.max_occupancy:
                raise InvalidInput(
                    f"Room {room.room_number} sleeps at most {room.max_occupancy} guests",
                    {"room_id": room.id, "guests": guests, "max_occupancy": room.max_occupancy},
                )
        else:
            if guests != 1:
                raise InvalidInput("A bed booking is for exactly one guest", {"bed_id": bed.id, "guests": guests})
            if bed.min_stay_nights and nights < bed.min_stay_nights:
                raise InvalidInput(
                    f"Bed {bed.bed_number} requires at least {bed.min_stay_nights} nights",
                    {"bed_id": bed.id, "nights": nights},
                )
            if bed.max_stay_nights and nights > bed.max_stay_nights:
                raise InvalidInput(
                    f"Bed {bed.bed_number} allows at most {bed.max_stay_nights} nights",
                    {"bed_id": bed.id, "nights": nights},
                )

        pricing = request.pricing
        total = (
            pricing.nightly_rate * nights + pricing.tax_amount + pricing.service_charge - pricing.discount_amount
        ).quantize(CENT)
        if total < 0:
            raise InvalidInput("Discount exceeds the booking amount", {"total_amount": str(total)})

        result = self.availability.check_availability(
            room.id, request.check_in_date, request.check_out_date, bed_id=request.bed_id
        )
        unit = result.unit
        if not result.available:
            logger.info("Booking rejected for %s: %s %s", unit.unit_key, result.reason, result.conflicts)
            raise RoomNotAvailable(unit.unit_key, result.conflicts, reason=result.reason or "overlap")

        def persist(reference: str) -> Booking:
            booking = Booking(
                booking_reference=reference,
                hotel_pk=hotel.id,
                room_id=room.id,
                bed_id=unit.bed_id,
                unit_key=unit.unit_key,
                guest_details=request.guest.model_dump(mode="json"),
                adults=request.adults,
                children=request.children,
                check_in_date=request.check_in_date,
                check_out_date=request.check_out_date,
                nights=nights,
                nightly_rate=pricing.nightly_rate,
                tax_amount=pricing.tax_amount,
                service_charge=pricing.service_charge,
                discount_amount=pricing.discount_amount,
                total_amount=total,
                currency=pricing.currency.upper(),
                status=BookingStatus.PENDING,
                payment_status=PaymentStatus.PENDING,
                paid_amount=Decimal("0"),
                due_amount=total,
                booking_source=request.booking_source,
                special_requests=request.special_requests,
                created_by=created_by,
            )
            self.db.add(booking)
            self.db.flush()
            return booking

        booking = self.identity.persist_with_reference(
            hotel.entity_id, unit.accommodation_id, request.check_in_date, persist
        )

        try:
            with self.db.begin_nested():
                self.db.add_all(
                    BookingNight(booking_id=booking.id, unit_key=unit.unit_key, night=night)
                    for night in stay_nights(request.check_in_date, request.check_out_date)
                )
        except IntegrityError as exc:
            # A concurrent booking claimed one of these nights after our check
            conflicts = self.availability.overlapping_references(
                unit.unit_key, request.check_in_date, request.check_out_date, exclude_booking_id=booking.id
            )
            logger.info("Booking rejected for %s: lost race to %s", unit.unit_key, conflicts)
            raise RoomNotAvailable(unit.unit_key, conflicts) from exc

        self._record_event(booking, None, BookingStatus.PENDING, created_by, {})
        return booking

    # ===== TRANSITIONS =====

    def transition_booking(
        self,
        reference: str,
        target_status: Union[BookingStatus, str],
        actor: Optional[str],
        **details: Any,
    ) -> Booking:
        """Move a booking to ``target_status``.

        ``details`` carries the step's extras: ``paid_amount`` (confirm),
        ``payment_amount`` (check-out), ``reason`` and ``refund_amount``
        (cancel). Raises NotFound or IllegalTransition; on failure the stored
        booking is unchanged.
        """
        try:
            target = BookingStatus(target_status)
        except ValueError as exc:
            raise InvalidInput(f"Unknown booking status: {target_status}", {"status": str(target_status)}) from exc

        with translate_store_errors(f"transition_booking:{target.value}"):
            try:
                booking, previous, occurred_at = self._transition(reference, target, actor, details)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(booking)
        audit_logger.info(
            "Booking %s %s -> %s by %s at %s",
            reference, previous.value, target.value, actor or "system", occurred_at.isoformat(),
        )
        return booking

    def _get_by_reference(self, reference: str) -> Booking:
        booking = self.db.execute(
            select(Booking).where(Booking.booking_reference == reference)
        ).scalar_one_or_none()
        if booking is None:
            raise NotFound("Booking", reference)
        return booking

    def _transition(self, reference: str, target: BookingStatus, actor: Optional[str], details: Dict[str, Any]):
        booking = self._get_by_reference(reference)
        current = booking.status
        if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
            raise IllegalTransition(reference, current.value, target.value)

        now = self.clock()
        if target == BookingStatus.NO_SHOW and not now.date() > booking.check_in_date:
            raise IllegalTransition(
                reference, current.value, target.value,
                reason=f"check-in date {booking.check_in_date.isoformat()} has not passed",
            )

        values, event_details = self._step_values(booking, target, actor, now, details)
        values["status"] = target
        values["version"] = Booking.version + 1

        result = self.db.execute(
            update(Booking)
            .where(
                Booking.id == booking.id,
                Booking.status == current,
                Booking.version == booking.version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.refresh(booking)
            raise IllegalTransition(
                reference, booking.status.value, target.value, reason="booking was modified concurrently"
            )

        if target not in HOLDING_STATUSES:
            self.db.execute(
                delete(BookingNight)
                .where(BookingNight.booking_id == booking.id)
                .execution_options(synchronize_session=False)
            )

        self._record_event(booking, current, target, actor, event_details, occurred_at=now)
        self.db.expire(booking)
        return booking, current, now

    def _step_values(self, booking: Booking, target: BookingStatus, actor, now: datetime, details: Dict[str, Any]):
        values: Dict[str, Any] = {}
        event_details: Dict[str, Any] = {}
        total = booking.total_amount
        paid = booking.paid_amount

        if target == BookingStatus.CONFIRMED:
            values["confirmed_at"] = now
            if details.get("paid_amount") is not None:
                captured = _capture(paid, total, details["paid_amount"], "paid_amount")
                paid = paid + captured
                values.update(
                    paid_amount=paid,
                    due_amount=total - paid,
                    payment_status=_payment_status(paid, total),
                )
                event_details["paid_amount"] = str(captured)

        elif target == BookingStatus.CHECKED_IN:
            values.update(checked_in_at=now, checked_in_by=actor)

        elif target == BookingStatus.CHECKED_OUT:
            if details.get("payment_amount") is not None:
                collected = _capture(paid, total, details["payment_amount"], "payment_amount")
                paid = paid + collected
                event_details["payment_amount"] = str(collected)
            values.update(
                checked_out_at=now,
                checked_out_by=actor,
                paid_amount=paid,
                due_amount=total - paid,
                payment_status=_payment_status(paid, total),
            )

        elif target == BookingStatus.CANCELLED:
            reason = details.get("reason")
            values.update(cancelled_at=now, cancelled_by=actor, cancellation_reason=reason)
            event_details["reason"] = reason
            if details.get("refund_amount") is not None:
                refund = _money(details["refund_amount"], "refund_amount")
                if refund > paid:
                    raise InvalidInput(
                        f"Refund {refund} exceeds the amount paid ({paid})",
                        {"refund_amount": str(refund), "paid_amount": str(paid)},
                    )
                values["refund_amount"] = refund
                if refund > 0:
                    values["payment_status"] = PaymentStatus.REFUNDED
                event_details["refund_amount"] = str(refund)

        elif target == BookingStatus.NO_SHOW:
            values["no_show_at"] = now

        return values, event_details

    def _record_event(
        self,
        booking: Booking,
        from_status: Optional[BookingStatus],
        to_status: BookingStatus,
        actor: Optional[str],
        details: Dict[str, Any],
        occurred_at: Optional[datetime] = None,
    ) -> None:
        self.db.add(
            BookingEvent(
                booking_id=booking.id,
                from_status=from_status,
                to_status=to_status,
                actor=actor,
                occurred_at=occurred_at or self.clock(),
                details=details or None,
            )
        )
        self.db.flush()

    def confirm(self, reference: str, actor: Optional[str] = None, paid_amount: Any = None) -> Booking:
        return self.transition_booking(reference, BookingStatus.CONFIRMED, actor, paid_amount=paid_amount)

    def check_in(self, reference: str, actor: str) -> Booking:
        return self.transition_booking(reference, BookingStatus.CHECKED_IN, actor)

    def check_out(self, reference: str, actor: str, payment_amount: Any = None) -> Booking:
        return self.transition_booking(reference, BookingStatus.CHECKED_OUT, actor, payment_amount=payment_amount)

    def cancel(
        self,
        reference: str,
        actor: Optional[str],
        reason: Optional[str] = None,
        refund_amount: Any = None,
    ) -> Booking:
        return self.transition_booking(
            reference, BookingStatus.CANCELLED, actor, reason=reason, refund_amount=refund_amount
        )

    def mark_no_show(self, reference: str, actor: Optional[str] = None) -> Booking:
        return self.transition_booking(reference, BookingStatus.NO_SHOW, actor)

    # ===== QUERIES =====

    def get_booking(self, reference: str) -> Booking:
        return self._get_by_reference(reference)

    def list_events(self, reference: str) -> List[BookingEvent]:
        booking = self._get_by_reference(reference)
        return list(
            self.db.execute(
                select(BookingEvent).where(BookingEvent.booking_id == booking.id).order_by(BookingEvent.id)
            ).scalars()
        )

    def list_bookings(
        self,
        filters: Optional[BookingFilters] = None,
        page: int = 1,
        limit: int = 20,
    ) -> BookingPage:
        if page < 1 or limit < 1:
            raise InvalidInput("page and limit must be positive", {"page": page, "limit": limit})
        filters = filters or BookingFilters()

        query = self.db.query(Booking)
        if filters.hotel_id is not None:
            query = query.filter(Booking.hotel_pk == filters.hotel_id)
        if filters.status is not None:
            query = query.filter(Booking.status == filters.status)
        if filters.room_id is not None:
            query = query.filter(Booking.room_id == filters.room_id)
        if filters.date_from is not None:
            query = query.filter(Booking.check_in_date >= filters.date_from)
        if filters.date_to is not None:
            query = query.filter(Booking.check_out_date <= filters.date_to)

        total = query.count()
        rows = (
            query.order_by(Booking.check_in_date.desc(), Booking.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return BookingPage(
            items=[BookingResponse.model_validate(row) for row in rows],
            total=total,
            page=page,
            pages=(total + limit - 1) // limit,
        )

    def booking_stats(
        self,
        hotel_pk: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> BookingStats:
        """Counts per status plus revenue; cancelled and no-show stays earn nothing."""
        conditions = []
        if hotel_pk is not None:
            conditions.append(Booking.hotel_pk == hotel_pk)
        if date_from is not None:
            conditions.append(Booking.check_in_date >= date_from)
        if date_to is not None:
            conditions.append(Booking.check_in_date <= date_to)

        counts = dict(
            self.db.execute(
                select(Booking.status, func.count(Booking.id)).where(*conditions).group_by(Booking.status)
            ).all()
        )
        earning = conditions + [Booking.status.notin_([BookingStatus.CANCELLED, BookingStatus.NO_SHOW])]
        revenue, average_rate = self.db.execute(
            select(func.sum(Booking.total_amount), func.avg(Booking.nightly_rate)).where(*earning)
        ).one()

        return BookingStats(
            total_bookings=sum(counts.values()),
            pending_bookings=counts.get(BookingStatus.PENDING, 0),
            confirmed_bookings=counts.get(BookingStatus.CONFIRMED, 0),
            checked_in=counts.get(BookingStatus.CHECKED_IN, 0),
            checked_out=counts.get(BookingStatus.CHECKED_OUT, 0),
            cancelled_bookings=counts.get(BookingStatus.CANCELLED, 0),
            no_shows=counts.get(BookingStatus.NO_SHOW, 0),
            total_revenue=Decimal(str(revenue or 0)).quantize(CENT),
            average_rate=Decimal(str(average_rate or 0)).quantize(CENT),
        )
