"""Booking request/response schemas."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

from hotel_pms.models.booking import BookingSource, BookingStatus, PaymentStatus


class GuestDetails(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: str = Field(..., min_length=3, max_length=30)
    nationality: Optional[str] = None
    id_type: Optional[str] = None
    id_number: Optional[str] = None


class BookingPricing(BaseModel):
    """Nightly rate and adjustments; the total is derived, not supplied."""
    nightly_rate: Decimal = Field(..., ge=0)
    tax_amount: Decimal = Field(Decimal("0"), ge=0)
    service_charge: Decimal = Field(Decimal("0"), ge=0)
    discount_amount: Decimal = Field(Decimal("0"), ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)


class BookingCreate(BaseModel):
    """Create booking request. ``bed_id`` targets a dormitory bed."""
    hotel_id: int
    room_id: int
    bed_id: Optional[int] = None
    guest: GuestDetails
    adults: int = Field(1, ge=1, le=20)
    children: int = Field(0, ge=0, le=20)
    check_in_date: date
    check_out_date: date
    pricing: BookingPricing
    booking_source: BookingSource = BookingSource.DIRECT
    special_requests: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def validate_stay(self) -> "BookingCreate":
        if self.check_out_date == self.check_in_date:
            raise ValueError("zero-night stay: check_out_date must be after check_in_date")
        if self.check_out_date < self.check_in_date:
            raise ValueError("check_out_date must be after check_in_date")
        return self

    @property
    def nights(self) -> int:
        return (self.check_out_date - self.check_in_date).days


class BookingResponse(BaseModel):
    id: int
    booking_reference: str
    hotel_pk: int
    room_id: int
    bed_id: Optional[int] = None
    check_in_date: date
    check_out_date: date
    nights: int
    adults: int
    children: int
    status: BookingStatus
    payment_status: PaymentStatus
    total_amount: Decimal
    paid_amount: Decimal
    due_amount: Decimal
    refund_amount: Optional[Decimal] = None
    currency: str
    booking_source: BookingSource
    checked_in_at: Optional[datetime] = None
    checked_in_by: Optional[str] = None
    checked_out_at: Optional[datetime] = None
    checked_out_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None

    model_config = {"from_attributes": True}


class BookingEventResponse(BaseModel):
    from_status: Optional[BookingStatus] = None
    to_status: BookingStatus
    actor: Optional[str] = None
    occurred_at: datetime
    details: Optional[Dict] = None

    model_config = {"from_attributes": True}


class BookingFilters(BaseModel):
    hotel_id: Optional[int] = None
    status: Optional[BookingStatus] = None
    room_id: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


class BookingStats(BaseModel):
    total_bookings: int = 0
    pending_bookings: int = 0
    confirmed_bookings: int = 0
    checked_in: int = 0
    checked_out: int = 0
    cancelled_bookings: int = 0
    no_shows: int = 0
    total_revenue: Decimal = Decimal("0")
    average_rate: Decimal = Decimal("0")


class BookingPage(BaseModel):
    items: List[BookingResponse]
    total: int
    page: int
    pages: int
