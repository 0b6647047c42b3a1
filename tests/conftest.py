"""Pytest configuration and fixtures."""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Generator

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from hotel_pms.db.base import Base
from hotel_pms.db.session import build_engine
# Import all models to ensure they're registered with Base.metadata
from hotel_pms.models import *
from hotel_pms.schemas.account import HotelOnboard
from hotel_pms.services.booking_service import BookingService
from hotel_pms.services.hotel_service import HotelService
from hotel_pms.services.role_service import RoleService

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


class FixedClock:
    """Injectable clock for lifecycle rules that depend on today's date."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set_date(self, day: date) -> None:
        self.now = datetime(day.year, day.month, day.day, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = build_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def roles(db_session: Session) -> dict:
    """Install the default role catalogue; name -> Role."""
    return RoleService(db_session).install_default_roles()


@pytest.fixture
def onboarded(db_session: Session, roles):
    return HotelService(db_session).onboard_hotel(
        HotelOnboard(
            name="Seaside Inn",
            admin_email="admin@example.com",
            admin_full_name="Ada Admin",
        )
    )


@pytest.fixture
def hotel(onboarded) -> Hotel:
    return onboarded[0]


@pytest.fixture
def hotel_admin(onboarded) -> HotelAccount:
    return onboarded[1]


@pytest.fixture
def rooms(db_session: Session, hotel: Hotel) -> dict:
    """Two regular rooms, one under maintenance, and a three-bed dormitory."""
    standard = Room(hotel_id=hotel.id, room_number="101", room_type="standard", max_occupancy=2)
    suite = Room(hotel_id=hotel.id, room_number="102", room_type="suite", max_occupancy=4)
    closed = Room(
        hotel_id=hotel.id, room_number="201", room_type="standard",
        max_occupancy=2, status=RoomStatus.MAINTENANCE,
    )
    dorm = Room(hotel_id=hotel.id, room_number="D1", room_type="dormitory", max_occupancy=3, is_dormitory=True)
    db_session.add_all([standard, suite, closed, dorm])
    db_session.flush()

    beds = [
        Bed(room_id=dorm.id, bed_number="B1"),
        Bed(room_id=dorm.id, bed_number="B2"),
        Bed(room_id=dorm.id, bed_number="B3", min_stay_nights=2, max_stay_nights=5),
    ]
    db_session.add_all(beds)
    db_session.commit()
    return {
        "standard": standard,
        "suite": suite,
        "closed": closed,
        "dorm": dorm,
        "beds": beds,
    }


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 2, 20, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def booking_service(db_session: Session, clock: FixedClock) -> BookingService:
    return BookingService(db_session, clock=clock)


@pytest.fixture
def booking_request(hotel: Hotel, rooms: dict):
    """Factory for valid room booking payloads; keyword overrides win."""

    def make(**overrides) -> dict:
        payload = {
            "hotel_id": hotel.id,
            "room_id": rooms["standard"].id,
            "guest": {
                "first_name": "Grace",
                "last_name": "Hopper",
                "email": "grace@example.com",
                "phone": "+15551234567",
            },
            "adults": 2,
            "children": 0,
            "check_in_date": date(2024, 3, 1),
            "check_out_date": date(2024, 3, 5),
            "pricing": {
                "nightly_rate": Decimal("120.00"),
                "tax_amount": Decimal("48.00"),
            },
        }
        payload.update(overrides)
        return payload

    return make
