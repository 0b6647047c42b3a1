"""Tests for hotel onboarding and deactivation."""

import pytest

from hotel_pms.core.exceptions import InvalidHierarchy, InvalidInput, NotFound
from hotel_pms.core.permissions import Capability
from hotel_pms.models.property import Hotel, Vendor
from hotel_pms.schemas.account import HotelOnboard
from hotel_pms.services.hotel_service import HotelService
from hotel_pms.services.identity_service import AccountRole, parse_account_id


def onboard(db_session, name="Lakeside Lodge", **kwargs):
    return HotelService(db_session).onboard_hotel(
        HotelOnboard(name=name, admin_email="boss@example.com", admin_full_name="Bo Boss", **kwargs)
    )


class TestOnboarding:
    def test_creates_hotel_and_first_admin(self, db_session, roles):
        hotel, admin = onboard(db_session)

        assert hotel.hotel_id == "1000000001"
        assert hotel.is_active
        assert admin.created_by is None
        assert admin.role_id == roles["Hotel Admin"].id

        parsed = parse_account_id(admin.account_id)
        assert parsed.role == AccountRole.HOTEL_ADMIN
        assert parsed.hotel_id == hotel.hotel_id
        assert parsed.sequence == 1

    def test_admin_permissions_cached(self, db_session, roles):
        _hotel, admin = onboard(db_session)
        assert Capability.STAFF_CREATE.value in admin.permissions
        assert Capability.SYSTEM_CONFIG.value not in admin.permissions

    def test_each_hotel_gets_next_id(self, db_session, roles):
        first, _ = onboard(db_session, name="One")
        second, second_admin = onboard(db_session, name="Two")
        assert int(second.hotel_id) == int(first.hotel_id) + 1
        assert parse_account_id(second_admin.account_id).sequence == 1

    def test_with_vendor(self, db_session, roles):
        vendor = Vendor(name="Alpine Stays")
        db_session.add(vendor)
        db_session.commit()

        hotel, _ = onboard(db_session, vendor_id=vendor.id)
        assert hotel.vendor_id == vendor.id
        assert hotel.entity_id == vendor.id

    def test_unknown_vendor(self, db_session, roles):
        with pytest.raises(NotFound):
            onboard(db_session, vendor_id=42)
        assert db_session.query(Hotel).count() == 0

    def test_inactive_vendor(self, db_session, roles):
        vendor = Vendor(name="Closed Group", is_active=False)
        db_session.add(vendor)
        db_session.commit()
        with pytest.raises(InvalidInput):
            onboard(db_session, vendor_id=vendor.id)

    def test_requires_role_catalogue(self, db_session):
        with pytest.raises(InvalidHierarchy):
            onboard(db_session)


class TestDeactivation:
    def test_deactivate_keeps_row(self, db_session, hotel):
        svc = HotelService(db_session)
        svc.deactivate_hotel(hotel.hotel_id)

        stored = svc.get_hotel(hotel.hotel_id)
        assert stored.is_active is False

    def test_deactivate_is_idempotent(self, db_session, hotel):
        svc = HotelService(db_session)
        svc.deactivate_hotel(hotel.hotel_id)
        assert svc.deactivate_hotel(hotel.hotel_id).is_active is False

    def test_unknown_hotel(self, db_session):
        with pytest.raises(NotFound):
            HotelService(db_session).get_hotel("9999999999")
