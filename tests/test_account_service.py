"""Tests for staff account creation."""

import pytest

from hotel_pms.core.exceptions import InvalidInput, NotFound, PermissionDenied
from hotel_pms.models.account import HotelAccount
from hotel_pms.schemas.account import AccountCreate, AccountResponse, HotelOnboard
from hotel_pms.services.account_service import AccountService
from hotel_pms.services.hotel_service import HotelService
from hotel_pms.services.identity_service import AccountRole, parse_account_id


def staff(role, email="staff@example.com", **kwargs):
    return AccountCreate(email=email, full_name="Sam Staff", role_id=role.id, **kwargs)


@pytest.fixture
def front_desk(db_session, hotel, hotel_admin, roles):
    return AccountService(db_session).create_account(hotel, staff(roles["Front Desk"]), creator=hotel_admin)


class TestCreateAccount:
    def test_admin_creates_front_desk(self, db_session, hotel, hotel_admin, roles, front_desk):
        parsed = parse_account_id(front_desk.account_id)
        assert parsed.role == AccountRole.FRONT_DESK
        assert parsed.hotel_id == hotel.hotel_id
        assert parsed.account_type_code == "1"
        assert front_desk.created_by == hotel_admin.account_id
        assert "bookings.manage_checkin" in front_desk.permissions
        assert "revenue.view" not in front_desk.permissions

        body = AccountResponse.model_validate(front_desk).model_dump()
        assert body["account_id"] == front_desk.account_id
        assert body["role_code"] == AccountRole.FRONT_DESK.value

    def test_sequence_per_role(self, db_session, hotel, hotel_admin, roles, front_desk):
        second = AccountService(db_session).create_account(
            hotel, staff(roles["Front Desk"], email="desk2@example.com", account_type_code="2"), creator=hotel_admin
        )
        manager = AccountService(db_session).create_account(
            hotel, staff(roles["Manager"], email="mgr@example.com"), creator=hotel_admin
        )
        assert second.account_id.startswith("142")
        assert parse_account_id(second.account_id).sequence == 2
        assert parse_account_id(manager.account_id).sequence == 1

    def test_manager_can_create_front_desk_below_it_only(self, db_session, hotel, hotel_admin, roles):
        manager = AccountService(db_session).create_account(
            hotel, staff(roles["Manager"], email="mgr@example.com"), creator=hotel_admin
        )
        # Front Desk is a sibling of Manager, not below it
        with pytest.raises(PermissionDenied, match="cannot assign"):
            AccountService(db_session).create_account(hotel, staff(roles["Front Desk"]), creator=manager)

    def test_creator_without_staff_create(self, db_session, hotel, roles, front_desk):
        with pytest.raises(PermissionDenied, match="may not create staff"):
            AccountService(db_session).create_account(hotel, staff(roles["Booking Agent"]), creator=front_desk)

    def test_admin_cannot_create_another_admin(self, db_session, hotel, hotel_admin, roles):
        with pytest.raises(PermissionDenied):
            AccountService(db_session).create_account(hotel, staff(roles["Hotel Admin"]), creator=hotel_admin)

    def test_creator_from_other_hotel(self, db_session, hotel, roles):
        _other_hotel, other_admin = HotelService(db_session).onboard_hotel(
            HotelOnboard(name="Other Place", admin_email="other@example.com", admin_full_name="Other Admin")
        )
        with pytest.raises(PermissionDenied, match="same hotel"):
            AccountService(db_session).create_account(hotel, staff(roles["Front Desk"]), creator=other_admin)

    def test_role_without_account_code(self, db_session, hotel, hotel_admin, roles):
        with pytest.raises(InvalidInput, match="cannot be assigned"):
            AccountService(db_session).create_account(hotel, staff(roles["Vendor"]), creator=hotel_admin)

    def test_inactive_hotel(self, db_session, hotel, hotel_admin, roles):
        HotelService(db_session).deactivate_hotel(hotel.hotel_id)
        with pytest.raises(InvalidInput, match="not active"):
            AccountService(db_session).create_account(hotel, staff(roles["Front Desk"]), creator=hotel_admin)

    def test_unknown_role(self, db_session, hotel, hotel_admin):
        with pytest.raises(NotFound):
            AccountService(db_session).create_account(
                hotel, AccountCreate(email="x@example.com", full_name="X", role_id=999), creator=hotel_admin
            )


class TestAccountLookup:
    def test_get_and_list(self, db_session, hotel, hotel_admin, front_desk):
        svc = AccountService(db_session)
        assert svc.get_account(front_desk.account_id).id == front_desk.id
        assert {a.account_id for a in svc.list_accounts(hotel.id)} == {hotel_admin.account_id, front_desk.account_id}

    def test_get_unknown(self, db_session):
        with pytest.raises(NotFound):
            AccountService(db_session).get_account("141100000000199999")


class TestRefreshPermissions:
    def test_role_change_reaches_cached_permissions(self, db_session, hotel, roles, front_desk):
        desk_role = roles["Front Desk"]
        desk_role.restrictions = list(desk_role.restrictions) + [{"token": "cash_ledger.manage", "override": True}]
        db_session.commit()

        updated = AccountService(db_session).refresh_permissions(hotel.id)
        db_session.refresh(front_desk)

        assert updated == 1
        assert "cash_ledger.manage" not in front_desk.permissions
        assert db_session.query(HotelAccount).count() == 2
