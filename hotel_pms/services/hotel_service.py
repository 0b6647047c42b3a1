"""Hotel onboarding and deactivation."""

import logging
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from hotel_pms.core.exceptions import InvalidHierarchy, InvalidInput, NotFound
from hotel_pms.db.session import translate_store_errors
from hotel_pms.models.account import HotelAccount
from hotel_pms.models.property import Hotel, Vendor
from hotel_pms.schemas.account import AccountCreate, HotelOnboard
from hotel_pms.services.account_service import AccountService
from hotel_pms.services.identity_service import AccountRole, IdentityService
from hotel_pms.services.permission_service import RoleGraph

logger = logging.getLogger(__name__)


class HotelService:
    def __init__(self, db: Session, identity: Optional[IdentityService] = None):
        self.db = db
        self.identity = identity or IdentityService(db)
        self.accounts = AccountService(db, identity=self.identity)

    def onboard_hotel(self, data: HotelOnboard) -> Tuple[Hotel, HotelAccount]:
        """Allocate a hotel id, create the hotel and its first administrator.

        Both rows commit together; the administrator has no creator.
        """
        if data.vendor_id is not None:
            vendor = self.db.get(Vendor, data.vendor_id)
            if vendor is None:
                raise NotFound("Vendor", data.vendor_id)
            if not vendor.is_active:
                raise InvalidInput(f"Vendor {vendor.id} is not active", {"vendor_id": vendor.id})

        admin_role = RoleGraph.from_db(self.db).by_account_role_code(AccountRole.HOTEL_ADMIN.value)
        if admin_role is None:
            raise InvalidHierarchy(
                "No role carries the hotel administrator code; install the role catalogue first",
                {"role_code": AccountRole.HOTEL_ADMIN.value},
            )

        with translate_store_errors("onboard_hotel"):
            try:
                hotel = Hotel(
                    hotel_id=self.identity.generate_hotel_id(),
                    vendor_id=data.vendor_id,
                    name=data.name,
                    is_active=True,
                )
                self.db.add(hotel)
                self.db.flush()
                admin = self.accounts.create_account(
                    hotel,
                    AccountCreate(email=data.admin_email, full_name=data.admin_full_name, role_id=admin_role.id),
                    creator=None,
                    commit=False,
                )
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info("Hotel %s (%s) onboarded with administrator %s", hotel.hotel_id, hotel.name, admin.account_id)
        return hotel, admin

    def get_hotel(self, hotel_id: str) -> Hotel:
        hotel = self.db.execute(select(Hotel).where(Hotel.hotel_id == hotel_id)).scalar_one_or_none()
        if hotel is None:
            raise NotFound("Hotel", hotel_id)
        return hotel

    def deactivate_hotel(self, hotel_id: str) -> Hotel:
        """Hotels are never deleted; deactivation stops new bookings and accounts."""
        hotel = self.get_hotel(hotel_id)
        if hotel.is_active:
            hotel.is_active = False
            self.db.commit()
            logger.info("Hotel %s deactivated", hotel.hotel_id)
        return hotel
