"""Hotel staff accounts."""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from hotel_pms.core.config import settings
from hotel_pms.core.exceptions import InvalidInput, NotFound, PermissionDenied
from hotel_pms.core.permissions import Capability
from hotel_pms.db.session import translate_store_errors
from hotel_pms.models.account import HotelAccount
from hotel_pms.models.property import Hotel
from hotel_pms.schemas.account import AccountCreate
from hotel_pms.services.identity_service import IdentityService
from hotel_pms.services.permission_service import PermissionResolver, load_resolver

logger = logging.getLogger(__name__)


class AccountService:
    """Creates accounts with structured ids and cached effective permissions."""

    def __init__(self, db: Session, identity: Optional[IdentityService] = None):
        self.db = db
        self.identity = identity or IdentityService(db)

    def create_account(
        self,
        hotel: Hotel,
        data: AccountCreate,
        creator: Optional[HotelAccount] = None,
        commit: bool = True,
    ) -> HotelAccount:
        """Create a staff account for ``hotel``.

        ``creator`` is None only for system-generated accounts (the first
        administrator of a new hotel). Otherwise the creator must belong to
        the same hotel, hold ``staff.create``, and sit strictly above the
        target role.
        """
        if not hotel.is_active:
            raise InvalidInput(f"Hotel {hotel.hotel_id} is not active", {"hotel_id": hotel.hotel_id})

        resolver = load_resolver(self.db)
        role = resolver.graph.get(data.role_id)
        if role.account_role_code is None:
            raise InvalidInput(
                f"Role '{role.name}' cannot be assigned to hotel accounts",
                {"role_id": role.id},
            )
        if creator is not None:
            self._check_creator(resolver, hotel, creator, role.id)

        type_code = data.account_type_code or settings.default_account_type_code
        with translate_store_errors("create_account"):
            try:
                account_id = self.identity.generate_account_id(role.account_role_code, type_code, hotel.hotel_id)
                account = HotelAccount(
                    account_id=str(account_id),
                    hotel_pk=hotel.id,
                    role_id=role.id,
                    role_code=account_id.role_code,
                    account_type_code=account_id.account_type_code,
                    sequence=account_id.sequence,
                    email=data.email,
                    full_name=data.full_name,
                    permissions=resolver.resolve_tokens(role.id),
                    created_by=creator.account_id if creator else None,
                )
                self.db.add(account)
                self.db.flush()
                if commit:
                    self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(
            "Account %s (%s) created at hotel %s by %s",
            account.account_id, role.name, hotel.hotel_id, account.created_by or "system",
        )
        return account

    @staticmethod
    def _check_creator(resolver: PermissionResolver, hotel: Hotel, creator: HotelAccount, role_id: int) -> None:
        if not creator.is_active or creator.hotel_pk != hotel.id:
            raise PermissionDenied(
                "Creator must be an active account of the same hotel",
                {"creator": creator.account_id, "hotel_id": hotel.hotel_id},
            )
        if not resolver.has_capability(creator.role_id, Capability.STAFF_CREATE):
            raise PermissionDenied(
                f"Account {creator.account_id} may not create staff",
                {"creator": creator.account_id},
            )
        if not resolver.can_manage(creator.role_id, role_id):
            raise PermissionDenied(
                f"Account {creator.account_id} cannot assign role {role_id}",
                {"creator": creator.account_id, "role_id": role_id},
            )

    def get_account(self, account_id: str) -> HotelAccount:
        account = self.db.execute(
            select(HotelAccount).where(HotelAccount.account_id == account_id)
        ).scalar_one_or_none()
        if account is None:
            raise NotFound("Account", account_id)
        return account

    def list_accounts(self, hotel_pk: int) -> List[HotelAccount]:
        return list(
            self.db.execute(
                select(HotelAccount).where(HotelAccount.hotel_pk == hotel_pk).order_by(HotelAccount.account_id)
            ).scalars()
        )

    def refresh_permissions(self, hotel_pk: Optional[int] = None) -> int:
        """Recompute cached permissions after role changes. Returns accounts updated."""
        resolver = load_resolver(self.db)
        stmt = select(HotelAccount)
        if hotel_pk is not None:
            stmt = stmt.where(HotelAccount.hotel_pk == hotel_pk)

        updated = 0
        for account in self.db.execute(stmt).scalars():
            tokens = resolver.resolve_tokens(account.role_id)
            if tokens != account.permissions:
                account.permissions = tokens
                updated += 1
        self.db.commit()
        if updated:
            logger.info("Refreshed cached permissions on %d accounts", updated)
        return updated
