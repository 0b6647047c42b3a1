"""FastAPI dependencies gating operations on effective permissions."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select

from hotel_pms.core.permissions import Capability
from hotel_pms.core.security import decode_access_token
from hotel_pms.db.session import DbSession
from hotel_pms.models.account import HotelAccount
from hotel_pms.services.permission_service import load_resolver


def get_current_account(request: Request, db: DbSession) -> HotelAccount:
    """Resolve the bearer token to an active account of an active hotel."""
    auth_header = request.headers.get("Authorization", "")
    payload = None
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
        if token:
            payload = decode_access_token(token)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    account = db.execute(
        select(HotelAccount).where(HotelAccount.account_id == payload["sub"])
    ).scalar_one_or_none()
    if account is None or not account.is_active or not account.hotel.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is disabled",
        )
    return account


CurrentAccount = Annotated[HotelAccount, Depends(get_current_account)]


def require_capability(*capabilities: Capability):
    """Dependency requiring every listed capability in the account's effective set.

    The set is resolved from the current role graph, not the token, so role
    changes apply immediately.
    """

    def capability_checker(account: CurrentAccount, db: DbSession) -> HotelAccount:
        if not load_resolver(db).has_all(account.role_id, capabilities):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires {', '.join(c.value for c in capabilities)}",
            )
        return account

    return capability_checker
