"""Role forest rows."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from hotel_pms.db.base import Base, TimestampMixin


class RoleType(str, Enum):
    SYSTEM = "system"
    VENDOR = "vendor"
    HOTEL_ADMIN = "hotel_admin"
    HOTEL_STAFF = "hotel_staff"


class Role(Base, TimestampMixin):
    """A node in the role forest.

    ``permissions`` is a list of capability tokens (``*`` and ``ns.*`` allowed).
    ``restrictions`` is a list of ``{"token": ..., "override": bool}`` entries.
    """

    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    parent_role_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("roles.id"), nullable=True, index=True
    )
    hierarchy_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    role_type: Mapped[RoleType] = mapped_column(
        SQLEnum(RoleType), default=RoleType.HOTEL_STAFF, nullable=False
    )
    permissions: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    restrictions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    can_create_sub_roles: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Two-digit code used in account ids for roles assignable to hotel accounts
    account_role_code: Mapped[Optional[str]] = mapped_column(String(2), unique=True, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
