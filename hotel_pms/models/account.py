"""Hotel accounts and the atomic counters behind structured identifiers."""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import JSON, BigInteger, Boolean, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hotel_pms.db.base import Base, TimestampMixin
from hotel_pms.models.property import Hotel
from hotel_pms.models.role import Role


class HotelAccount(Base, TimestampMixin):
    """Staff account belonging to exactly one hotel."""

    __tablename__ = "hotel_accounts"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[str] = mapped_column(String(18), unique=True, index=True, nullable=False)
    hotel_pk: Mapped[int] = mapped_column(ForeignKey("hotels.id"), index=True, nullable=False)
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id"), nullable=False)
    role_code: Mapped[str] = mapped_column(String(2), nullable=False)
    account_type_code: Mapped[str] = mapped_column(String(1), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    # Resolved capability tokens, refreshed whenever the role changes
    permissions: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # None for the system-generated first administrator
    created_by: Mapped[Optional[str]] = mapped_column(
        ForeignKey("hotel_accounts.account_id"), nullable=True
    )

    hotel: Mapped[Hotel] = relationship()
    role: Mapped[Role] = relationship()


class SequenceCounter(Base):
    """Named monotonic counter advanced with a single atomic UPDATE."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[int] = mapped_column(BigInteger, nullable=False)
