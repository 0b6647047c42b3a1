"""Hotel onboarding and account schemas."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field


class AccountCreate(BaseModel):
    email: EmailStr
    full_name: str = Field(..., min_length=1, max_length=200)
    role_id: int
    account_type_code: Optional[str] = Field(None, pattern=r"^\d$")


class HotelOnboard(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    vendor_id: Optional[int] = None
    admin_email: EmailStr
    admin_full_name: str = Field(..., min_length=1, max_length=200)


class AccountResponse(BaseModel):
    account_id: str
    role_code: str
    account_type_code: str
    sequence: int
    email: str
    full_name: str
    permissions: List[str]
    created_by: Optional[str] = None

    model_config = {"from_attributes": True}
