from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from app.models.security import ProgramRole


class CompanyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str


class MembershipOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    program_id: str
    user_id: str
    role: ProgramRole
    created_at: datetime


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    full_name: str | None
    company_id: str | None
    is_company_admin: bool
    is_super_admin: bool
    is_active: bool


class ProfileUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    full_name: str | None = None


class MemberIn(BaseModel):
    user_id: str
    role: ProgramRole = ProgramRole.RESPOND


class MemberRoleIn(BaseModel):
    role: ProgramRole


class ProgramAccessOut(BaseModel):
    program_id: str
    can_read: bool
    can_write: bool
    can_manage_members: bool
