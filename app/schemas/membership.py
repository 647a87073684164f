# app/schemas/membership.py
from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.membership import MembershipStatus
from app.schemas.user import UserSummary


class MembershipDetails(BaseModel):
    department: str | None = Field(default=None, max_length=100)
    join_date: date | None = None
    address: str | None = None
    emergency_contact: str | None = Field(default=None, max_length=255)
    emergency_phone: str | None = Field(default=None, max_length=50)
    notes: str | None = None


class MembershipCreate(MembershipDetails):
    user_id: UUID
    role_id: UUID
    status: MembershipStatus = MembershipStatus.ACTIVE


class MembershipUpdate(MembershipDetails):
    pass


class MembershipRoleUpdate(BaseModel):
    role_id: UUID


class MembershipStatusUpdate(BaseModel):
    status: MembershipStatus


class MembershipResponse(MembershipDetails):
    id: UUID
    user_id: UUID
    clinic_id: UUID
    role_id: UUID
    role_name: str
    status: MembershipStatus
    user: UserSummary | None = None
    created_at: datetime
    updated_at: datetime


class ClinicSummary(BaseModel):
    id: UUID
    name: str
    slug: str
    timezone: str

    class Config:
        from_attributes = True


class ClinicPermissionsResponse(BaseModel):
    clinic_id: UUID
    roles: list[str]
    permissions: list[str]
