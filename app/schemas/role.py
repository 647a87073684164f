# app/schemas/role.py
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class RoleBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=1000)


class RoleCreate(RoleBase):
    permissions: list[str] = []
    template_role_id: UUID | None = (
        None  # Optional: create role based on existing role template
    )


class RoleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=1000)
    permissions: list[str] | None = None


class RolePermissionsUpdate(BaseModel):
    permissions: list[str]


class PermissionResponse(BaseModel):
    id: UUID
    slug: str
    name: str
    description: str | None = None
    module: str
    action: str

    class Config:
        from_attributes = True


class PermissionModuleGroup(BaseModel):
    module: str
    permissions: list[PermissionResponse]


class RoleResponse(RoleBase):
    id: UUID
    is_system: bool
    permissions: list[str] = []
    membership_count: int = 0
    created_at: datetime
    updated_at: datetime
