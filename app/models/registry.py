# app/models/registry.py
from app.models.clinic import Clinic
from app.models.membership import Membership, MembershipStatus
from app.models.permission import Permission
from app.models.role import Role, RolePermission
from app.models.user import User

# Order matters: tables with no dependencies first, then tables that depend on them
# - RolePermission depends on Role and Permission
# - Membership depends on User, Clinic and Role
RBAC_TABLES = [
    User.__table__,
    Clinic.__table__,
    Permission.__table__,
    Role.__table__,
    RolePermission.__table__,
    Membership.__table__,
]

__all__ = [
    "Clinic",
    "Membership",
    "MembershipStatus",
    "Permission",
    "RBAC_TABLES",
    "Role",
    "RolePermission",
    "User",
]
