# app/api/v1/endpoints/roles.py
"""
Role and permission administration.

Roles are global definitions shared by every clinic. The routes are still
clinic-scoped: the caller needs the roles.* permission inside the clinic
named in the path, and may only change a custom role that no other
clinic's members hold (the platform scope may change any custom role).
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.dependencies.authz import require_permission
from app.models.role import Role
from app.models.user import User
from app.schemas.role import (
    PermissionModuleGroup,
    PermissionResponse,
    RoleCreate,
    RolePermissionsUpdate,
    RoleResponse,
    RoleUpdate,
)
from app.services import role_service
from app.services.permission_catalog import list_permissions

router = APIRouter()


def _role_to_response(role: Role, membership_count: int = 0) -> RoleResponse:
    return RoleResponse.model_validate(
        {
            "id": role.id,
            "name": role.name,
            "description": role.description,
            "is_system": role.is_system,
            "permissions": role.permission_slugs,
            "membership_count": membership_count,
            "created_at": role.created_at,
            "updated_at": role.updated_at,
        }
    )


@router.get(
    "/clinics/{clinic_id}/permissions",
    response_model=list[PermissionModuleGroup],
    tags=["roles"],
)
def list_permission_catalog(
    clinic_id: UUID,
    current_user: User = Depends(require_permission("roles.view")),
    db: Session = Depends(get_db),
) -> list[PermissionModuleGroup]:
    """
    The permission catalog grouped by module, for the role editor.
    """
    groups: dict[str, list[PermissionResponse]] = {}
    for perm in list_permissions(db):
        groups.setdefault(perm.module, []).append(PermissionResponse.model_validate(perm))
    return [PermissionModuleGroup(module=m, permissions=p) for m, p in groups.items()]


@router.get("/clinics/{clinic_id}/roles", response_model=list[RoleResponse], tags=["roles"])
def list_roles(
    clinic_id: UUID,
    search: str | None = Query(default=None),
    is_system: bool | None = Query(default=None),
    current_user: User = Depends(require_permission("roles.view")),
    db: Session = Depends(get_db),
) -> list[RoleResponse]:
    counts = role_service.role_membership_counts(db)
    return [
        _role_to_response(r, counts.get(r.id, 0))
        for r in role_service.list_roles(db, search=search, is_system=is_system)
    ]


@router.get(
    "/clinics/{clinic_id}/roles/{role_id}",
    response_model=RoleResponse,
    tags=["roles"],
)
def get_role(
    clinic_id: UUID,
    role_id: UUID,
    current_user: User = Depends(require_permission("roles.view")),
    db: Session = Depends(get_db),
) -> RoleResponse:
    role = role_service.get_role(db, role_id)
    counts = role_service.role_membership_counts(db)
    return _role_to_response(role, counts.get(role.id, 0))


@router.post(
    "/clinics/{clinic_id}/roles",
    response_model=RoleResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["roles"],
)
def create_role(
    clinic_id: UUID,
    payload: RoleCreate,
    current_user: User = Depends(require_permission("roles.create")),
    db: Session = Depends(get_db),
) -> RoleResponse:
    """
    Create a custom role.
    If template_role_id is provided, permissions are copied from that role
    and merged with `permissions`.
    """
    role = role_service.create_role(
        db,
        name=payload.name,
        description=payload.description,
        permission_slugs=payload.permissions,
        template_role_id=payload.template_role_id,
    )
    return _role_to_response(role)


@router.patch(
    "/clinics/{clinic_id}/roles/{role_id}",
    response_model=RoleResponse,
    tags=["roles"],
)
def update_role(
    clinic_id: UUID,
    role_id: UUID,
    payload: RoleUpdate,
    current_user: User = Depends(require_permission("roles.edit")),
    db: Session = Depends(get_db),
) -> RoleResponse:
    role = role_service.update_role(
        db,
        role_id,
        name=payload.name,
        description=payload.description,
        permission_slugs=payload.permissions,
        clinic_id=clinic_id,
    )
    counts = role_service.role_membership_counts(db)
    return _role_to_response(role, counts.get(role.id, 0))


@router.put(
    "/clinics/{clinic_id}/roles/{role_id}/permissions",
    response_model=RoleResponse,
    tags=["roles"],
)
def replace_role_permissions(
    clinic_id: UUID,
    role_id: UUID,
    payload: RolePermissionsUpdate,
    current_user: User = Depends(require_permission("roles.edit")),
    db: Session = Depends(get_db),
) -> RoleResponse:
    """
    Replace the role's full permission set.
    """
    role = role_service.get_role(db, role_id)
    role_service.bind_permissions(db, role, payload.permissions, clinic_id=clinic_id)
    counts = role_service.role_membership_counts(db)
    return _role_to_response(role, counts.get(role.id, 0))


@router.delete(
    "/clinics/{clinic_id}/roles/{role_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["roles"],
)
def delete_role(
    clinic_id: UUID,
    role_id: UUID,
    current_user: User = Depends(require_permission("roles.delete")),
    db: Session = Depends(get_db),
) -> None:
    role_service.delete_role(db, role_id)
