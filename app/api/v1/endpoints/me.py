# app/api/v1/endpoints/me.py
"""
The caller's own view: which clinics they can act in, and what they may do
in each one (tenant selector and UI rendering).
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.v1.endpoints.auth import get_current_user
from app.core.database import get_db
from app.models.user import User
from app.schemas.membership import ClinicPermissionsResponse, ClinicSummary
from app.services.authz_service import (
    accessible_clinics,
    effective_permission_set,
    effective_role_set,
)

router = APIRouter()


@router.get("/clinics", response_model=list[ClinicSummary], tags=["me"])
def my_clinics(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ClinicSummary]:
    return [ClinicSummary.model_validate(c) for c in accessible_clinics(db, current_user.id)]


@router.get(
    "/clinics/{clinic_id}/permissions",
    response_model=ClinicPermissionsResponse,
    tags=["me"],
)
def my_clinic_permissions(
    clinic_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ClinicPermissionsResponse:
    """
    Roles and effective permissions in one clinic. Both lists are empty when
    the caller has no resolvable membership there.
    """
    roles = effective_role_set(db, current_user.id, clinic_id)
    permissions = effective_permission_set(db, current_user.id, clinic_id)
    return ClinicPermissionsResponse(
        clinic_id=clinic_id,
        roles=sorted(r.name for r in roles),
        permissions=sorted(permissions),
    )
