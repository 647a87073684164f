# app/api/v1/endpoints/memberships.py
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.dependencies.authz import require_permission, require_permissions
from app.models.membership import Membership, MembershipStatus
from app.models.user import User
from app.schemas.membership import (
    MembershipCreate,
    MembershipResponse,
    MembershipRoleUpdate,
    MembershipStatusUpdate,
    MembershipUpdate,
)
from app.schemas.user import UserSummary
from app.services import membership_service

router = APIRouter()


def _membership_to_response(membership: Membership) -> MembershipResponse:
    return MembershipResponse.model_validate(
        {
            "id": membership.id,
            "user_id": membership.user_id,
            "clinic_id": membership.clinic_id,
            "role_id": membership.role_id,
            "role_name": membership.role.name,
            "status": membership.status,
            "department": membership.department,
            "join_date": membership.join_date,
            "address": membership.address,
            "emergency_contact": membership.emergency_contact,
            "emergency_phone": membership.emergency_phone,
            "notes": membership.notes,
            "user": UserSummary.model_validate(membership.user) if membership.user else None,
            "created_at": membership.created_at,
            "updated_at": membership.updated_at,
        }
    )


@router.get(
    "/clinics/{clinic_id}/memberships",
    response_model=list[MembershipResponse],
    tags=["memberships"],
)
def list_memberships(
    clinic_id: UUID,
    status_filter: MembershipStatus | None = Query(default=None, alias="status"),
    current_user: User = Depends(require_permission("users.view")),
    db: Session = Depends(get_db),
) -> list[MembershipResponse]:
    memberships = membership_service.list_clinic_memberships(db, clinic_id, status=status_filter)
    return [_membership_to_response(m) for m in memberships]


@router.post(
    "/clinics/{clinic_id}/memberships",
    response_model=MembershipResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["memberships"],
)
def add_membership(
    clinic_id: UUID,
    payload: MembershipCreate,
    current_user: User = Depends(require_permission("users.create")),
    db: Session = Depends(get_db),
) -> MembershipResponse:
    """
    Appoint an existing user to a role in this clinic.
    """
    details = payload.model_dump(exclude={"user_id", "role_id", "status", "join_date"}, exclude_none=True)
    membership = membership_service.add_membership(
        db,
        user_id=payload.user_id,
        clinic_id=clinic_id,
        role_id=payload.role_id,
        status=payload.status,
        join_date=payload.join_date,
        **details,
    )
    return _membership_to_response(membership)


@router.patch(
    "/clinics/{clinic_id}/memberships/{membership_id}",
    response_model=MembershipResponse,
    tags=["memberships"],
)
def update_membership(
    clinic_id: UUID,
    membership_id: UUID,
    payload: MembershipUpdate,
    current_user: User = Depends(require_permission("users.edit")),
    db: Session = Depends(get_db),
) -> MembershipResponse:
    membership = membership_service.update_membership_details(
        db,
        membership_id,
        payload.model_dump(exclude_unset=True),
        clinic_id=clinic_id,
    )
    return _membership_to_response(membership)


@router.put(
    "/clinics/{clinic_id}/memberships/{membership_id}/role",
    response_model=MembershipResponse,
    tags=["memberships"],
)
def change_membership_role(
    clinic_id: UUID,
    membership_id: UUID,
    payload: MembershipRoleUpdate,
    current_user: User = Depends(require_permissions(all_of=["users.edit", "roles.view"])),
    db: Session = Depends(get_db),
) -> MembershipResponse:
    membership = membership_service.change_role(
        db,
        membership_id,
        payload.role_id,
        clinic_id=clinic_id,
    )
    return _membership_to_response(membership)


@router.put(
    "/clinics/{clinic_id}/memberships/{membership_id}/status",
    response_model=MembershipResponse,
    tags=["memberships"],
)
def set_membership_status(
    clinic_id: UUID,
    membership_id: UUID,
    payload: MembershipStatusUpdate,
    current_user: User = Depends(
        require_permissions(one_of=["users.edit", "users.deactivate", "users.activate"])
    ),
    db: Session = Depends(get_db),
) -> MembershipResponse:
    membership = membership_service.set_status(
        db,
        membership_id,
        payload.status,
        clinic_id=clinic_id,
    )
    return _membership_to_response(membership)


@router.delete(
    "/clinics/{clinic_id}/memberships/{membership_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["memberships"],
)
def remove_membership(
    clinic_id: UUID,
    membership_id: UUID,
    current_user: User = Depends(require_permission("users.delete")),
    db: Session = Depends(get_db),
) -> None:
    membership_service.remove_membership(db, membership_id, clinic_id=clinic_id)


@router.get(
    "/clinics/{clinic_id}/roles/{role_id}/memberships",
    response_model=list[MembershipResponse],
    tags=["roles"],
)
def list_role_holders(
    clinic_id: UUID,
    role_id: UUID,
    current_user: User = Depends(require_permissions(all_of=["roles.view", "users.view"])),
    db: Session = Depends(get_db),
) -> list[MembershipResponse]:
    """
    Members of this clinic who hold the role.
    """
    memberships = membership_service.list_role_memberships(db, role_id, clinic_id)
    return [_membership_to_response(m) for m in memberships]
