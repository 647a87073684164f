# app/services/membership_service.py
"""
Membership store: which user holds which role inside which clinic.

Removal and role changes are guarded by the last-administrator rule and run
with the clinic row locked, so two concurrent removals cannot both see
"not the last admin" and jointly orphan the clinic.
"""

import logging
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.database import atomic
from app.models.clinic import Clinic
from app.models.membership import Membership, MembershipStatus
from app.models.role import Role
from app.models.user import User
from app.services.authz_service import invalidate_authorization_cache
from app.services.exceptions import (
    DuplicateMembership,
    LastAdministrator,
    UnknownClinic,
    UnknownMembership,
    UnknownRole,
    UnknownUser,
)
from app.services.invariant_guard import ensure_assignable, lock_clinic, would_orphan_admins

logger = logging.getLogger(__name__)

# Membership columns an administrator may set besides user/clinic/role/status.
DETAIL_FIELDS = (
    "department",
    "join_date",
    "address",
    "emergency_contact",
    "emergency_phone",
    "notes",
)


def _apply_details(membership: Membership, details: dict[str, Any]) -> None:
    for field in DETAIL_FIELDS:
        if field in details:
            setattr(membership, field, details[field])


def _find_duplicate(db: Session, user_id: UUID, clinic_id: UUID, role_id: UUID) -> Membership | None:
    return (
        db.query(Membership)
        .filter(
            Membership.user_id == user_id,
            Membership.clinic_id == clinic_id,
            Membership.role_id == role_id,
        )
        .first()
    )


def get_membership(db: Session, membership_id: UUID, clinic_id: UUID | None = None) -> Membership:
    """
    Load a membership, optionally requiring it to belong to `clinic_id`.
    A membership of another clinic is reported as not found.
    """
    query = db.query(Membership).filter(Membership.id == membership_id)
    if clinic_id is not None:
        query = query.filter(Membership.clinic_id == clinic_id)
    membership = query.first()
    if not membership:
        raise UnknownMembership()
    return membership


def list_clinic_memberships(
    db: Session,
    clinic_id: UUID,
    status: MembershipStatus | None = None,
) -> list[Membership]:
    query = db.query(Membership).filter(Membership.clinic_id == clinic_id)
    if status is not None:
        query = query.filter(Membership.status == status)
    return query.order_by(Membership.created_at, Membership.id).all()


def list_role_memberships(db: Session, role_id: UUID, clinic_id: UUID) -> list[Membership]:
    """
    Holders of a role inside one clinic. Members of other clinics are never listed.
    """
    if not db.query(Role).filter(Role.id == role_id).first():
        raise UnknownRole()
    return (
        db.query(Membership)
        .filter(Membership.role_id == role_id, Membership.clinic_id == clinic_id)
        .order_by(Membership.created_at, Membership.id)
        .all()
    )


def list_user_memberships(db: Session, user_id: UUID) -> list[Membership]:
    return (
        db.query(Membership)
        .filter(Membership.user_id == user_id)
        .order_by(Membership.created_at, Membership.id)
        .all()
    )


def add_membership(
    db: Session,
    user_id: UUID,
    clinic_id: UUID,
    role_id: UUID,
    status: MembershipStatus = MembershipStatus.ACTIVE,
    join_date: date | None = None,
    **details: Any,
) -> Membership:
    """
    Appoint a user to a role inside a clinic.

    Raises:
        UnknownUser / UnknownClinic / UnknownRole: a reference does not exist.
        DuplicateMembership: the (user, clinic, role) triple already exists.
        PlatformRoleOutOfScope: superadmin outside the platform clinic.
    """
    if not db.query(User).filter(User.id == user_id).first():
        raise UnknownUser()
    if not db.query(Clinic).filter(Clinic.id == clinic_id).first():
        raise UnknownClinic()
    role = db.query(Role).filter(Role.id == role_id).first()
    if not role:
        raise UnknownRole()
    ensure_assignable(role, clinic_id)
    if _find_duplicate(db, user_id, clinic_id, role_id):
        raise DuplicateMembership()

    membership = Membership(
        user_id=user_id,
        clinic_id=clinic_id,
        role_id=role_id,
        status=status,
        join_date=join_date or date.today(),
    )
    _apply_details(membership, details)

    try:
        with atomic(db):
            db.add(membership)
    except IntegrityError as exc:
        # Lost a race against a concurrent insert of the same triple.
        raise DuplicateMembership() from exc

    invalidate_authorization_cache()
    logger.info(
        "membership.added",
        extra={
            "membership_id": str(membership.id),
            "user_id": str(user_id),
            "clinic_id": str(clinic_id),
            "role_id": str(role_id),
        },
    )
    return membership


def change_role(
    db: Session,
    membership_id: UUID,
    new_role_id: UUID,
    clinic_id: UUID | None = None,
) -> Membership:
    """
    Re-point a membership to another role.

    The last-administrator rule is re-checked with the clinic locked before
    the change is applied.
    """
    membership = get_membership(db, membership_id, clinic_id=clinic_id)
    new_role = db.query(Role).filter(Role.id == new_role_id).first()
    if not new_role:
        raise UnknownRole()
    ensure_assignable(new_role, membership.clinic_id)
    if membership.role_id == new_role.id:
        return membership

    old_role_id = membership.role_id
    with atomic(db):
        lock_clinic(db, membership.clinic_id)
        db.refresh(membership)
        if _find_duplicate(db, membership.user_id, membership.clinic_id, new_role.id):
            raise DuplicateMembership()
        if would_orphan_admins(db, membership.clinic_id, membership, new_role=new_role):
            raise LastAdministrator()
        membership.role_id = new_role.id
        membership.role = new_role

    invalidate_authorization_cache()
    logger.info(
        "membership.role_changed",
        extra={
            "membership_id": str(membership.id),
            "clinic_id": str(membership.clinic_id),
            "old_role_id": str(old_role_id),
            "new_role_id": str(new_role.id),
        },
    )
    return membership


def remove_membership(db: Session, membership_id: UUID, clinic_id: UUID | None = None) -> None:
    """
    Hard-delete a membership.

    Raises:
        LastAdministrator: it is the clinic's last administrator-tier
            membership. Nothing is removed.
    """
    membership = get_membership(db, membership_id, clinic_id=clinic_id)
    membership_clinic_id = membership.clinic_id

    with atomic(db):
        lock_clinic(db, membership_clinic_id)
        db.refresh(membership)
        if would_orphan_admins(db, membership_clinic_id, membership):
            raise LastAdministrator()
        db.delete(membership)

    invalidate_authorization_cache()
    logger.info(
        "membership.removed",
        extra={"membership_id": str(membership_id), "clinic_id": str(membership_clinic_id)},
    )


def set_status(
    db: Session,
    membership_id: UUID,
    status: MembershipStatus,
    clinic_id: UUID | None = None,
) -> Membership:
    """
    Move a membership between Active, On Leave and Inactive.
    Any transition is allowed and the row is never removed.
    """
    membership = get_membership(db, membership_id, clinic_id=clinic_id)
    old_status = membership.status
    if old_status == status:
        return membership

    with atomic(db):
        membership.status = status

    invalidate_authorization_cache()
    logger.info(
        "membership.status_changed",
        extra={
            "membership_id": str(membership.id),
            "old_status": old_status.value,
            "new_status": status.value,
        },
    )
    return membership


def update_membership_details(
    db: Session,
    membership_id: UUID,
    details: dict[str, Any],
    clinic_id: UUID | None = None,
) -> Membership:
    """
    Edit department, join date and contact fields. Never touches role or status.
    """
    membership = get_membership(db, membership_id, clinic_id=clinic_id)
    with atomic(db):
        _apply_details(membership, details)
    return membership
