# app/services/invariant_guard.py
"""
Structural invariants checked before role and membership mutations commit.

- System roles are never edited, rebound or deleted.
- A role with memberships is never deleted.
- A clinic that has an administrator-tier membership always keeps one.
- A custom role held in several clinics is changed from the platform scope only.
- The superadmin role is only held at the platform clinic.
"""

from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models.clinic import Clinic
from app.models.membership import Membership
from app.models.role import Role
from app.services.exceptions import (
    PlatformRoleOutOfScope,
    RoleSharedAcrossClinics,
    SystemRoleImmutable,
    UnknownClinic,
)

ADMINISTRATOR_ROLE_NAMES = frozenset({"superadmin", "admin"})
PLATFORM_ONLY_ROLE_NAMES = frozenset({"superadmin"})


def is_system_role(role: Role) -> bool:
    return bool(role.is_system)


def ensure_mutable(role: Role) -> None:
    if is_system_role(role):
        raise SystemRoleImmutable()


def is_administrator_role(role: Role | None) -> bool:
    return role is not None and role.is_system and role.name in ADMINISTRATOR_ROLE_NAMES


def membership_count(db: Session, role_id: UUID) -> int:
    return db.query(Membership).filter(Membership.role_id == role_id).count()


def is_role_in_use(db: Session, role: Role) -> bool:
    return membership_count(db, role.id) > 0


def role_clinic_ids(db: Session, role_id: UUID) -> set[UUID]:
    rows = db.query(Membership.clinic_id).filter(Membership.role_id == role_id).distinct().all()
    return {clinic_id for (clinic_id,) in rows}


def ensure_role_editable_from(db: Session, role: Role, clinic_id: UUID) -> None:
    """
    Roles are global, so rebinding one changes what its holders can do in
    every clinic. Outside the platform scope a clinic may only change a
    custom role that no other clinic's members hold.
    """
    if clinic_id == get_settings().platform_clinic_id:
        return
    others = role_clinic_ids(db, role.id) - {clinic_id}
    if others:
        raise RoleSharedAcrossClinics(len(others))


def ensure_assignable(role: Role, clinic_id: UUID) -> None:
    if (
        role.is_system
        and role.name in PLATFORM_ONLY_ROLE_NAMES
        and clinic_id != get_settings().platform_clinic_id
    ):
        raise PlatformRoleOutOfScope()


def administrator_memberships(db: Session, clinic_id: UUID) -> list[Membership]:
    """
    Administrator-tier memberships of a clinic, in every status.
    """
    return (
        db.query(Membership)
        .join(Role, Membership.role_id == Role.id)
        .filter(
            Membership.clinic_id == clinic_id,
            Role.is_system.is_(True),
            Role.name.in_(ADMINISTRATOR_ROLE_NAMES),
        )
        .all()
    )


def would_orphan_admins(
    db: Session,
    clinic_id: UUID,
    membership: Membership,
    new_role: Role | None = None,
) -> bool:
    """
    True if removing `membership` (or re-pointing it to `new_role`) would
    leave `clinic_id` with no administrator-tier membership.

    Call with the clinic locked (see lock_clinic) so the count cannot change
    between this check and the commit.
    """
    if not is_administrator_role(membership.role):
        return False
    if new_role is not None and is_administrator_role(new_role):
        return False

    remaining = [m for m in administrator_memberships(db, clinic_id) if m.id != membership.id]
    return not remaining


def lock_clinic(db: Session, clinic_id: UUID) -> Clinic:
    """
    Serialize administrator-affecting writes for one clinic.

    Call it before reading anything the check depends on. It writes the
    clinic row (a no-op UPDATE) first: PostgreSQL then holds the
    row lock, and SQLite, where pysqlite only begins a write transaction at
    the first DML statement, holds the database write lock. A second removal
    blocks here until the first one commits and then sees its delete.
    """
    result = db.execute(
        update(Clinic)
        .where(Clinic.id == clinic_id)
        .values(updated_at=Clinic.updated_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise UnknownClinic()
    return (
        db.query(Clinic)
        .filter(Clinic.id == clinic_id)
        .populate_existing()
        .with_for_update()
        .one()
    )
