# app/services/role_service.py
"""
Role store and role-permission binder.

Every write here runs inside atomic(): a binding sync either replaces the
whole permission set or changes nothing.
"""

import logging
from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.database import atomic
from app.models.membership import Membership
from app.models.permission import Permission
from app.models.role import Role, RolePermission
from app.services.authz_service import invalidate_authorization_cache
from app.services.exceptions import DuplicateRoleName, RoleInUse, UnknownRole
from app.services.invariant_guard import ensure_mutable, ensure_role_editable_from, membership_count
from app.services.permission_catalog import get_permission_catalog

logger = logging.getLogger(__name__)


def list_roles(db: Session, search: str | None = None, is_system: bool | None = None) -> list[Role]:
    """
    Roles ordered by name. `search` matches name or description, case-insensitively.
    """
    query = db.query(Role)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Role.name.ilike(pattern), Role.description.ilike(pattern)))
    if is_system is not None:
        query = query.filter(Role.is_system.is_(is_system))
    return query.order_by(Role.name).all()


def role_membership_counts(db: Session) -> dict[UUID, int]:
    """
    Membership count per role in one grouped query (role list screen).
    """
    rows = (
        db.query(Membership.role_id, func.count(Membership.id))
        .group_by(Membership.role_id)
        .all()
    )
    return {role_id: count for role_id, count in rows}


def get_role(db: Session, role_id: UUID) -> Role:
    role = db.query(Role).filter(Role.id == role_id).first()
    if not role:
        raise UnknownRole()
    return role


def get_role_by_name(db: Session, name: str) -> Role:
    role = db.query(Role).filter(Role.name == name).first()
    if not role:
        raise UnknownRole(f"Role '{name}' not found")
    return role


def _ensure_name_available(db: Session, name: str, exclude_role_id: UUID | None = None) -> None:
    query = db.query(Role).filter(Role.name == name)
    if exclude_role_id is not None:
        query = query.filter(Role.id != exclude_role_id)
    if query.first():
        raise DuplicateRoleName()


def effective_permissions(db: Session, role: Role) -> set[str]:
    """
    The role's bound permission slugs. No hierarchy expansion.
    """
    rows = (
        db.query(Permission.slug)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .filter(RolePermission.role_id == role.id)
        .all()
    )
    return {slug for (slug,) in rows}


def _sync_bindings(db: Session, role: Role, permission_slugs: Iterable[str]) -> set[str]:
    """
    Make the role's bindings exactly `permission_slugs`.

    Removes bindings that are no longer wanted and inserts the missing ones;
    rows for permissions kept across the sync are left untouched, so the
    (role_id, permission_id) unique constraint never sees a transient
    duplicate. Caller owns the transaction.
    """
    catalog = get_permission_catalog(db)
    entries = catalog.validate(permission_slugs)
    wanted = {e.slug: e for e in entries}

    current = {rp.permission.slug: rp for rp in role.permissions}

    for slug, binding in current.items():
        if slug not in wanted:
            role.permissions.remove(binding)

    for slug, entry in wanted.items():
        if slug not in current:
            role.permissions.append(RolePermission(permission_id=entry.id))

    db.flush()
    return set(wanted)


def bind_permissions(
    db: Session,
    role: Role,
    permission_slugs: Iterable[str],
    clinic_id: UUID | None = None,
) -> set[str]:
    """
    Replace the role's full permission set with exactly `permission_slugs`.

    When `clinic_id` is given the caller acts for that clinic only, and the
    role must not be held in any other clinic.

    Raises:
        SystemRoleImmutable: role is a system role.
        RoleSharedAcrossClinics: role is held outside `clinic_id`.
        UnknownPermission: any slug is not in the catalog (nothing changes).
    """
    ensure_mutable(role)
    slugs = list(permission_slugs)

    with atomic(db):
        if clinic_id is not None:
            ensure_role_editable_from(db, role, clinic_id)
        bound = _sync_bindings(db, role, slugs)

    invalidate_authorization_cache()
    logger.info(
        "role.permissions_synced",
        extra={"role_id": str(role.id), "role_name": role.name, "permission_count": len(bound)},
    )
    return bound


def create_role(
    db: Session,
    name: str,
    description: str | None = None,
    permission_slugs: Iterable[str] = (),
    template_role_id: UUID | None = None,
) -> Role:
    """
    Create a custom role.
    If template_role_id is provided, permissions are copied from that role and
    merged with `permission_slugs`.
    """
    _ensure_name_available(db, name)

    slugs = list(permission_slugs)
    if template_role_id is not None:
        template = get_role(db, template_role_id)
        slugs = sorted(effective_permissions(db, template) | set(slugs))

    try:
        with atomic(db):
            role = Role(name=name, description=description, is_system=False)
            db.add(role)
            db.flush()  # ensures role.id is available
            _sync_bindings(db, role, slugs)
    except IntegrityError as exc:
        # A concurrent create took the name first.
        raise DuplicateRoleName() from exc

    logger.info(
        "role.created",
        extra={"role_id": str(role.id), "role_name": role.name, "permission_count": len(slugs)},
    )
    return role


def update_role(
    db: Session,
    role_id: UUID,
    name: str | None = None,
    description: str | None = None,
    permission_slugs: Iterable[str] | None = None,
    clinic_id: UUID | None = None,
) -> Role:
    """
    Rename, redescribe and/or rebind a custom role in one transaction.
    `clinic_id` scopes the edit as in bind_permissions.
    """
    role = get_role(db, role_id)
    ensure_mutable(role)

    if name and name != role.name:
        _ensure_name_available(db, name, exclude_role_id=role.id)

    try:
        with atomic(db):
            if clinic_id is not None:
                ensure_role_editable_from(db, role, clinic_id)
            if name:
                role.name = name
            if description is not None:
                role.description = description
            if permission_slugs is not None:
                _sync_bindings(db, role, permission_slugs)
    except IntegrityError as exc:
        raise DuplicateRoleName() from exc

    if permission_slugs is not None:
        invalidate_authorization_cache()
    logger.info("role.updated", extra={"role_id": str(role.id), "role_name": role.name})
    return role


def delete_role(db: Session, role_id: UUID) -> None:
    """
    Delete a custom role and its bindings.

    Raises:
        SystemRoleImmutable: role is a system role.
        RoleInUse: at least one membership still references the role.
    """
    role = get_role(db, role_id)
    ensure_mutable(role)

    with atomic(db):
        count = membership_count(db, role.id)
        if count > 0:
            raise RoleInUse(count)
        db.delete(role)

    invalidate_authorization_cache()
    logger.info("role.deleted", extra={"role_id": str(role_id)})
