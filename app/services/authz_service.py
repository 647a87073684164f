# app/services/authz_service.py
"""
Service for resolving user permissions inside one clinic.

Every call takes an explicit clinic id. Resolution only ever reads the
membership rows of that clinic, so power held in one clinic never leaks into
another. The platform clinic (settings.platform_clinic_id) is the one
exception to "any role resolves": there only administrator-tier roles count.
"""

import logging
from collections.abc import Iterable
from enum import Enum
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.redis import cache_get, cache_get_json, cache_incr, cache_set_json
from app.models.clinic import Clinic
from app.models.membership import Membership, MembershipStatus
from app.models.permission import Permission
from app.models.role import Role, RolePermission
from app.services.exceptions import Deny
from app.services.invariant_guard import ADMINISTRATOR_ROLE_NAMES

logger = logging.getLogger(__name__)

AUTHZ_EPOCH_KEY = "authz:epoch"


class AuthzDecision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


def resolvable_statuses() -> tuple[MembershipStatus, ...]:
    """
    Membership statuses that grant permissions.
    Inactive memberships never resolve; On Leave is controlled by settings.
    """
    if get_settings().authz_resolve_on_leave:
        return (MembershipStatus.ACTIVE, MembershipStatus.ON_LEAVE)
    return (MembershipStatus.ACTIVE,)


def is_platform_scope(clinic_id: UUID) -> bool:
    return clinic_id == get_settings().platform_clinic_id


def _scoped_memberships(db: Session, user_id: UUID, clinic_id: UUID):
    query = (
        db.query(Membership)
        .join(Role, Membership.role_id == Role.id)
        .filter(
            Membership.user_id == user_id,
            Membership.clinic_id == clinic_id,
            Membership.status.in_(resolvable_statuses()),
        )
    )
    if is_platform_scope(clinic_id):
        query = query.filter(Role.is_system.is_(True), Role.name.in_(ADMINISTRATOR_ROLE_NAMES))
    return query


def _cache_key(user_id: UUID, clinic_id: UUID) -> str:
    epoch = cache_get(AUTHZ_EPOCH_KEY) or "0"
    return f"authz:perms:{epoch}:{clinic_id}:{user_id}"


def invalidate_authorization_cache() -> None:
    """
    Bump the authorization epoch so every cached permission set is ignored.
    Called after each committed role, binding or membership mutation.
    """
    cache_incr(AUTHZ_EPOCH_KEY)


def _resolve(db: Session, user_id: UUID, clinic_id: UUID) -> tuple[bool, frozenset[str]]:
    """
    (has_membership, effective_permissions) for one user in one clinic.

    One query: membership -> role -> role_permissions -> permissions, outer
    joined so a membership whose role has no bindings still counts as access.
    """
    key = _cache_key(user_id, clinic_id)
    cached = cache_get_json(key)
    if cached is not None:
        return bool(cached["member"]), frozenset(cached["perms"])

    rows = (
        _scoped_memberships(db, user_id, clinic_id)
        .outerjoin(RolePermission, RolePermission.role_id == Membership.role_id)
        .outerjoin(Permission, Permission.id == RolePermission.permission_id)
        .with_entities(Membership.id, Permission.slug)
        .all()
    )

    has_membership = bool(rows)
    permissions = frozenset(slug for _, slug in rows if slug is not None)

    cache_set_json(
        key,
        {"member": has_membership, "perms": sorted(permissions)},
        ttl=get_settings().authz_cache_ttl_seconds,
    )
    return has_membership, permissions


def effective_role_set(db: Session, user_id: UUID, clinic_id: UUID) -> set[Role]:
    """
    All roles the user holds in this clinic (normally one).
    """
    memberships = _scoped_memberships(db, user_id, clinic_id).all()
    return {m.role for m in memberships}


def effective_permission_set(db: Session, user_id: UUID, clinic_id: UUID) -> frozenset[str]:
    """
    Union of the permissions bound to every role the user holds in this clinic.
    Empty when the user has no membership there.
    """
    _, permissions = _resolve(db, user_id, clinic_id)
    return permissions


def has_any(db: Session, user_id: UUID, clinic_id: UUID, required: Iterable[str]) -> bool:
    return not effective_permission_set(db, user_id, clinic_id).isdisjoint(set(required))


def has_all(db: Session, user_id: UUID, clinic_id: UUID, required: Iterable[str]) -> bool:
    return set(required) <= effective_permission_set(db, user_id, clinic_id)


def has_role(db: Session, user_id: UUID, clinic_id: UUID, role_name: str) -> bool:
    return any(r.name == role_name for r in effective_role_set(db, user_id, clinic_id))


def authorize(
    db: Session,
    user_id: UUID,
    clinic_id: UUID,
    one_of: Iterable[str] = (),
    all_of: Iterable[str] = (),
) -> AuthzDecision:
    """
    The permission check consulted by every feature.

    ALLOW iff the user has a resolvable membership in the clinic and
    - `one_of` is empty or shares at least one slug with the effective set, and
    - `all_of` is empty or is contained in the effective set.
    Both lists empty means any resolvable membership suffices.
    """
    one_of = set(one_of)
    all_of = set(all_of)

    has_membership, permissions = _resolve(db, user_id, clinic_id)

    allowed = (
        has_membership
        and (not one_of or not permissions.isdisjoint(one_of))
        and all_of <= permissions
    )
    if allowed:
        return AuthzDecision.ALLOW

    logger.debug(
        "authz.denied user=%s clinic=%s one_of=%s all_of=%s",
        user_id,
        clinic_id,
        sorted(one_of),
        sorted(all_of),
    )
    return AuthzDecision.DENY


def require(
    db: Session,
    user_id: UUID,
    clinic_id: UUID,
    one_of: Iterable[str] = (),
    all_of: Iterable[str] = (),
) -> None:
    """
    authorize() that raises Deny instead of returning DENY.
    """
    if authorize(db, user_id, clinic_id, one_of=one_of, all_of=all_of) is AuthzDecision.DENY:
        raise Deny()


def accessible_clinics(db: Session, user_id: UUID) -> list[Clinic]:
    """
    Clinics where the user holds a resolvable membership (tenant selector).
    The platform clinic is never listed.
    """
    platform_id = get_settings().platform_clinic_id
    return (
        db.query(Clinic)
        .join(Membership, Membership.clinic_id == Clinic.id)
        .filter(
            Membership.user_id == user_id,
            Membership.status.in_(resolvable_statuses()),
            Clinic.id != platform_id,
        )
        .distinct()
        .order_by(Clinic.name)
        .all()
    )
