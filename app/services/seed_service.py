# app/services/seed_service.py
import logging
from collections.abc import Container, Iterable

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import atomic
from app.core.security import get_password_hash
from app.models.clinic import Clinic
from app.models.membership import Membership, MembershipStatus
from app.models.permission import Permission
from app.models.role import Role, RolePermission
from app.models.user import User
from app.services.authz_service import invalidate_authorization_cache
from app.services.exceptions import PermissionSlugConflict
from app.services.invariant_guard import ADMINISTRATOR_ROLE_NAMES
from app.services.permission_catalog import DEFAULT_PERMISSIONS, reset_permission_catalog, split_slug

logger = logging.getLogger(__name__)

ALL_PERMISSIONS = "*"

# Role to permission grants. `<module>.manage` entries are expanded into the
# module's view/create/edit/delete when seeded (see expand_manage_grants).
DEFAULT_ROLE_PERMISSIONS: dict[str, list[str]] = {
    "superadmin": [ALL_PERMISSIONS],
    "admin": [
        "clinics.manage",
        "doctors.manage",
        "patients.manage",
        "appointments.manage",
        "prescriptions.manage",
        "users.manage",
        "users.activate",
        "users.deactivate",
        "roles.manage",
        "permissions.view",
        "billing.manage",
        "reports.view",
        "reports.export",
        "settings.manage",
        "settings.view",
        "dashboard.view",
    ],
    "doctor": [
        "clinics.view",
        "doctors.view",
        "patients.view",
        "patients.edit",
        "appointments.view",
        "appointments.create",
        "appointments.edit",
        "appointments.cancel",
        "prescriptions.view",
        "prescriptions.create",
        "prescriptions.edit",
        "prescriptions.delete",
        "medical_records.view",
        "medical_records.create",
        "medical_records.edit",
        "schedule.view",
        "schedule.manage",
        "reports.view",
    ],
    "receptionist": [
        "clinics.view",
        "doctors.view",
        "patients.view",
        "patients.create",
        "patients.edit",
        "appointments.view",
        "appointments.create",
        "appointments.edit",
        "appointments.cancel",
        "appointments.checkin",
        "billing.view",
        "billing.create",
        "billing.edit",
        "schedule.view",
        "reports.view",
    ],
    "patient": [
        "clinics.view",
        "doctors.view",
        "appointments.view",
        "appointments.create",
        "appointments.cancel",
        "prescriptions.view",
        "prescriptions.download",
        "medical_records.view",
        "profile.edit",
    ],
    "medrep": [
        "clinics.view",
        "doctors.view",
        "products.view",
        "products.create",
        "products.edit",
        "meetings.view",
        "meetings.create",
        "meetings.edit",
        "meetings.delete",
        "interactions.view",
        "interactions.create",
        "interactions.edit",
        "schedule.view",
        "reports.view",
    ],
}

SYSTEM_ROLE_DESCRIPTIONS = {
    "superadmin": "Platform super administrator with every permission",
    "admin": "Clinic administrator",
    "doctor": "Medical doctor",
    "receptionist": "Front desk and scheduling",
    "patient": "Patient self-service",
    "medrep": "Medical representative",
}

MANAGE_IMPLIES = ("view", "create", "edit", "delete")


def expand_manage_grants(slugs: Iterable[str], known_slugs: Container[str]) -> set[str]:
    """
    Materialize every `<module>.manage` grant into explicit bindings for that
    module's view/create/edit/delete, where those slugs exist.
    The manage slug itself is kept.
    """
    expanded = set()
    for slug in slugs:
        expanded.add(slug)
        module, action = split_slug(slug)
        if action != "manage":
            continue
        for implied in MANAGE_IMPLIES:
            candidate = f"{module}.{implied}"
            if candidate in known_slugs:
                expanded.add(candidate)
    return expanded


def default_role_grants(role_name: str) -> set[str]:
    """
    The exact slug set a system role is bound to after seeding.
    """
    known = {slug for slug, _, _ in DEFAULT_PERMISSIONS}
    grants = DEFAULT_ROLE_PERMISSIONS.get(role_name, [])
    if ALL_PERMISSIONS in grants:
        return known
    return expand_manage_grants(grants, known)


def seed_permissions(db: Session) -> dict[str, Permission]:
    """
    Upsert the permission catalog. Returns slug -> Permission.

    Raises:
        PermissionSlugConflict: an existing slug is stored with a different
            module/action than the slug implies.
    """
    existing = {p.slug: p for p in db.query(Permission).all()}
    permissions_map = {}
    for slug, name, description in DEFAULT_PERMISSIONS:
        module, action = split_slug(slug)
        perm = existing.get(slug)
        if perm is not None:
            if perm.module != module or perm.action != action:
                raise PermissionSlugConflict(
                    f"Permission '{slug}' is stored as {perm.module}.{perm.action}"
                )
        else:
            perm = Permission(
                slug=slug,
                name=name,
                description=description,
                module=module,
                action=action,
            )
            db.add(perm)
        permissions_map[slug] = perm
    db.flush()
    return permissions_map


def seed_system_roles(db: Session, permissions_map: dict[str, Permission]) -> dict[str, Role]:
    """
    Create the system roles and bind them to their default grants.

    Bindings are written directly: system roles are immutable through the
    role service. Returns role name -> Role.
    """
    roles_map = {}
    for role_name in DEFAULT_ROLE_PERMISSIONS:
        role = db.query(Role).filter(Role.name == role_name).first()
        if role is None:
            role = Role(
                name=role_name,
                description=SYSTEM_ROLE_DESCRIPTIONS.get(role_name),
                is_system=True,
            )
            db.add(role)
            db.flush()
        elif not role.is_system:
            role.is_system = True
        roles_map[role_name] = role

        wanted = {permissions_map[slug].id for slug in default_role_grants(role_name)}
        current = {rp.permission_id: rp for rp in role.permissions}
        for permission_id, binding in current.items():
            if permission_id not in wanted:
                role.permissions.remove(binding)
        for permission_id in wanted - set(current):
            role.permissions.append(RolePermission(permission_id=permission_id))
        db.flush()

    return roles_map


def ensure_platform_clinic(db: Session) -> Clinic:
    """
    Create the sentinel clinic row that represents platform scope.
    """
    platform_id = get_settings().platform_clinic_id
    clinic = db.query(Clinic).filter(Clinic.id == platform_id).first()
    if clinic is None:
        clinic = Clinic(id=platform_id, name="Platform", slug="platform")
        db.add(clinic)
        db.flush()
    return clinic


def bootstrap_rbac(db: Session) -> dict:
    """
    Idempotently seed permissions, system roles and the platform clinic in
    one transaction.
    """
    with atomic(db):
        permissions_map = seed_permissions(db)
        roles_map = seed_system_roles(db, permissions_map)
        platform = ensure_platform_clinic(db)

    reset_permission_catalog()
    invalidate_authorization_cache()
    logger.info(
        "rbac.bootstrapped",
        extra={"permission_count": len(permissions_map), "role_count": len(roles_map)},
    )
    return {"permissions": permissions_map, "roles": roles_map, "platform_clinic": platform}


def ensure_platform_admin(db: Session, email: str, password: str, full_name: str | None = None) -> User:
    """
    Make sure `email` exists, can log in and holds the superadmin role at the
    platform clinic. Idempotent; an existing user gets the given password.
    """
    superadmin = db.query(Role).filter(Role.name == "superadmin", Role.is_system.is_(True)).first()
    if superadmin is None:
        raise RuntimeError("System roles are not seeded. Run the bootstrap first.")

    with atomic(db):
        platform = ensure_platform_clinic(db)
        user = db.query(User).filter(User.email == email).first()
        if user is None:
            user = User(
                email=email,
                hashed_password=get_password_hash(password),
                full_name=full_name or get_settings().platform_admin_name,
                is_active=True,
            )
            db.add(user)
            db.flush()
        else:
            # If the password changes in env, it is rotated.
            user.hashed_password = get_password_hash(password)
            user.is_active = True

        membership = (
            db.query(Membership)
            .filter(
                Membership.user_id == user.id,
                Membership.clinic_id == platform.id,
                Membership.role_id == superadmin.id,
            )
            .first()
        )
        if membership is None:
            db.add(
                Membership(
                    user_id=user.id,
                    clinic_id=platform.id,
                    role_id=superadmin.id,
                    status=MembershipStatus.ACTIVE,
                )
            )
        elif membership.status != MembershipStatus.ACTIVE:
            membership.status = MembershipStatus.ACTIVE

    invalidate_authorization_cache()
    logger.info("platform_admin.ensured", extra={"user_id": str(user.id), "email": email})
    return user


def validate_rbac(db: Session) -> list[str]:
    """
    Check the stored RBAC data against the seed tables.
    Returns human-readable problems; an empty list means healthy.
    """
    problems = []

    stored = {p.slug: p for p in db.query(Permission).all()}
    for slug, _, _ in DEFAULT_PERMISSIONS:
        if slug not in stored:
            problems.append(f"Missing permission: {slug}")

    for role_name in DEFAULT_ROLE_PERMISSIONS:
        role = db.query(Role).filter(Role.name == role_name).first()
        if role is None or not role.is_system:
            problems.append(f"Missing system role: {role_name}")
            continue
        expected = {slug for slug in default_role_grants(role_name) if slug in stored}
        actual = set(role.permission_slugs)
        if expected != actual:
            missing = sorted(expected - actual)
            extra = sorted(actual - expected)
            problems.append(
                f"System role '{role_name}' bindings drifted (missing={missing}, extra={extra})"
            )

    bound_ids = {pid for (pid,) in db.query(RolePermission.permission_id).distinct().all()}
    for slug, perm in sorted(stored.items()):
        if perm.id not in bound_ids:
            problems.append(f"Orphaned permission (bound to no role): {slug}")

    clinics_with_members = (
        db.query(Clinic).join(Membership, Membership.clinic_id == Clinic.id).distinct().all()
    )
    for clinic in clinics_with_members:
        has_admin = (
            db.query(Membership)
            .join(Role, Membership.role_id == Role.id)
            .filter(
                Membership.clinic_id == clinic.id,
                Role.is_system.is_(True),
                Role.name.in_(ADMINISTRATOR_ROLE_NAMES),
            )
            .first()
        )
        if has_admin is None:
            problems.append(f"Clinic '{clinic.slug}' has members but no administrator")

    for problem in problems:
        logger.warning("rbac.validation_problem: %s", problem)
    return problems
