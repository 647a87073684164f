"""
Domain-specific exceptions for the access-control engine.

Structural errors (unknown entities, duplicate/immutable/in-use) are caller
bugs or race losses and are surfaced verbatim to administrative callers.
Deny is the expected outcome of a failed permission check.
"""

from collections.abc import Iterable


class RBACError(Exception):
    """Base exception for access-control errors."""

    status_code = 400
    error_code = "RBAC_ERROR"
    message = "Access control error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.message
        super().__init__(self.message)


class UnknownUser(RBACError):
    status_code = 404
    error_code = "UNKNOWN_USER"
    message = "User not found"


class UnknownClinic(RBACError):
    status_code = 404
    error_code = "UNKNOWN_CLINIC"
    message = "Clinic not found"


class UnknownRole(RBACError):
    status_code = 404
    error_code = "UNKNOWN_ROLE"
    message = "Role not found"


class UnknownMembership(RBACError):
    status_code = 404
    error_code = "UNKNOWN_MEMBERSHIP"
    message = "Membership not found"


class UnknownPermission(RBACError):
    """Raised when one or more permission slugs are not in the catalog."""

    status_code = 400
    error_code = "UNKNOWN_PERMISSION"
    message = "Unknown permission"

    def __init__(self, slugs: Iterable[str]) -> None:
        self.slugs = sorted(set(slugs))
        super().__init__(f"Unknown permission slugs: {', '.join(self.slugs)}")


class DuplicateMembership(RBACError):
    status_code = 409
    error_code = "DUPLICATE_MEMBERSHIP"
    message = "User already holds this role in this clinic"


class DuplicateRoleName(RBACError):
    status_code = 409
    error_code = "DUPLICATE_ROLE_NAME"
    message = "Role with this name already exists"


class SystemRoleImmutable(RBACError):
    status_code = 403
    error_code = "SYSTEM_ROLE_IMMUTABLE"
    message = (
        "System roles cannot be renamed, deleted, or have their permissions changed. "
        "To customize, create a new role based on this template."
    )


class RoleInUse(RBACError):
    """Raised when deleting a role that is still assigned through memberships."""

    status_code = 409
    error_code = "ROLE_IN_USE"
    message = "Role is in use"

    def __init__(self, membership_count: int) -> None:
        self.membership_count = membership_count
        super().__init__(
            f"Cannot delete role. It is assigned to {membership_count} membership(s). "
            "Reassign or remove those memberships first."
        )


class LastAdministrator(RBACError):
    status_code = 409
    error_code = "LAST_ADMINISTRATOR"
    message = (
        "This is the clinic's last administrator. "
        "Assign the administrator role to another member before removing or changing this one."
    )


class PermissionSlugConflict(RBACError):
    """Raised at bootstrap when a seeded slug would be reused for another module/action."""

    status_code = 500
    error_code = "PERMISSION_SLUG_CONFLICT"
    message = "Permission slug conflict"


class Deny(RBACError):
    """Authorization failure. Expected outcome, rendered as 403."""

    status_code = 403
    error_code = "INSUFFICIENT_PERMISSIONS"
    message = "Insufficient permissions"


class RoleSharedAcrossClinics(RBACError):
    """Raised when a clinic edits a custom role that members of other clinics hold."""

    status_code = 409
    error_code = "ROLE_SHARED_ACROSS_CLINICS"
    message = "Role is shared across clinics"

    def __init__(self, clinic_count: int) -> None:
        self.clinic_count = clinic_count
        super().__init__(
            f"Role is held by members of {clinic_count} other clinic(s). "
            "Only a platform administrator can change it."
        )


class PlatformRoleOutOfScope(RBACError):
    status_code = 400
    error_code = "PLATFORM_ROLE_OUT_OF_SCOPE"
    message = "This role can only be assigned in the platform scope"
