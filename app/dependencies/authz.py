# app/dependencies/authz.py
from typing import Iterable
from uuid import UUID

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.v1.endpoints.auth import get_current_user
from app.core.database import get_db
from app.models.user import User
from app.services.authz_service import AuthzDecision, authorize


def require_permissions(one_of: Iterable[str] = (), all_of: Iterable[str] = ()):
    """
    Dependency factory for permission-based access control inside one clinic.

    The clinic is taken from the `clinic_id` path parameter, so the route
    must declare it.

    Usage:

    @router.get("/clinics/{clinic_id}/roles")
    def list_roles(
        clinic_id: UUID,
        current_user: User = Depends(require_permissions(one_of=["roles.view"])),
        ...
    ):
        ...

    Returns the current_user if the check allows.
    """
    one_of = tuple(one_of)
    all_of = tuple(all_of)

    def dependency(
        clinic_id: UUID,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> User:
        decision = authorize(db, current_user.id, clinic_id, one_of=one_of, all_of=all_of)
        if decision is AuthzDecision.DENY:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return dependency


def require_permission(permission_slug: str):
    """
    Shorthand for require_permissions(one_of=[permission_slug]).
    """
    return require_permissions(one_of=[permission_slug])
