# app/services/permission_catalog.py
"""
The permission catalog: the fixed universe of permission slugs.

The catalog is seeded once (see seed_service) and is immutable afterwards,
so it is loaded into a process-wide snapshot on first use and reused for
slug validation on every binding sync.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.permission import Permission
from app.services.exceptions import UnknownPermission

logger = logging.getLogger(__name__)

# (slug, name, description). Module and action are derived from the slug.
DEFAULT_PERMISSIONS: list[tuple[str, str, str]] = [
    # Clinics
    ("clinics.manage", "Manage Clinics", "Full control over clinic operations"),
    ("clinics.view", "View Clinics", "View clinic information"),
    ("clinics.create", "Create Clinics", "Create new clinics"),
    ("clinics.edit", "Edit Clinics", "Edit clinic information"),
    ("clinics.delete", "Delete Clinics", "Delete clinics"),
    # Doctors
    ("doctors.manage", "Manage Doctors", "Full control over doctor operations"),
    ("doctors.view", "View Doctors", "View doctor information"),
    ("doctors.create", "Create Doctors", "Add new doctors"),
    ("doctors.edit", "Edit Doctors", "Edit doctor information"),
    ("doctors.delete", "Delete Doctors", "Remove doctors"),
    # Patients
    ("patients.manage", "Manage Patients", "Full control over patient operations"),
    ("patients.view", "View Patients", "View patient information"),
    ("patients.create", "Create Patients", "Add new patients"),
    ("patients.edit", "Edit Patients", "Edit patient information"),
    ("patients.delete", "Delete Patients", "Remove patients"),
    # Appointments
    ("appointments.manage", "Manage Appointments", "Full control over appointment operations"),
    ("appointments.view", "View Appointments", "View appointment information"),
    ("appointments.create", "Create Appointments", "Schedule new appointments"),
    ("appointments.edit", "Edit Appointments", "Modify appointments"),
    ("appointments.cancel", "Cancel Appointments", "Cancel appointments"),
    ("appointments.delete", "Delete Appointments", "Remove appointments"),
    ("appointments.checkin", "Check-in Patients", "Check-in patients for appointments"),
    # Prescriptions
    ("prescriptions.manage", "Manage Prescriptions", "Full control over prescription operations"),
    ("prescriptions.view", "View Prescriptions", "View prescription information"),
    ("prescriptions.create", "Create Prescriptions", "Write new prescriptions"),
    ("prescriptions.edit", "Edit Prescriptions", "Modify prescriptions"),
    ("prescriptions.delete", "Delete Prescriptions", "Remove prescriptions"),
    ("prescriptions.download", "Download Prescriptions", "Download prescription PDFs"),
    # Medical records
    ("medical_records.manage", "Manage Medical Records", "Full control over medical records"),
    ("medical_records.view", "View Medical Records", "View patient medical records"),
    ("medical_records.create", "Create Medical Records", "Create new medical records"),
    ("medical_records.edit", "Edit Medical Records", "Modify medical records"),
    ("medical_records.delete", "Delete Medical Records", "Remove medical records"),
    # Encounters
    ("encounters.manage", "Manage Encounters", "Full control over encounter operations"),
    ("encounters.view", "View Encounters", "View encounter information"),
    ("encounters.create", "Create Encounters", "Create new encounters"),
    ("encounters.edit", "Edit Encounters", "Modify encounters"),
    ("encounters.delete", "Delete Encounters", "Remove encounters"),
    ("encounters.complete", "Complete Encounters", "Mark encounters as completed"),
    # Queue
    ("queue.manage", "Manage Queue", "Full control over queue operations"),
    ("queue.view", "View Queue", "View queue information"),
    ("queue.add", "Add to Queue", "Add patients to queue"),
    ("queue.remove", "Remove from Queue", "Remove patients from queue"),
    ("queue.process", "Process Queue", "Process queue items"),
    # Lab results
    ("lab_results.manage", "Manage Lab Results", "Full control over lab results"),
    ("lab_results.view", "View Lab Results", "View lab result information"),
    ("lab_results.create", "Create Lab Results", "Create new lab results"),
    ("lab_results.edit", "Edit Lab Results", "Modify lab results"),
    ("lab_results.delete", "Delete Lab Results", "Remove lab results"),
    # File assets
    ("file_assets.manage", "Manage File Assets", "Full control over file assets"),
    ("file_assets.view", "View File Assets", "View file asset information"),
    ("file_assets.upload", "Upload File Assets", "Upload new file assets"),
    ("file_assets.download", "Download File Assets", "Download file assets"),
    ("file_assets.delete", "Delete File Assets", "Remove file assets"),
    # Rooms
    ("rooms.manage", "Manage Rooms", "Full control over room operations"),
    ("rooms.view", "View Rooms", "View room information"),
    ("rooms.create", "Create Rooms", "Create new rooms"),
    ("rooms.edit", "Edit Rooms", "Modify room information"),
    ("rooms.delete", "Delete Rooms", "Remove rooms"),
    # Insurance
    ("insurance.manage", "Manage Insurance", "Full control over insurance operations"),
    ("insurance.view", "View Insurance", "View insurance information"),
    ("insurance.create", "Create Insurance", "Create new insurance records"),
    ("insurance.edit", "Edit Insurance", "Modify insurance information"),
    ("insurance.delete", "Delete Insurance", "Remove insurance records"),
    # Notifications
    ("notifications.manage", "Manage Notifications", "Full control over notifications"),
    ("notifications.view", "View Notifications", "View notifications"),
    ("notifications.create", "Create Notifications", "Create new notifications"),
    ("notifications.edit", "Edit Notifications", "Modify notifications"),
    ("notifications.delete", "Delete Notifications", "Remove notifications"),
    # Activity logs
    ("activity_logs.view", "View Activity Logs", "View activity logs"),
    ("activity_logs.export", "Export Activity Logs", "Export activity logs"),
    # Schedule
    ("schedule.view", "View Schedule", "View appointment schedules"),
    ("schedule.manage", "Manage Schedule", "Manage appointment schedules"),
    # Users (clinic staff)
    ("users.manage", "Manage Users", "Full control over user operations"),
    ("users.view", "View Users", "View user information"),
    ("users.create", "Create Users", "Create new users"),
    ("users.edit", "Edit Users", "Edit user information"),
    ("users.delete", "Delete Users", "Remove users"),
    ("users.activate", "Activate Users", "Activate user accounts"),
    ("users.deactivate", "Deactivate Users", "Deactivate user accounts"),
    # Roles
    ("roles.manage", "Manage Roles", "Full control over role operations"),
    ("roles.view", "View Roles", "View role information"),
    ("roles.create", "Create Roles", "Create new roles"),
    ("roles.edit", "Edit Roles", "Edit role information"),
    ("roles.delete", "Delete Roles", "Remove roles"),
    # Permissions
    ("permissions.view", "View Permissions", "View permission information"),
    # Billing
    ("billing.manage", "Manage Billing", "Full control over billing operations"),
    ("billing.view", "View Billing", "View billing information"),
    ("billing.create", "Create Billing", "Create new bills"),
    ("billing.edit", "Edit Billing", "Modify billing information"),
    ("billing.delete", "Delete Billing", "Remove billing records"),
    # Reports
    ("reports.view", "View Reports", "View system reports"),
    ("reports.export", "Export Reports", "Export reports to various formats"),
    ("reports.generate", "Generate Reports", "Generate new reports"),
    # Settings
    ("settings.manage", "Manage Settings", "Manage system settings"),
    ("settings.view", "View Settings", "View system settings"),
    # Profile
    ("profile.edit", "Edit Profile", "Edit own profile information"),
    ("profile.view", "View Profile", "View profile information"),
    # Products (medical representatives)
    ("products.manage", "Manage Products", "Full control over product operations"),
    ("products.view", "View Products", "View product information"),
    ("products.create", "Create Products", "Add new products"),
    ("products.edit", "Edit Products", "Modify product information"),
    ("products.delete", "Delete Products", "Remove products"),
    # Meetings (medical representatives)
    ("meetings.manage", "Manage Meetings", "Full control over meeting operations"),
    ("meetings.view", "View Meetings", "View meeting information"),
    ("meetings.create", "Create Meetings", "Schedule new meetings"),
    ("meetings.edit", "Edit Meetings", "Modify meeting information"),
    ("meetings.delete", "Delete Meetings", "Remove meetings"),
    # Interactions (medical representatives)
    ("interactions.manage", "Manage Interactions", "Full control over interaction operations"),
    ("interactions.view", "View Interactions", "View interaction records"),
    ("interactions.create", "Create Interactions", "Record new interactions"),
    ("interactions.edit", "Edit Interactions", "Modify interaction records"),
    ("interactions.delete", "Delete Interactions", "Remove interaction records"),
    # Medrep visits
    ("medrep_visits.manage", "Manage Medrep Visits", "Full control over medrep visit operations"),
    ("medrep_visits.view", "View Medrep Visits", "View medrep visit information"),
    ("medrep_visits.create", "Create Medrep Visits", "Create new medrep visits"),
    ("medrep_visits.edit", "Edit Medrep Visits", "Modify medrep visit information"),
    ("medrep_visits.delete", "Delete Medrep Visits", "Remove medrep visits"),
    # Dashboard
    ("dashboard.view", "View Dashboard", "View dashboard information"),
    ("dashboard.stats", "View Statistics", "View dashboard statistics"),
    # Search
    ("search.global", "Global Search", "Perform global searches"),
    ("search.patients", "Patient Search", "Search patient records"),
    ("search.doctors", "Doctor Search", "Search doctor records"),
    # System (platform scope)
    ("system.admin", "System Administration", "Full system administration access"),
    ("system.info", "View System Info", "View system information"),
    ("system.licenses", "Manage Licenses", "Manage system licenses"),
]


def split_slug(slug: str) -> tuple[str, str]:
    """
    Split "medical_records.view" into ("medical_records", "view").
    """
    module, sep, action = slug.partition(".")
    if not sep or not module or not action:
        raise ValueError(f"Permission slug must look like '<module>.<action>': {slug!r}")
    return module, action


@dataclass(frozen=True)
class CatalogEntry:
    id: UUID
    slug: str
    name: str
    module: str
    action: str
    description: str | None = None


class PermissionCatalog:
    """
    Immutable snapshot of the permissions table.
    """

    def __init__(self, entries: Iterable[CatalogEntry]):
        self._by_slug: dict[str, CatalogEntry] = {e.slug: e for e in entries}

    def __contains__(self, slug: object) -> bool:
        return slug in self._by_slug

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(self._by_slug.values())

    def __len__(self) -> int:
        return len(self._by_slug)

    @property
    def slugs(self) -> frozenset[str]:
        return frozenset(self._by_slug)

    def get(self, slug: str) -> CatalogEntry | None:
        return self._by_slug.get(slug)

    def validate(self, slugs: Iterable[str]) -> list[CatalogEntry]:
        """
        Resolve slugs to catalog entries.
        Raises UnknownPermission listing every slug that is not in the catalog.
        """
        wanted = list(dict.fromkeys(slugs))
        unknown = [s for s in wanted if s not in self._by_slug]
        if unknown:
            raise UnknownPermission(unknown)
        return [self._by_slug[s] for s in wanted]

    def module_actions(self, module: str) -> set[str]:
        return {e.action for e in self._by_slug.values() if e.module == module}

    def by_module(self) -> dict[str, list[CatalogEntry]]:
        grouped: dict[str, list[CatalogEntry]] = {}
        for entry in sorted(self._by_slug.values(), key=lambda e: (e.module, e.action)):
            grouped.setdefault(entry.module, []).append(entry)
        return grouped


_catalog: PermissionCatalog | None = None
_catalog_lock = threading.Lock()


def load_permission_catalog(db: Session) -> PermissionCatalog:
    rows = db.query(Permission).all()
    return PermissionCatalog(
        CatalogEntry(
            id=p.id,
            slug=p.slug,
            name=p.name,
            module=p.module,
            action=p.action,
            description=p.description,
        )
        for p in rows
    )


def get_permission_catalog(db: Session) -> PermissionCatalog:
    """
    Return the process-wide catalog, loading it on first use.

    An empty catalog (permissions not seeded yet) is returned but not cached.
    """
    global _catalog

    if _catalog is not None:
        return _catalog

    with _catalog_lock:
        if _catalog is None:
            catalog = load_permission_catalog(db)
            if not len(catalog):
                logger.warning("Permission catalog is empty. Run the RBAC bootstrap first.")
                return catalog
            _catalog = catalog
            logger.info("Permission catalog loaded (%d permissions).", len(catalog))
        return _catalog


def reset_permission_catalog() -> None:
    """Drop the cached catalog so the next call reloads it."""
    global _catalog
    with _catalog_lock:
        _catalog = None


def list_permissions(db: Session) -> list[Permission]:
    """
    All catalog rows ordered by module then action, for the role editor UI.
    """
    return db.query(Permission).order_by(Permission.module, Permission.action).all()
