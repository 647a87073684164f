import uuid

import pytest

from app.core.config import get_settings
from app.models.role import Role, RolePermission
from app.services import membership_service, role_service
from app.services.exceptions import (
    DuplicateRoleName,
    RoleInUse,
    RoleSharedAcrossClinics,
    SystemRoleImmutable,
    UnknownPermission,
    UnknownRole,
)


class TestCreateRole:
    def test_create_with_permissions(self, db):
        role = role_service.create_role(
            db,
            "Auditor",
            description="Read-only reviewer",
            permission_slugs=["reports.view", "activity_logs.view"],
        )
        assert role.is_system is False
        assert role_service.effective_permissions(db, role) == {"reports.view", "activity_logs.view"}

    def test_create_without_permissions(self, db):
        role = role_service.create_role(db, "Volunteer")
        assert role_service.effective_permissions(db, role) == set()

    def test_duplicate_name(self, db):
        with pytest.raises(DuplicateRoleName):
            role_service.create_role(db, "doctor")

    def test_unknown_permission_creates_nothing(self, db):
        with pytest.raises(UnknownPermission):
            role_service.create_role(db, "Broken", permission_slugs=["reports.view", "reports.fly"])
        assert db.query(Role).filter(Role.name == "Broken").first() is None

    def test_template_permissions_are_merged(self, db, factory):
        receptionist = factory.role("receptionist")
        role = role_service.create_role(
            db,
            "Senior Receptionist",
            permission_slugs=["reports.export"],
            template_role_id=receptionist.id,
        )
        expected = role_service.effective_permissions(db, receptionist) | {"reports.export"}
        assert role_service.effective_permissions(db, role) == expected
        # The template itself is untouched.
        assert "reports.export" not in role_service.effective_permissions(db, receptionist)

    def test_unknown_template(self, db):
        with pytest.raises(UnknownRole):
            role_service.create_role(db, "Copy", template_role_id=uuid.uuid4())


class TestBindPermissions:
    def test_replaces_full_set(self, db):
        role = role_service.create_role(db, "Auditor", permission_slugs=["reports.view", "billing.view"])
        bound = role_service.bind_permissions(db, role, ["billing.view", "insurance.view"])
        assert bound == {"billing.view", "insurance.view"}
        assert role_service.effective_permissions(db, role) == {"billing.view", "insurance.view"}

    def test_empty_set_clears_bindings(self, db):
        role = role_service.create_role(db, "Auditor", permission_slugs=["reports.view"])
        role_service.bind_permissions(db, role, [])
        assert role_service.effective_permissions(db, role) == set()
        assert db.query(RolePermission).filter(RolePermission.role_id == role.id).count() == 0

    def test_is_all_or_nothing(self, db):
        role = role_service.create_role(db, "Auditor", permission_slugs=["reports.view"])
        with pytest.raises(UnknownPermission) as exc_info:
            role_service.bind_permissions(db, role, ["billing.view", "billing.teleport"])
        assert exc_info.value.slugs == ["billing.teleport"]
        assert role_service.effective_permissions(db, role) == {"reports.view"}

    def test_system_role_is_rejected(self, db, factory):
        doctor = factory.role("doctor")
        before = role_service.effective_permissions(db, doctor)
        with pytest.raises(SystemRoleImmutable):
            role_service.bind_permissions(db, doctor, ["reports.view"])
        assert role_service.effective_permissions(db, doctor) == before

    def test_no_manage_expansion(self, db):
        role = role_service.create_role(db, "Billing Lead", permission_slugs=["billing.manage"])
        assert role_service.effective_permissions(db, role) == {"billing.manage"}


class TestUpdateRole:
    def test_rename_and_rebind(self, db):
        role = role_service.create_role(db, "Auditor", permission_slugs=["reports.view"])
        updated = role_service.update_role(
            db,
            role.id,
            name="Compliance Auditor",
            description="Reviews records",
            permission_slugs=["reports.view", "reports.export"],
        )
        assert updated.name == "Compliance Auditor"
        assert updated.description == "Reviews records"
        assert updated.permission_slugs == ["reports.export", "reports.view"]

    def test_rename_to_taken_name(self, db):
        role = role_service.create_role(db, "Auditor")
        with pytest.raises(DuplicateRoleName):
            role_service.update_role(db, role.id, name="receptionist")

    def test_system_role_cannot_be_renamed(self, db, factory):
        with pytest.raises(SystemRoleImmutable):
            role_service.update_role(db, factory.role("admin").id, name="boss")
        assert factory.role("admin").name == "admin"

    def test_unknown_role(self, db):
        with pytest.raises(UnknownRole):
            role_service.update_role(db, uuid.uuid4(), name="Ghost")


class TestDeleteRole:
    def test_delete_unused_role_removes_bindings(self, db):
        role = role_service.create_role(db, "Temp", permission_slugs=["reports.view"])
        role_id = role.id
        role_service.delete_role(db, role_id)
        assert db.query(Role).filter(Role.id == role_id).first() is None
        assert db.query(RolePermission).filter(RolePermission.role_id == role_id).count() == 0

    def test_system_role_cannot_be_deleted(self, db, factory):
        with pytest.raises(SystemRoleImmutable):
            role_service.delete_role(db, factory.role("patient").id)

    def test_auditor_in_use_then_deletable(self, db, factory):
        clinic = factory.clinic("Riverside")
        auditor = role_service.create_role(db, "Auditor", permission_slugs=["reports.view"])
        memberships = [factory.membership(factory.user(), clinic, auditor) for _ in range(3)]

        with pytest.raises(RoleInUse) as exc_info:
            role_service.delete_role(db, auditor.id)
        assert exc_info.value.membership_count == 3
        assert db.query(Role).filter(Role.id == auditor.id).first() is not None

        receptionist = factory.role("receptionist")
        for m in memberships:
            membership_service.change_role(db, m.id, receptionist.id)

        role_service.delete_role(db, auditor.id)
        assert db.query(Role).filter(Role.name == "Auditor").first() is None


def test_role_membership_counts(db, factory):
    clinic = factory.clinic()
    factory.membership(factory.user(), clinic, "doctor")
    factory.membership(factory.user(), clinic, "doctor")
    factory.membership(factory.user(), clinic, "admin")

    counts = role_service.role_membership_counts(db)
    assert counts[factory.role("doctor").id] == 2
    assert counts[factory.role("admin").id] == 1
    assert factory.role("medrep").id not in counts


def test_get_role_by_name(db):
    assert role_service.get_role_by_name(db, "medrep").is_system
    with pytest.raises(UnknownRole):
        role_service.get_role_by_name(db, "wizard")


def test_list_roles_filters(db):
    role_service.create_role(db, "Auditor", description="Reviews billing records")
    role_service.create_role(db, "Night Nurse", description="Ward cover")

    assert [r.name for r in role_service.list_roles(db, search="audit")] == ["Auditor"]
    assert [r.name for r in role_service.list_roles(db, search="BILLING")] == ["Auditor"]
    assert [r.name for r in role_service.list_roles(db, is_system=False)] == ["Auditor", "Night Nurse"]
    assert all(r.is_system for r in role_service.list_roles(db, is_system=True))
    assert role_service.list_roles(db, search="nurse", is_system=True) == []


class TestDuplicateNameRace:
    def test_create_maps_unique_violation(self, db, monkeypatch):
        monkeypatch.setattr(role_service, "_ensure_name_available", lambda *args, **kwargs: None)
        with pytest.raises(DuplicateRoleName):
            role_service.create_role(db, "doctor", permission_slugs=["reports.view"])
        assert db.query(Role).filter(Role.name == "doctor").count() == 1

    def test_rename_maps_unique_violation(self, db, monkeypatch):
        role = role_service.create_role(db, "Auditor")
        monkeypatch.setattr(role_service, "_ensure_name_available", lambda *args, **kwargs: None)
        with pytest.raises(DuplicateRoleName):
            role_service.update_role(db, role.id, name="receptionist")
        db.refresh(role)
        assert role.name == "Auditor"


class TestSharedCustomRoles:
    def test_other_clinic_cannot_rebind(self, db, factory):
        riverside = factory.clinic("Riverside")
        hillcrest = factory.clinic("Hillcrest")
        auditor = role_service.create_role(db, "Auditor", permission_slugs=["reports.view"])
        factory.membership(factory.user(), hillcrest, auditor)

        with pytest.raises(RoleSharedAcrossClinics) as exc_info:
            role_service.bind_permissions(db, auditor, ["users.delete"], clinic_id=riverside.id)
        assert exc_info.value.clinic_count == 1
        assert role_service.effective_permissions(db, auditor) == {"reports.view"}

        with pytest.raises(RoleSharedAcrossClinics):
            role_service.update_role(db, auditor.id, name="Deleter", clinic_id=riverside.id)
        db.refresh(auditor)
        assert auditor.name == "Auditor"

    def test_holding_clinic_may_rebind(self, db, factory):
        hillcrest = factory.clinic("Hillcrest")
        auditor = role_service.create_role(db, "Auditor", permission_slugs=["reports.view"])
        factory.membership(factory.user(), hillcrest, auditor)

        bound = role_service.bind_permissions(db, auditor, ["reports.export"], clinic_id=hillcrest.id)
        assert bound == {"reports.export"}

    def test_unused_role_is_editable_anywhere(self, db, factory):
        riverside = factory.clinic("Riverside")
        auditor = role_service.create_role(db, "Auditor")
        updated = role_service.update_role(
            db, auditor.id, permission_slugs=["reports.view"], clinic_id=riverside.id
        )
        assert updated.permission_slugs == ["reports.view"]

    def test_platform_scope_may_rebind_shared_role(self, db, factory):
        riverside = factory.clinic("Riverside")
        hillcrest = factory.clinic("Hillcrest")
        auditor = role_service.create_role(db, "Auditor", permission_slugs=["reports.view"])
        factory.membership(factory.user(), riverside, auditor)
        factory.membership(factory.user(), hillcrest, auditor)

        platform_id = get_settings().platform_clinic_id
        bound = role_service.bind_permissions(db, auditor, ["reports.export"], clinic_id=platform_id)
        assert bound == {"reports.export"}
