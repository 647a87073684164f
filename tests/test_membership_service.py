import threading
import time
import uuid
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.models.base import Base
from app.models.clinic import Clinic
from app.models.membership import Membership, MembershipStatus
from app.models.role import Role
from app.models.user import User
from app.services import membership_service
from app.services.exceptions import (
    DuplicateMembership,
    LastAdministrator,
    PlatformRoleOutOfScope,
    UnknownClinic,
    UnknownMembership,
    UnknownRole,
    UnknownUser,
)
from app.services.permission_catalog import reset_permission_catalog
from app.services.seed_service import bootstrap_rbac, ensure_platform_clinic


class TestAddMembership:
    def test_add_with_details(self, db, factory):
        user = factory.user("Dana Doctor")
        clinic = factory.clinic("Riverside")
        doctor = factory.role("doctor")

        membership = membership_service.add_membership(
            db,
            user_id=user.id,
            clinic_id=clinic.id,
            role_id=doctor.id,
            department="Cardiology",
            emergency_phone="555-0101",
        )

        assert membership.status == MembershipStatus.ACTIVE
        assert membership.department == "Cardiology"
        assert membership.emergency_phone == "555-0101"
        assert membership.join_date == date.today()
        assert membership.role.name == "doctor"

    def test_unknown_references(self, db, factory):
        user = factory.user()
        clinic = factory.clinic()
        role = factory.role("doctor")

        with pytest.raises(UnknownUser):
            membership_service.add_membership(db, uuid.uuid4(), clinic.id, role.id)
        with pytest.raises(UnknownClinic):
            membership_service.add_membership(db, user.id, uuid.uuid4(), role.id)
        with pytest.raises(UnknownRole):
            membership_service.add_membership(db, user.id, clinic.id, uuid.uuid4())

    def test_duplicate_triple(self, db, factory):
        user = factory.user()
        clinic = factory.clinic()
        factory.membership(user, clinic, "doctor")

        with pytest.raises(DuplicateMembership):
            membership_service.add_membership(db, user.id, clinic.id, factory.role("doctor").id)

    def test_superadmin_only_at_platform(self, db, factory):
        user = factory.user()
        clinic = factory.clinic("Riverside")
        superadmin = factory.role("superadmin")

        with pytest.raises(PlatformRoleOutOfScope):
            membership_service.add_membership(db, user.id, clinic.id, superadmin.id)
        assert membership_service.list_user_memberships(db, user.id) == []

        platform = ensure_platform_clinic(db)
        db.commit()
        membership = membership_service.add_membership(db, user.id, platform.id, superadmin.id)
        assert membership.role.name == "superadmin"

    def test_same_user_many_roles_and_clinics(self, db, factory):
        user = factory.user()
        riverside = factory.clinic("Riverside")
        hillcrest = factory.clinic("Hillcrest")

        membership_service.add_membership(db, user.id, riverside.id, factory.role("doctor").id)
        membership_service.add_membership(db, user.id, riverside.id, factory.role("receptionist").id)
        membership_service.add_membership(db, user.id, hillcrest.id, factory.role("doctor").id)

        assert len(membership_service.list_user_memberships(db, user.id)) == 3


class TestRemoveMembership:
    def test_last_administrator_is_kept(self, db, factory):
        clinic = factory.clinic("Riverside")
        admin = factory.membership(factory.user(), clinic, "admin")

        with pytest.raises(LastAdministrator):
            membership_service.remove_membership(db, admin.id)
        assert db.query(Membership).filter(Membership.id == admin.id).first() is not None

    def test_admin_removable_when_another_exists(self, db, factory):
        clinic = factory.clinic("Riverside")
        first = factory.membership(factory.user(), clinic, "admin")
        factory.membership(factory.user(), clinic, "superadmin")

        membership_service.remove_membership(db, first.id)
        assert db.query(Membership).filter(Membership.id == first.id).first() is None

    def test_non_admin_removal(self, db, factory):
        clinic = factory.clinic()
        factory.membership(factory.user(), clinic, "admin")
        doctor = factory.membership(factory.user(), clinic, "doctor")

        membership_service.remove_membership(db, doctor.id)
        assert membership_service.list_clinic_memberships(db, clinic.id)[0].role.name == "admin"

    def test_unknown_membership(self, db):
        with pytest.raises(UnknownMembership):
            membership_service.remove_membership(db, uuid.uuid4())

    def test_membership_of_other_clinic_is_unknown(self, db, factory):
        riverside = factory.clinic("Riverside")
        hillcrest = factory.clinic("Hillcrest")
        doctor = factory.membership(factory.user(), riverside, "doctor")

        with pytest.raises(UnknownMembership):
            membership_service.remove_membership(db, doctor.id, clinic_id=hillcrest.id)


class TestChangeRole:
    def test_change_role(self, db, factory):
        clinic = factory.clinic()
        membership = factory.membership(factory.user(), clinic, "receptionist")

        changed = membership_service.change_role(db, membership.id, factory.role("doctor").id)
        assert changed.role.name == "doctor"

    def test_away_from_last_admin(self, db, factory):
        clinic = factory.clinic()
        admin = factory.membership(factory.user(), clinic, "admin")

        with pytest.raises(LastAdministrator):
            membership_service.change_role(db, admin.id, factory.role("doctor").id)
        db.refresh(admin)
        assert admin.role.name == "admin"

    def test_between_administrator_roles(self, db, factory):
        platform = ensure_platform_clinic(db)
        db.commit()
        admin = factory.membership(factory.user(), platform, "admin")

        changed = membership_service.change_role(db, admin.id, factory.role("superadmin").id)
        assert changed.role.name == "superadmin"

    def test_into_existing_triple(self, db, factory):
        user = factory.user()
        clinic = factory.clinic()
        factory.membership(user, clinic, "doctor")
        receptionist = factory.membership(user, clinic, "receptionist")

        with pytest.raises(DuplicateMembership):
            membership_service.change_role(db, receptionist.id, factory.role("doctor").id)

    def test_unknown_role(self, db, factory):
        membership = factory.membership(factory.user(), factory.clinic(), "doctor")
        with pytest.raises(UnknownRole):
            membership_service.change_role(db, membership.id, uuid.uuid4())

    def test_superadmin_outside_platform_is_refused(self, db, factory):
        clinic = factory.clinic()
        admin = factory.membership(factory.user(), clinic, "admin")

        with pytest.raises(PlatformRoleOutOfScope):
            membership_service.change_role(db, admin.id, factory.role("superadmin").id)
        db.refresh(admin)
        assert admin.role.name == "admin"


class TestStatusAndDetails:
    def test_any_transition_is_allowed(self, db, factory):
        membership = factory.membership(factory.user(), factory.clinic(), "doctor")

        for status in (
            MembershipStatus.ON_LEAVE,
            MembershipStatus.INACTIVE,
            MembershipStatus.ACTIVE,
            MembershipStatus.INACTIVE,
            MembershipStatus.ON_LEAVE,
        ):
            assert membership_service.set_status(db, membership.id, status).status == status

    def test_last_admin_may_be_deactivated(self, db, factory):
        clinic = factory.clinic()
        admin = factory.membership(factory.user(), clinic, "admin")

        membership_service.set_status(db, admin.id, MembershipStatus.INACTIVE)
        # Still counted: removing it is refused.
        with pytest.raises(LastAdministrator):
            membership_service.remove_membership(db, admin.id)

    def test_update_details_leaves_role_and_status(self, db, factory):
        membership = factory.membership(factory.user(), factory.clinic(), "doctor")

        updated = membership_service.update_membership_details(
            db,
            membership.id,
            {"department": "Pediatrics", "notes": "Part-time", "role_id": uuid.uuid4()},
        )
        assert updated.department == "Pediatrics"
        assert updated.notes == "Part-time"
        assert updated.role.name == "doctor"
        assert updated.status == MembershipStatus.ACTIVE

    def test_list_by_status(self, db, factory):
        clinic = factory.clinic()
        factory.membership(factory.user(), clinic, "doctor")
        factory.membership(factory.user(), clinic, "doctor", status=MembershipStatus.INACTIVE)

        assert len(membership_service.list_clinic_memberships(db, clinic.id)) == 2
        inactive = membership_service.list_clinic_memberships(db, clinic.id, status=MembershipStatus.INACTIVE)
        assert [m.status for m in inactive] == [MembershipStatus.INACTIVE]


def test_role_holders_are_scoped_to_the_clinic(db, factory):
    riverside = factory.clinic("Riverside")
    hillcrest = factory.clinic("Hillcrest")
    doctor = factory.role("doctor")
    here = factory.membership(factory.user(), riverside, doctor)
    factory.membership(factory.user(), hillcrest, doctor)
    factory.membership(factory.user(), riverside, "receptionist")

    holders = membership_service.list_role_memberships(db, doctor.id, riverside.id)
    assert [m.id for m in holders] == [here.id]

    with pytest.raises(UnknownRole):
        membership_service.list_role_memberships(db, uuid.uuid4(), riverside.id)


@pytest.fixture()
def file_sessions(tmp_path):
    """
    Session factory over a file-backed SQLite database, so concurrent
    sessions use separate connections and real database locks.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'clinic.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    sessions = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)

    reset_permission_catalog()
    with sessions() as session:
        bootstrap_rbac(session)
    yield sessions
    reset_permission_catalog()
    engine.dispose()


def _clinic_with_two_admins(sessions) -> list[uuid.UUID]:
    with sessions() as session:
        clinic = Clinic(name="Riverside", slug="riverside")
        admin = session.query(Role).filter(Role.name == "admin").one()
        session.add(clinic)
        session.flush()
        memberships = []
        for n in range(2):
            user = User(email=f"admin{n}@example.com", full_name=f"Admin {n}", hashed_password="x")
            session.add(user)
            session.flush()
            membership = Membership(user_id=user.id, clinic_id=clinic.id, role_id=admin.id)
            session.add(membership)
            memberships.append(membership)
        session.commit()
        return [m.id for m in memberships]


def _run_concurrently(sessions, monkeypatch, operation, membership_ids) -> list[str]:
    """
    Run `operation` for each membership in its own thread and session.

    Every thread reaches the clinic lock together, and the administrator
    check is slowed down, so without the lock both checks would pass before
    either write.
    """
    barrier = threading.Barrier(len(membership_ids))
    lock_clinic = membership_service.lock_clinic
    would_orphan_admins = membership_service.would_orphan_admins

    def lock_together(db, clinic_id):
        barrier.wait(timeout=10)
        return lock_clinic(db, clinic_id)

    def slow_check(*args, **kwargs):
        result = would_orphan_admins(*args, **kwargs)
        time.sleep(0.2)
        return result

    monkeypatch.setattr(membership_service, "lock_clinic", lock_together)
    monkeypatch.setattr(membership_service, "would_orphan_admins", slow_check)

    outcomes = []

    def worker(membership_id):
        with sessions() as session:
            try:
                operation(session, membership_id)
                outcomes.append("done")
            except LastAdministrator:
                outcomes.append("refused")

    threads = [threading.Thread(target=worker, args=(mid,)) for mid in membership_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


class TestConcurrentAdminChanges:
    def test_concurrent_removals_keep_one_admin(self, file_sessions, monkeypatch):
        membership_ids = _clinic_with_two_admins(file_sessions)

        outcomes = _run_concurrently(
            file_sessions,
            monkeypatch,
            membership_service.remove_membership,
            membership_ids,
        )

        assert sorted(outcomes) == ["done", "refused"]
        with file_sessions() as session:
            assert session.query(Membership).count() == 1

    def test_concurrent_demotions_keep_one_admin(self, file_sessions, monkeypatch):
        membership_ids = _clinic_with_two_admins(file_sessions)
        with file_sessions() as session:
            doctor_id = session.query(Role.id).filter(Role.name == "doctor").scalar()

        def demote(session, membership_id):
            membership_service.change_role(session, membership_id, doctor_id)

        outcomes = _run_concurrently(file_sessions, monkeypatch, demote, membership_ids)

        assert sorted(outcomes) == ["done", "refused"]
        with file_sessions() as session:
            roles = [m.role.name for m in session.query(Membership).all()]
        assert sorted(roles) == ["admin", "doctor"]
