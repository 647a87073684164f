# tests/conftest.py
import uuid
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import get_db
from app.core.security import create_access_token
from app.main import app
from app.models.base import Base
from app.models.clinic import Clinic
from app.models.membership import Membership, MembershipStatus
from app.models.role import Role
from app.models.user import User
from app.models import registry  # registers every RBAC table on Base.metadata
from app.services.permission_catalog import reset_permission_catalog
from app.services.seed_service import bootstrap_rbac

# Tests never hash real passwords; only the login test needs a verifiable hash.
DUMMY_HASH = "not-a-bcrypt-hash"


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture()
def db(session_factory) -> Iterator[Session]:
    reset_permission_catalog()
    session = session_factory()
    bootstrap_rbac(session)
    try:
        yield session
    finally:
        session.close()
        reset_permission_catalog()


class Factory:
    """
    Small helpers for building users, clinics and memberships in tests.
    """

    def __init__(self, db: Session):
        self.db = db

    def user(self, name: str = "Test User", email: str | None = None) -> User:
        user = User(
            email=email or f"{uuid.uuid4().hex[:10]}@example.com",
            full_name=name,
            hashed_password=DUMMY_HASH,
        )
        self.db.add(user)
        self.db.commit()
        return user

    def clinic(self, name: str = "Clinic", slug: str | None = None) -> Clinic:
        clinic = Clinic(name=name, slug=slug or f"clinic-{uuid.uuid4().hex[:8]}")
        self.db.add(clinic)
        self.db.commit()
        return clinic

    def role(self, name: str) -> Role:
        return self.db.query(Role).filter(Role.name == name).one()

    def membership(
        self,
        user: User,
        clinic: Clinic,
        role: Role | str,
        status: MembershipStatus = MembershipStatus.ACTIVE,
    ) -> Membership:
        if isinstance(role, str):
            role = self.role(role)
        membership = Membership(
            user_id=user.id,
            clinic_id=clinic.id,
            role_id=role.id,
            status=status,
        )
        self.db.add(membership)
        self.db.commit()
        return membership


@pytest.fixture()
def factory(db) -> Factory:
    return Factory(db)


@pytest.fixture()
def client(db) -> Iterator[TestClient]:
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers():
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}

    return _headers


@pytest.fixture()
def fake_cache(monkeypatch):
    """
    Dict-backed stand-in for the Redis client. Returns the backing dict.
    """
    store: dict[str, str] = {}

    class FakeRedis:
        def ping(self):
            return True

        def get(self, key):
            return store.get(key)

        def setex(self, key, ttl, value):
            store[key] = value

        def incr(self, key):
            store[key] = str(int(store.get(key, "0")) + 1)
            return int(store[key])

    fake = FakeRedis()
    monkeypatch.setattr("app.core.redis.get_redis_client", lambda: fake)
    return store
