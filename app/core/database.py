from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from app.core.config import get_settings

settings = get_settings()

_connect_args = (
    {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
)

engine = create_engine(
    str(settings.database_url),
    future=True,
    pool_pre_ping=True,
    connect_args=_connect_args,
)

# Session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
)


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that yields a DB session.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Generator[Session, None, None]:
    """
    Run a block of writes as one unit of work.

    Commits when the block finishes and rolls back on any exception, so a
    failed binding sync or membership removal never leaves a partial change
    visible to concurrent permission checks.

    Usage:
        with atomic(db):
            db.add(...)
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
