#!/usr/bin/env python3
# scripts/seed_demo_data.py
"""
Demo data seeder: two clinics with one login per clinic role.

- Clinics: Riverside and Hillcrest.
- Per clinic: one admin, doctor, receptionist, patient and medrep user,
  each with a membership in that clinic and the known password Demo@12345.
- Demo users are recognized by their email domain (@demo.clinic), so
  --reset removes exactly what --seed created.

Run:
  python -m scripts.seed_demo_data --seed
  python -m scripts.seed_demo_data --reset
"""
from __future__ import annotations

import argparse
import logging
import sys

from sqlalchemy.orm import Session

from app.core.database import SessionLocal, atomic
from app.core.logging_config import configure_logging
from app.core.security import get_password_hash
from app.models.clinic import Clinic
from app.models.membership import Membership
from app.models.user import User
from app.services.authz_service import invalidate_authorization_cache
from app.services.membership_service import add_membership
from app.services.role_service import get_role_by_name
from app.services.seed_service import bootstrap_rbac

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "Demo@12345"
DEMO_EMAIL_DOMAIN = "demo.clinic"

DEMO_CLINICS = [
    ("Riverside Family Clinic", "riverside", "America/Chicago"),
    ("Hillcrest Medical Center", "hillcrest", "America/Denver"),
]

DEMO_STAFF = [
    ("admin", "Admin", "Administration"),
    ("doctor", "Doctor", "General Medicine"),
    ("receptionist", "Receptionist", "Front Desk"),
    ("patient", "Patient", None),
    ("medrep", "Medical Rep", None),
]


def demo_email(clinic_slug: str, role_name: str) -> str:
    return f"{role_name}.{clinic_slug}@{DEMO_EMAIL_DOMAIN}"


def _ensure_clinic(db: Session, name: str, slug: str, timezone: str) -> Clinic:
    clinic = db.query(Clinic).filter(Clinic.slug == slug).first()
    if clinic is None:
        with atomic(db):
            clinic = Clinic(name=name, slug=slug, timezone=timezone)
            db.add(clinic)
    return clinic


def _ensure_user(db: Session, email: str, full_name: str, hashed_password: str) -> User:
    user = db.query(User).filter(User.email == email).first()
    if user is None:
        with atomic(db):
            user = User(email=email, full_name=full_name, hashed_password=hashed_password)
            db.add(user)
    return user


def seed(db: Session) -> None:
    bootstrap_rbac(db)
    hashed = get_password_hash(DEMO_PASSWORD)

    for clinic_name, slug, timezone in DEMO_CLINICS:
        clinic = _ensure_clinic(db, clinic_name, slug, timezone)
        for role_name, title, department in DEMO_STAFF:
            role = get_role_by_name(db, role_name)
            email = demo_email(slug, role_name)
            user = _ensure_user(db, email, f"{clinic_name.split()[0]} {title}", hashed)
            exists = (
                db.query(Membership)
                .filter(
                    Membership.user_id == user.id,
                    Membership.clinic_id == clinic.id,
                    Membership.role_id == role.id,
                )
                .first()
            )
            if exists is None:
                add_membership(
                    db,
                    user_id=user.id,
                    clinic_id=clinic.id,
                    role_id=role.id,
                    department=department,
                )
            print(f"{slug:<10} {role_name:<13} {email}")

    print(f"Demo password for every login: {DEMO_PASSWORD}")


def reset(db: Session) -> None:
    """
    Delete demo clinics and demo users. Memberships go with them (CASCADE),
    which bypasses the last-administrator rule on purpose: the whole clinic
    is being removed.
    """
    slugs = [slug for _, slug, _ in DEMO_CLINICS]
    with atomic(db):
        demo_users = db.query(User).filter(User.email.like(f"%@{DEMO_EMAIL_DOMAIN}")).all()
        demo_clinics = db.query(Clinic).filter(Clinic.slug.in_(slugs)).all()
        user_ids = [u.id for u in demo_users]
        clinic_ids = [c.id for c in demo_clinics]
        if user_ids or clinic_ids:
            db.query(Membership).filter(
                Membership.user_id.in_(user_ids) | Membership.clinic_id.in_(clinic_ids)
            ).delete(synchronize_session=False)
        for obj in [*demo_users, *demo_clinics]:
            db.delete(obj)

    invalidate_authorization_cache()
    print(f"Removed {len(demo_clinics)} demo clinics and {len(demo_users)} demo users")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Clinic RBAC demo data")
    group = p.add_mutually_exclusive_group(required=True)
    group.add_argument("--seed", action="store_true", help="Create demo clinics, users and memberships")
    group.add_argument("--reset", action="store_true", help="Remove all demo data")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = parse_args(argv)

    db: Session = SessionLocal()
    try:
        if args.seed:
            seed(db)
        else:
            reset(db)
    except Exception:
        db.rollback()
        logger.exception("Demo data command failed")
        raise
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
