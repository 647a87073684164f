#!/usr/bin/env python3
# scripts/setup_platform.py
"""
Platform setup: permission catalog, system roles, platform clinic and the
platform administrator.
This script is safe to run many times (idempotent).

Examples:
  # Seed permissions, system roles and the platform clinic
  python -m scripts.setup_platform --bootstrap

  # Ensure the platform admin (from args)
  python -m scripts.setup_platform --ensure-platform-admin --email admin@example.com --password "Admin@12345"

  # Everything, then check the stored data against the seed tables
  python -m scripts.setup_platform --bootstrap --ensure-platform-admin --validate

Examples - env-driven:
  # Credentials read from PLATFORM_ADMIN_EMAIL / PLATFORM_ADMIN_PASSWORD
  python -m scripts.setup_platform --ensure-platform-admin
"""

from __future__ import annotations

import argparse
import logging
import sys

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import SessionLocal
from app.core.logging_config import configure_logging
from app.services.seed_service import bootstrap_rbac, ensure_platform_admin, validate_rbac

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Clinic RBAC platform setup")
    p.add_argument(
        "--bootstrap",
        action="store_true",
        help="Seed the permission catalog, system roles and the platform clinic",
    )
    p.add_argument(
        "--ensure-platform-admin",
        action="store_true",
        help="Ensure the platform admin exists (from args if provided, else from env)",
    )
    p.add_argument("--validate", action="store_true", help="Report RBAC data problems")

    # Optional CLI overrides (otherwise env is used)
    p.add_argument("--email", type=str, help="Platform admin email (or use env PLATFORM_ADMIN_EMAIL)")
    p.add_argument("--password", type=str, help="Platform admin password (or use env PLATFORM_ADMIN_PASSWORD)")
    p.add_argument("--full-name", type=str, default=None, help="Default: env PLATFORM_ADMIN_NAME")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = parse_args(argv)

    if not (args.bootstrap or args.ensure_platform_admin or args.validate):
        print("Nothing to do. Use --bootstrap, --ensure-platform-admin and/or --validate.")
        return 1

    settings = get_settings()

    email: str | None = None
    password: str | None = None
    if args.ensure_platform_admin:
        # CLI args take precedence, then settings (from .env)
        email = args.email or settings.platform_admin_email
        password = args.password or settings.platform_admin_password
        if not email or not password:
            raise SystemExit(
                "Platform admin credentials missing.\n"
                "Provide --email/--password OR set env PLATFORM_ADMIN_EMAIL and PLATFORM_ADMIN_PASSWORD."
            )

    db: Session = SessionLocal()
    try:
        # Bootstrap runs first so the superadmin role exists for the admin.
        if args.bootstrap:
            result = bootstrap_rbac(db)
            print(
                f"RBAC bootstrapped: {len(result['permissions'])} permissions, "
                f"{len(result['roles'])} system roles"
            )

        if args.ensure_platform_admin:
            ensure_platform_admin(db, email=email, password=password, full_name=args.full_name)
            print(f"Platform admin ensured: {email}")

        if args.validate:
            problems = validate_rbac(db)
            if problems:
                for problem in problems:
                    print(f"- {problem}")
                return 2
            print("RBAC data is consistent")

    except Exception:
        db.rollback()
        logger.exception("Platform setup failed")
        raise
    finally:
        db.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
