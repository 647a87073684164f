from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Base class for all ORM models.

    Clinics, users, roles, permissions and memberships all share one schema;
    tenant isolation is enforced by the clinic_id on each membership row.
    """

    pass
