"""
User-Clinic-Role membership.
The tenant-binding join: which user holds which role inside which clinic.
"""

import uuid
from datetime import date, datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base
from app.models.clinic import Clinic
from app.models.role import Role
from app.models.user import User


class MembershipStatus(str, PyEnum):
    ACTIVE = "Active"
    ON_LEAVE = "On Leave"
    INACTIVE = "Inactive"


class Membership(Base):
    """
    A user's appointment to a role inside one clinic.

    (user, clinic, role) is unique; a user may hold several roles in the
    same clinic and memberships in many clinics.
    """

    __tablename__ = "user_clinic_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "clinic_id", "role_id", name="uq_user_clinic_role"),
        Index("ix_user_clinic_roles_user_clinic", "user_id", "clinic_id"),
        Index("ix_user_clinic_roles_clinic_role", "clinic_id", "role_id"),
    )

    # Primary Key
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )

    # Foreign Keys
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False,
    )
    role_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("roles.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Status
    status: Mapped[MembershipStatus] = mapped_column(
        Enum(
            MembershipStatus,
            name="membership_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=MembershipStatus.ACTIVE,
        server_default=text("'Active'"),
    )

    # Staff Information
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    join_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    emergency_contact: Mapped[str | None] = mapped_column(String(255), nullable=True)
    emergency_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=datetime.utcnow,
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="memberships")
    clinic: Mapped["Clinic"] = relationship("Clinic", back_populates="memberships")
    role: Mapped["Role"] = relationship("Role", back_populates="memberships", lazy="joined")
