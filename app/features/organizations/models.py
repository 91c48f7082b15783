"""
Organization and Membership models.

Organizations are the tenants. A user belongs to an organization through exactly
one Membership row, which carries the static org role and an optional custom role.
Once an organization exists exactly one of its memberships holds role OWNER.
"""
import enum
from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, ForeignKey, Text, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid
from app.features.permissions.catalog import OrgRole
from app.utils import utcnow


class OrgStatus(str, enum.Enum):
    """Lifecycle status of an organization."""
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    PENDING = "PENDING"


class Organization(Base, TimestampMixin):
    """
    Organization (tenant) model.
    """
    __tablename__ = "organizations"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Denormalized pointer to the owning user, kept in step with the OWNER membership
    owner_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id"),
        nullable=False,
        index=True
    )

    status: Mapped[OrgStatus] = mapped_column(
        SQLEnum(OrgStatus),
        default=OrgStatus.ACTIVE,
        nullable=False,
        index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    memberships: Mapped[list["Membership"]] = relationship(
        "Membership",
        back_populates="organization",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r})>"


class Membership(Base, TimestampMixin):
    """
    Binding of a user to an organization.

    role is the static org role; custom_role_id optionally points at an
    OrganizationRole whose grants replace the static role's fallback grants.
    """
    __tablename__ = "memberships"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    role: Mapped[OrgRole] = mapped_column(
        SQLEnum(OrgRole),
        default=OrgRole.MEMBER,
        nullable=False,
        index=True
    )
    custom_role_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organization_roles.id", ondelete="SET NULL"),
        nullable=True
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    organization: Mapped["Organization"] = relationship(
        "Organization",
        back_populates="memberships",
        lazy="selectin"
    )
    user: Mapped["User"] = relationship("User", lazy="selectin")  # type: ignore  # noqa: F821

    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_memberships_user_org"),
    )

    def __repr__(self) -> str:
        return f"<Membership(id={self.id}, user_id={self.user_id}, org_id={self.organization_id}, role={self.role})>"
