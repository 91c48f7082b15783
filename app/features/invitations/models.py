"""
Organization invitation model.
"""
import enum
import secrets
from datetime import datetime, timedelta
from sqlalchemy import String, DateTime, ForeignKey, Index, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core import config
from app.core.database.base import Base, TimestampMixin, generate_ulid
from app.features.permissions.catalog import OrgRole
from app.utils import utcnow


class InvitationStatus(str, enum.Enum):
    """Status of organization invitations."""
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


def generate_token() -> str:
    return secrets.token_hex(32)


def default_expiry() -> datetime:
    return utcnow() + timedelta(days=config.INVITATION_EXPIRE_DAYS)


class Invitation(Base, TimestampMixin):
    """
    Invitation for an email address to join an organization.

    Accepting it creates the membership with the invited role. Only PENDING
    invitations can be accepted, cancelled or resent; at most one PENDING
    invitation exists per (organization, email).
    """
    __tablename__ = "invitations"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    # Stored lower-cased
    email: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[OrgRole] = mapped_column(SQLEnum(OrgRole), default=OrgRole.MEMBER, nullable=False)
    custom_role_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organization_roles.id", ondelete="SET NULL"),
        nullable=True
    )

    status: Mapped[InvitationStatus] = mapped_column(
        SQLEnum(InvitationStatus),
        default=InvitationStatus.PENDING,
        nullable=False,
        index=True
    )
    invited_by: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False)

    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, default=generate_token)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=default_expiry)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    organization: Mapped["Organization"] = relationship("Organization", lazy="selectin")  # type: ignore  # noqa: F821
    inviter: Mapped["User"] = relationship("User", lazy="selectin")  # type: ignore  # noqa: F821

    __table_args__ = (
        Index("ix_invitations_org_email", "organization_id", "email"),
    )

    def __repr__(self) -> str:
        return f"<Invitation(id={self.id}, email={self.email!r}, org_id={self.organization_id}, status={self.status})>"
