"""
Platform RBAC models: permissions, roles and their assignments.

Roles reference permissions and users through association tables so that a
role's permission set can be replaced without touching the role itself.
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Table, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid
from app.utils import utcnow


platform_role_permissions = Table(
    "platform_role_permissions",
    Base.metadata,
    Column("role_id", String(26), ForeignKey("platform_roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("platform_permissions.id", ondelete="CASCADE"), primary_key=True),
)

# One row per (user, role); a user may hold several roles but each only once
user_platform_roles = Table(
    "user_platform_roles",
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", String(26), ForeignKey("platform_roles.id", ondelete="CASCADE"), primary_key=True, index=True),
    Column("assigned_by", String(26), nullable=True),
    Column("assigned_at", DateTime(timezone=True), default=utcnow, nullable=False),
)


class PlatformPermission(Base, TimestampMixin):
    """A catalog permission as stored for role linking."""
    __tablename__ = "platform_permissions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    module: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<PlatformPermission(name={self.name}, module={self.module})>"


class PlatformRole(Base, TimestampMixin):
    """
    Named bag of platform permissions.

    Names are stored upper-cased, which makes the unique index case-insensitive.
    System roles cannot be deleted or edited through the API.
    """
    __tablename__ = "platform_roles"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    permissions: Mapped[list["PlatformPermission"]] = relationship(
        "PlatformPermission",
        secondary=platform_role_permissions,
        lazy="selectin",
        order_by="PlatformPermission.name"
    )

    def __repr__(self) -> str:
        return f"<PlatformRole(id={self.id}, name={self.name}, is_system={self.is_system})>"
