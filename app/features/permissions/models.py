"""
Organization custom role model.

A custom role is a per-organization, named bag of module/action grants that
overrides the static role's fallback grants for the memberships pointing at it.
"""
from typing import Any
from sqlalchemy import String, Boolean, ForeignKey, JSON, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class OrganizationRole(Base, TimestampMixin):
    """
    Custom role defined by an organization.

    permissions holds a list of {"module": ModuleType, "actions": [ActionType]}
    grants. System roles (e.g. a built-in owner equivalent) cannot be edited
    or deleted.
    """
    __tablename__ = "organization_roles"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    permissions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    is_system_role: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_organization_roles_org_name"),
    )

    def __repr__(self) -> str:
        return f"<OrganizationRole(id={self.id}, name={self.name!r}, org_id={self.organization_id})>"
