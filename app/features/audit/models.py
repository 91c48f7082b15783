"""
Audit log model.

Entries are append-only: the ORM rejects any update or delete of an existing row.
"""
import enum
from typing import Any, Dict
from sqlalchemy import String, JSON
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, CreatedAtMixin, append_only, generate_ulid


class AuditAction(str, enum.Enum):
    """Actions recorded in the audit log."""
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    USER_LOGIN = "USER_LOGIN"
    USER_LOGOUT = "USER_LOGOUT"

    ORG_CREATED = "ORG_CREATED"
    ORG_UPDATED = "ORG_UPDATED"
    ORG_DELETED = "ORG_DELETED"
    ORG_ACTIVATED = "ORG_ACTIVATED"
    ORG_SUSPENDED = "ORG_SUSPENDED"

    USER_INVITED = "USER_INVITED"
    INVITATION_ACCEPTED = "INVITATION_ACCEPTED"
    INVITATION_CANCELLED = "INVITATION_CANCELLED"
    MEMBER_REMOVED = "MEMBER_REMOVED"
    ROLE_CHANGED = "ROLE_CHANGED"

    CUSTOM_ROLE_CREATED = "CUSTOM_ROLE_CREATED"
    CUSTOM_ROLE_UPDATED = "CUSTOM_ROLE_UPDATED"
    CUSTOM_ROLE_DELETED = "CUSTOM_ROLE_DELETED"

    LEAD_CREATED = "LEAD_CREATED"
    LEAD_UPDATED = "LEAD_UPDATED"
    LEAD_DELETED = "LEAD_DELETED"
    LEAD_STATUS_CHANGED = "LEAD_STATUS_CHANGED"
    LEAD_ASSIGNED = "LEAD_ASSIGNED"

    FINANCE_ENTRY_CREATED = "FINANCE_ENTRY_CREATED"
    FINANCE_ENTRY_UPDATED = "FINANCE_ENTRY_UPDATED"
    FINANCE_ENTRY_DELETED = "FINANCE_ENTRY_DELETED"

    SUBSCRIPTION_CREATED = "SUBSCRIPTION_CREATED"
    SUBSCRIPTION_UPGRADED = "SUBSCRIPTION_UPGRADED"
    SUBSCRIPTION_DOWNGRADED = "SUBSCRIPTION_DOWNGRADED"
    SUBSCRIPTION_CANCELLED = "SUBSCRIPTION_CANCELLED"
    SUBSCRIPTION_REACTIVATED = "SUBSCRIPTION_REACTIVATED"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    TRIAL_EXTENDED = "TRIAL_EXTENDED"
    PLAN_CHANGED = "PLAN_CHANGED"

    ADMIN_ROLE_ASSIGNED = "ADMIN_ROLE_ASSIGNED"
    ADMIN_ROLE_REMOVED = "ADMIN_ROLE_REMOVED"
    PLATFORM_ROLE_CREATED = "PLATFORM_ROLE_CREATED"
    PLATFORM_ROLE_UPDATED = "PLATFORM_ROLE_UPDATED"
    PLATFORM_ROLE_DELETED = "PLATFORM_ROLE_DELETED"


@append_only
class AuditLog(Base, CreatedAtMixin):
    """
    Immutable record of a sensitive state transition.

    Tracks who did what, when, and from where. organization_id and user_id are
    plain references so entries outlive the rows they describe.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Context
    organization_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    user_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    # Action details
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    resource: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    details: Mapped[Dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource})>"
