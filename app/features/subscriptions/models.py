"""
Subscription and subscription history models.

An organization keeps every subscription row it ever had; is_active marks the
current one. A partial unique index guarantees at most one current row per
organization, and the version column turns every update into a
compare-and-swap.
"""
import enum
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import (
    String, Boolean, DateTime, ForeignKey, Index, Integer, JSON, Text, text, Enum as SQLEnum
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, CreatedAtMixin, TimestampMixin, append_only, generate_ulid
from app.features.plans.models import BillingCycle
from app.utils import utcnow


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    TRIAL = "TRIAL"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"


class SubscriptionChangeType(str, enum.Enum):
    UPGRADE = "UPGRADE"
    DOWNGRADE = "DOWNGRADE"
    TRIAL_START = "TRIAL_START"
    TRIAL_EXTEND = "TRIAL_EXTEND"
    CANCEL = "CANCEL"
    REACTIVATION = "REACTIVATION"
    MANUAL_OVERRIDE = "MANUAL_OVERRIDE"


class PaymentProvider(str, enum.Enum):
    NONE = "NONE"
    MANUAL = "MANUAL"
    STRIPE = "STRIPE"


class SubscriptionCreatedBy(str, enum.Enum):
    ADMIN = "ADMIN"
    SELF_SERVE = "SELF_SERVE"
    SYSTEM = "SYSTEM"


class Subscription(Base, TimestampMixin):
    """
    Billing state of an organization.

    While is_trial is set, status is TRIAL and trial_end_date equals
    renewal_date. A CANCELED row is never the active one.
    """
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    plan_id: Mapped[str] = mapped_column(String(26), ForeignKey("plans.id"), nullable=False, index=True)

    status: Mapped[SubscriptionStatus] = mapped_column(
        SQLEnum(SubscriptionStatus),
        default=SubscriptionStatus.ACTIVE,
        nullable=False,
        index=True
    )
    billing_cycle: Mapped[BillingCycle] = mapped_column(
        SQLEnum(BillingCycle),
        default=BillingCycle.MONTHLY,
        nullable=False
    )

    # Dates
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    renewal_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    trial_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    is_trial: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Payment
    payment_provider: Mapped[PaymentProvider] = mapped_column(
        SQLEnum(PaymentProvider),
        default=PaymentProvider.NONE,
        nullable=False
    )
    payment_reference_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_by: Mapped[SubscriptionCreatedBy] = mapped_column(
        SQLEnum(SubscriptionCreatedBy),
        default=SubscriptionCreatedBy.ADMIN,
        nullable=False
    )

    # Cancellation
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    plan: Mapped["Plan"] = relationship("Plan", lazy="selectin")  # type: ignore  # noqa: F821

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index(
            "uq_subscriptions_active_org",
            "organization_id",
            unique=True,
            sqlite_where=text("is_active"),
            postgresql_where=text("is_active"),
        ),
        Index("ix_subscriptions_org_status", "organization_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, org_id={self.organization_id}, status={self.status}, active={self.is_active})>"


@append_only
class SubscriptionHistory(Base, CreatedAtMixin):
    """One row per subscription transition. Never updated or deleted."""
    __tablename__ = "subscription_history"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    subscription_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    organization_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)

    previous_plan_id: Mapped[str | None] = mapped_column(String(26), nullable=True)
    new_plan_id: Mapped[str | None] = mapped_column(String(26), nullable=True)
    change_type: Mapped[SubscriptionChangeType] = mapped_column(
        SQLEnum(SubscriptionChangeType),
        nullable=False,
        index=True
    )
    changed_by: Mapped[str | None] = mapped_column(String(26), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[Dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<SubscriptionHistory(id={self.id}, subscription_id={self.subscription_id}, type={self.change_type})>"
