"""
Plan catalog model.
"""
import enum
from decimal import Decimal
from sqlalchemy import String, Boolean, Integer, JSON, Numeric, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class BillingCycle(str, enum.Enum):
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class Plan(Base, TimestampMixin):
    """
    A purchasable plan.

    name is stored upper-cased and doubles as the tier key (FREE, STARTER,
    PRO, ENTERPRISE) used to classify plan changes.
    """
    __tablename__ = "plans"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)

    # Monthly price; yearly_price is what a yearly cycle is billed at
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    yearly_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    billing_cycle: Mapped[BillingCycle] = mapped_column(
        SQLEnum(BillingCycle),
        default=BillingCycle.MONTHLY,
        nullable=False
    )

    features: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    # Limits
    max_members: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    max_leads: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    max_storage: Mapped[int] = mapped_column(Integer, default=1024, nullable=False)  # MB

    trial_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Plan(id={self.id}, name={self.name}, price={self.price})>"
