"""
Finance entry model.
"""
import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, DateTime, ForeignKey, Index, JSON, Numeric, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid
from app.utils import utcnow


class FinanceEntryType(str, enum.Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class FinancialEntry(Base, TimestampMixin):
    """An income or expense line of an organization's books."""
    __tablename__ = "financial_entries"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    type: Mapped[FinanceEntryType] = mapped_column(SQLEnum(FinanceEntryType), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    created_by: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False, index=True)

    __table_args__ = (
        Index("ix_financial_entries_org_date", "organization_id", "date"),
        Index("ix_financial_entries_org_type", "organization_id", "type"),
    )

    def __repr__(self) -> str:
        return f"<FinancialEntry(id={self.id}, type={self.type}, amount={self.amount})>"
