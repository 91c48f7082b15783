"""
Pydantic schemas for finance entries and summaries.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.features.finance.models import FinanceEntryType


class FinancialEntryBase(BaseModel):
    """Base finance entry schema."""
    type: FinanceEntryType
    amount: Decimal = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    date: Optional[datetime] = None
    reference: Optional[str] = Field(None, max_length=100)
    tags: List[str] = Field(default_factory=list)


class FinancialEntryCreate(FinancialEntryBase):
    """Schema for creating an entry. date defaults to now."""
    pass


class FinancialEntryUpdate(BaseModel):
    """Schema for updating an entry."""
    type: Optional[FinanceEntryType] = None
    amount: Optional[Decimal] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    date: Optional[datetime] = None
    reference: Optional[str] = Field(None, max_length=100)
    tags: Optional[List[str]] = None


class FinancialEntryResponse(FinancialEntryBase):
    """Schema for entry responses."""
    id: str
    organization_id: str
    date: datetime
    created_by: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FinanceSummary(BaseModel):
    """Income, expense and net balance over one month."""
    year: int
    month: int
    total_income: Decimal
    total_expense: Decimal
    net_balance: Decimal
    entry_count: int
