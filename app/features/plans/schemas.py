"""
Pydantic schemas for plan requests and responses.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.features.plans.models import BillingCycle


class PlanBase(BaseModel):
    """Base plan schema."""
    name: str = Field(..., min_length=1, max_length=50)
    description: str = Field("", max_length=500)
    price: Decimal = Field(..., ge=0)
    yearly_price: Decimal = Field(Decimal(0), ge=0)
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    features: List[str] = Field(default_factory=list)
    max_members: int = Field(5, ge=0)
    max_leads: int = Field(100, ge=0)
    max_storage: int = Field(1024, ge=0, description="Storage limit in MB")
    trial_days: int = Field(0, ge=0)
    sort_order: int = 0
    is_public: bool = True


class PlanCreate(PlanBase):
    """Schema for creating a plan."""
    slug: Optional[str] = Field(None, max_length=50, pattern="^[a-z0-9-]+$")

    @field_validator("name")
    @classmethod
    def upper_name(cls, v: str) -> str:
        return v.strip().upper()


class PlanUpdate(BaseModel):
    """Schema for updating a plan."""
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    price: Optional[Decimal] = Field(None, ge=0)
    yearly_price: Optional[Decimal] = Field(None, ge=0)
    billing_cycle: Optional[BillingCycle] = None
    features: Optional[List[str]] = None
    max_members: Optional[int] = Field(None, ge=0)
    max_leads: Optional[int] = Field(None, ge=0)
    max_storage: Optional[int] = Field(None, ge=0)
    trial_days: Optional[int] = Field(None, ge=0)
    sort_order: Optional[int] = None
    is_public: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def upper_name(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v is not None else v


class PlanResponse(PlanBase):
    """Schema for plan responses."""
    id: str
    slug: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PlanPublic(BaseModel):
    """Pricing information shown without authentication."""
    id: str
    name: str
    description: str
    price: Decimal
    yearly_price: Decimal
    features: List[str]
    trial_days: int

    model_config = ConfigDict(from_attributes=True)
