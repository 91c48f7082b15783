"""
Pydantic schemas for CRM leads.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.features.crm.models import LeadStatus


class LeadBase(BaseModel):
    """Base lead schema."""
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=50)
    company: Optional[str] = Field(None, max_length=100)
    status: LeadStatus = LeadStatus.NEW
    source: Optional[str] = Field(None, max_length=100)
    value: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=2000)
    tags: List[str] = Field(default_factory=list)
    assigned_to: Optional[str] = None


class LeadCreate(LeadBase):
    """Schema for creating a lead."""
    pass


class LeadUpdate(BaseModel):
    """Schema for updating a lead. Only the fields sent are changed."""
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)
    company: Optional[str] = Field(None, max_length=100)
    status: Optional[LeadStatus] = None
    source: Optional[str] = Field(None, max_length=100)
    value: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=2000)
    tags: Optional[List[str]] = None
    assigned_to: Optional[str] = None
    last_contacted_at: Optional[datetime] = None


class LeadResponse(LeadBase):
    """Schema for lead responses."""
    id: str
    organization_id: str
    last_contacted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LeadStatusBucket(BaseModel):
    count: int
    value: Decimal


class LeadStatistics(BaseModel):
    """Lead counts and pipeline value, overall and per status."""
    total: int
    total_value: Decimal
    by_status: Dict[LeadStatus, LeadStatusBucket]
