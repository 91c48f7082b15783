"""
Pydantic schemas for subscription requests and responses.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.features.plans.models import BillingCycle
from app.features.subscriptions.models import (
    PaymentProvider,
    SubscriptionChangeType,
    SubscriptionCreatedBy,
    SubscriptionStatus,
)


class PlanSummary(BaseModel):
    id: str
    name: str
    price: Decimal
    yearly_price: Decimal

    model_config = ConfigDict(from_attributes=True)


class SubscriptionResponse(BaseModel):
    """Schema for subscription responses."""
    id: str
    organization_id: str
    plan_id: str
    plan: Optional[PlanSummary] = None
    status: SubscriptionStatus
    billing_cycle: BillingCycle
    start_date: datetime
    end_date: Optional[datetime] = None
    renewal_date: Optional[datetime] = None
    trial_end_date: Optional[datetime] = None
    is_trial: bool
    payment_provider: PaymentProvider
    payment_reference_id: Optional[str] = None
    created_by: SubscriptionCreatedBy
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AdminSubscriptionResponse(SubscriptionResponse):
    """Subscription row in the admin list, with its organization's name."""
    organization_name: Optional[str] = None


class SubscriptionHistoryResponse(BaseModel):
    """Schema for a subscription history entry."""
    id: str
    subscription_id: str
    organization_id: str
    previous_plan_id: Optional[str] = None
    new_plan_id: Optional[str] = None
    change_type: SubscriptionChangeType
    changed_by: Optional[str] = None
    reason: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SubscriptionKpiResponse(BaseModel):
    active: int
    trial: int
    past_due: int
    expired: int
    canceled: int
    mrr: int


# ============================================================================
# Transition Requests
# ============================================================================

class SubscriptionCreate(BaseModel):
    """Schema for creating an organization's subscription (admin)."""
    organization_id: str
    plan_id: str
    billing_cycle: Optional[BillingCycle] = None
    is_trial: Optional[bool] = None
    trial_days: Optional[int] = Field(None, ge=1, le=365)
    payment_provider: PaymentProvider = PaymentProvider.NONE
    payment_reference_id: Optional[str] = Field(None, max_length=255)
    reason: Optional[str] = Field(None, max_length=500)


class ChangePlanRequest(BaseModel):
    plan_id: str
    billing_cycle: Optional[BillingCycle] = None
    reason: Optional[str] = Field(None, max_length=500)


class ExtendTrialRequest(BaseModel):
    additional_days: int = Field(..., ge=1, le=365)
    reason: Optional[str] = Field(None, max_length=500)


class CancelSubscriptionRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class ReactivateSubscriptionRequest(BaseModel):
    plan_id: str
    billing_cycle: Optional[BillingCycle] = None
    reason: Optional[str] = Field(None, max_length=500)


class ForceExpireRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


