"""
Pydantic schemas for admin analytics.
"""
from typing import List
from pydantic import BaseModel

from app.features.subscriptions.models import SubscriptionStatus


class PlanRevenue(BaseModel):
    plan: str
    subscriptions: int
    mrr: int


class PlanShare(BaseModel):
    plan: str
    count: int


class StatusCount(BaseModel):
    status: SubscriptionStatus
    count: int


class MonthlyNewVsCanceled(BaseModel):
    """Subscriptions created and cancelled in one "%Y-%m" month."""
    month: str
    new_subscriptions: int
    canceled: int


class MonthlyChurn(BaseModel):
    month: str
    churned: int
    churn_rate: float


class AnalyticsSummary(BaseModel):
    """Everything the subscription dashboard renders, in one response."""
    revenue_by_plan: List[PlanRevenue]
    plan_distribution: List[PlanShare]
    status_breakdown: List[StatusCount]
    new_vs_canceled: List[MonthlyNewVsCanceled]
    churn_trend: List[MonthlyChurn]
