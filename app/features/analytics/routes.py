"""
Admin analytics routes, mounted at /admin/analytics.

All of them need the ANALYTICS_VIEW platform permission. Range endpoints
take optional start_date/end_date and default to the last twelve months.
"""
from datetime import datetime
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.analytics import service
from app.features.analytics.schemas import (
    AnalyticsSummary,
    MonthlyChurn,
    MonthlyNewVsCanceled,
    PlanRevenue,
    PlanShare,
    StatusCount,
)
from app.features.platform_rbac.catalog import PlatformPermissionKey
from app.features.platform_rbac.dependencies import check_platform_permission
from app.features.users.auth import Principal


router = APIRouter()

can_view = check_platform_permission(PlatformPermissionKey.ANALYTICS_VIEW)


@router.get("/", response_model=AnalyticsSummary)
async def get_summary(
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(can_view)],
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None
):
    start, end = service.build_date_range(start_date, end_date)
    return AnalyticsSummary(
        revenue_by_plan=await service.get_revenue_by_plan(db),
        plan_distribution=await service.get_plan_distribution(db),
        status_breakdown=await service.get_status_breakdown(db),
        new_vs_canceled=await service.get_new_vs_canceled(db, start, end),
        churn_trend=await service.get_churn_trend(db, start, end)
    )


@router.get("/revenue-by-plan", response_model=List[PlanRevenue])
async def get_revenue_by_plan(
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(can_view)]
):
    """Current subscriptions and MRR per active plan."""
    return await service.get_revenue_by_plan(db)


@router.get("/plan-distribution", response_model=List[PlanShare])
async def get_plan_distribution(
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(can_view)]
):
    return await service.get_plan_distribution(db)


@router.get("/status-breakdown", response_model=List[StatusCount])
async def get_status_breakdown(
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(can_view)]
):
    return await service.get_status_breakdown(db)


@router.get("/new-vs-canceled", response_model=List[MonthlyNewVsCanceled])
async def get_new_vs_canceled(
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(can_view)],
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None
):
    """New subscriptions against cancellations, month by month."""
    return await service.get_new_vs_canceled(db, start_date, end_date)


@router.get("/churn", response_model=List[MonthlyChurn])
async def get_churn_trend(
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(can_view)],
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None
):
    return await service.get_churn_trend(db, start_date, end_date)
