"""
Plan catalog routes.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.pagination import Page, page_count
from app.features.plans import service
from app.features.plans.schemas import PlanCreate, PlanPublic, PlanResponse, PlanUpdate
from app.features.platform_rbac.catalog import PlatformPermissionKey
from app.features.platform_rbac.dependencies import check_platform_permission
from app.features.users.auth import Principal


router = APIRouter()

can_view = check_platform_permission(PlatformPermissionKey.PLAN_VIEW)
can_change = check_platform_permission(PlatformPermissionKey.PLAN_CHANGE)


@router.get("/public", response_model=List[PlanPublic])
async def list_public_plans(db: Annotated[AsyncSession, Depends(get_db)]):
    """Active public plans for the pricing page (no authentication)."""
    return await service.list_public_plans(db)


@router.get("/", response_model=Page[PlanResponse])
async def list_plans(
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(can_view)],
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    search: Optional[str] = None,
    include_inactive: bool = False
):
    """List plans ordered for display."""
    plans, total = await service.list_plans(db, page, limit, search, include_inactive)
    return Page[PlanResponse](
        items=[PlanResponse.model_validate(p) for p in plans],
        total=total,
        page=page,
        page_size=limit,
        pages=page_count(total, limit)
    )


@router.get("/{plan_id}", response_model=PlanResponse)
async def get_plan(
    plan_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(can_view)]
):
    return await service.get_plan(db, plan_id)


@router.post("/", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
async def create_plan(
    plan_data: PlanCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(check_platform_permission(PlatformPermissionKey.PLAN_CREATE))]
):
    """Create a plan."""
    return await service.create_plan(db, plan_data)


@router.patch("/{plan_id}", response_model=PlanResponse)
async def update_plan(
    plan_id: str,
    update_data: PlanUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(can_change)]
):
    """Update a plan. Existing subscriptions keep referencing it."""
    return await service.update_plan(db, plan_id, update_data)


@router.patch("/{plan_id}/toggle", response_model=PlanResponse)
async def toggle_plan(
    plan_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(can_change)]
):
    """Flip a plan between active and archived."""
    plan = await service.get_plan(db, plan_id)
    return await service.set_plan_active(db, plan_id, not plan.is_active)


@router.delete("/{plan_id}", response_model=PlanResponse)
async def archive_plan(
    plan_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(can_change)]
):
    """Archive a plan (soft delete)."""
    return await service.set_plan_active(db, plan_id, False)
