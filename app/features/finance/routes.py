"""
Finance routes, mounted at /finance.

Entry CRUD is gated on FINANCE module grants; the summaries on the legacy
FINANCE_READ permission.
"""
from datetime import datetime
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.pagination import Page, page_count
from app.features.finance import service
from app.features.finance.models import FinanceEntryType
from app.features.finance.schemas import (
    FinanceSummary,
    FinancialEntryCreate,
    FinancialEntryResponse,
    FinancialEntryUpdate,
)
from app.features.permissions.catalog import ActionType, ModuleType, Permission
from app.features.permissions.dependencies import (
    MembershipContext,
    require_module_permission,
    require_permission,
)
from app.utils import utcnow


router = APIRouter(tags=["finance"])


# Summary endpoints
@router.get("/{organization_id}/summary", response_model=FinanceSummary)
async def get_monthly_summary(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _membership: Annotated[MembershipContext, Depends(require_permission(Permission.FINANCE_READ))],
    year: Optional[int] = Query(None, ge=1970, le=9999),
    month: Optional[int] = Query(None, ge=1, le=12)
):
    """Income, expense and net for one month, the current month by default."""
    now = utcnow()
    return await service.get_monthly_summary(db, organization_id, year or now.year, month or now.month)


@router.get("/{organization_id}/summary/yearly", response_model=List[FinanceSummary])
async def get_yearly_summary(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _membership: Annotated[MembershipContext, Depends(require_permission(Permission.FINANCE_READ))],
    year: Optional[int] = Query(None, ge=1970, le=9999)
):
    """Twelve monthly summaries of a year."""
    return await service.get_yearly_summary(db, organization_id, year or utcnow().year)


@router.get("/{organization_id}/categories", response_model=List[str])
async def list_categories(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _membership: Annotated[MembershipContext, Depends(require_module_permission(ModuleType.FINANCE, ActionType.READ))]
):
    return await service.list_categories(db, organization_id)


# Entry endpoints
@router.get("/{organization_id}/entries", response_model=Page[FinancialEntryResponse])
async def list_entries(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _membership: Annotated[MembershipContext, Depends(require_module_permission(ModuleType.FINANCE, ActionType.READ))],
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    entry_type: Optional[FinanceEntryType] = Query(None, alias="type"),
    category: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None
):
    """List entries, most recent date first."""
    entries, total = await service.list_entries(
        db,
        organization_id,
        page,
        limit,
        entry_type=entry_type,
        category=category,
        start_date=start_date,
        end_date=end_date
    )
    return Page[FinancialEntryResponse](
        items=[FinancialEntryResponse.model_validate(e) for e in entries],
        total=total,
        page=page,
        page_size=limit,
        pages=page_count(total, limit)
    )


@router.get("/{organization_id}/entries/{entry_id}", response_model=FinancialEntryResponse)
async def get_entry(
    organization_id: str,
    entry_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _membership: Annotated[MembershipContext, Depends(require_module_permission(ModuleType.FINANCE, ActionType.READ))]
):
    return await service.get_entry(db, organization_id, entry_id)


@router.post("/{organization_id}/entries", response_model=FinancialEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_entry(
    organization_id: str,
    entry_data: FinancialEntryCreate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_module_permission(ModuleType.FINANCE, ActionType.CREATE))]
):
    return await service.create_entry(db, organization_id, membership.user_id, entry_data, request=request)


@router.patch("/{organization_id}/entries/{entry_id}", response_model=FinancialEntryResponse)
async def update_entry(
    organization_id: str,
    entry_id: str,
    entry_data: FinancialEntryUpdate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_module_permission(ModuleType.FINANCE, ActionType.UPDATE))]
):
    return await service.update_entry(
        db,
        organization_id,
        entry_id,
        membership.user_id,
        entry_data.model_dump(exclude_unset=True),
        request=request
    )


@router.delete("/{organization_id}/entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_entry(
    organization_id: str,
    entry_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_module_permission(ModuleType.FINANCE, ActionType.DELETE))]
):
    await service.delete_entry(db, organization_id, entry_id, membership.user_id, request=request)
