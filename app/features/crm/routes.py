"""
CRM lead routes, mounted at /crm.
"""
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.pagination import Page, page_count
from app.features.crm import service
from app.features.crm.models import LeadStatus
from app.features.crm.schemas import LeadCreate, LeadResponse, LeadStatistics, LeadUpdate
from app.features.permissions.catalog import ActionType, ModuleType
from app.features.permissions.dependencies import MembershipContext, require_module_permission


router = APIRouter(tags=["crm"])


@router.get("/{organization_id}/leads", response_model=Page[LeadResponse])
async def list_leads(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _membership: Annotated[MembershipContext, Depends(require_module_permission(ModuleType.CRM, ActionType.READ))],
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    lead_status: Optional[LeadStatus] = Query(None, alias="status"),
    assigned_to: Optional[str] = None,
    search: Optional[str] = None
):
    """List the leads of an organization, newest first."""
    leads, total = await service.list_leads(
        db, organization_id, page, limit, status=lead_status, assigned_to=assigned_to, search=search
    )
    return Page[LeadResponse](
        items=[LeadResponse.model_validate(lead) for lead in leads],
        total=total,
        page=page,
        page_size=limit,
        pages=page_count(total, limit)
    )


@router.get("/{organization_id}/leads/statistics", response_model=LeadStatistics)
async def get_lead_statistics(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _membership: Annotated[MembershipContext, Depends(require_module_permission(ModuleType.CRM, ActionType.READ))]
):
    return await service.get_statistics(db, organization_id)


@router.get("/{organization_id}/leads/{lead_id}", response_model=LeadResponse)
async def get_lead(
    organization_id: str,
    lead_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _membership: Annotated[MembershipContext, Depends(require_module_permission(ModuleType.CRM, ActionType.READ))]
):
    return await service.get_lead(db, organization_id, lead_id)


@router.post("/{organization_id}/leads", response_model=LeadResponse, status_code=status.HTTP_201_CREATED)
async def create_lead(
    organization_id: str,
    lead_data: LeadCreate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_module_permission(ModuleType.CRM, ActionType.CREATE))]
):
    """Create a lead. Emails are unique per organization."""
    return await service.create_lead(db, organization_id, membership.user_id, lead_data, request=request)


@router.patch("/{organization_id}/leads/{lead_id}", response_model=LeadResponse)
async def update_lead(
    organization_id: str,
    lead_id: str,
    lead_data: LeadUpdate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_module_permission(ModuleType.CRM, ActionType.UPDATE))]
):
    return await service.update_lead(
        db,
        organization_id,
        lead_id,
        membership.user_id,
        lead_data.model_dump(exclude_unset=True),
        request=request
    )


@router.delete("/{organization_id}/leads/{lead_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_lead(
    organization_id: str,
    lead_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_module_permission(ModuleType.CRM, ActionType.DELETE))]
):
    await service.delete_lead(db, organization_id, lead_id, membership.user_id, request=request)
