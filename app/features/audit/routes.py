"""
Audit log query routes.
"""
from datetime import datetime
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.pagination import Page, page_count
from app.features.audit.schemas import AuditLogResponse
from app.features.audit.service import list_audit_logs
from app.features.permissions.catalog import Permission
from app.features.permissions.dependencies import MembershipContext, require_permission
from app.features.platform_rbac.catalog import PlatformPermissionKey
from app.features.platform_rbac.dependencies import check_platform_permission
from app.features.users.auth import Principal


org_router = APIRouter()
admin_router = APIRouter()


def _page(logs, total: int, page: int, limit: int) -> Page[AuditLogResponse]:
    return Page[AuditLogResponse](
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=page_count(total, limit)
    )


@org_router.get("/{organization_id}/audit-logs", response_model=Page[AuditLogResponse])
async def list_organization_audit_logs(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _membership: Annotated[MembershipContext, Depends(require_permission(Permission.AUDIT_READ))],
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None
):
    """Audit trail of one organization."""
    logs, total = await list_audit_logs(
        db, page, limit,
        organization_id=organization_id,
        user_id=user_id,
        action=action,
        resource=resource,
        start_date=start_date,
        end_date=end_date
    )
    return _page(logs, total, page, limit)


@admin_router.get("/", response_model=Page[AuditLogResponse])
async def list_platform_audit_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(check_platform_permission(PlatformPermissionKey.AUDIT_VIEW))],
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    organization_id: Optional[str] = None,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None
):
    """Audit trail across the platform."""
    logs, total = await list_audit_logs(
        db, page, limit,
        organization_id=organization_id,
        user_id=user_id,
        action=action,
        resource=resource,
        start_date=start_date,
        end_date=end_date
    )
    return _page(logs, total, page, limit)
