"""
CRM lead operations.
"""
from decimal import Decimal
from typing import Optional
from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, NotFoundError
from app.core.pagination import paginate
from app.features.audit.models import AuditAction
from app.features.audit.service import log_audit
from app.features.crm.models import Lead, LeadStatus
from app.features.crm.schemas import LeadCreate
from app.utils import get_logger


log = get_logger(__name__)


async def _ensure_email_free(
    db: AsyncSession,
    organization_id: str,
    email: str,
    exclude_id: Optional[str] = None
) -> None:
    stmt = select(Lead.id).where(
        Lead.organization_id == organization_id,
        func.lower(Lead.email) == email.lower()
    )
    if exclude_id:
        stmt = stmt.where(Lead.id != exclude_id)
    if await db.scalar(stmt) is not None:
        raise ConflictError("A lead with this email already exists")


async def get_lead(db: AsyncSession, organization_id: str, lead_id: str) -> Lead:
    lead = await db.scalar(select(Lead).where(Lead.id == lead_id, Lead.organization_id == organization_id))
    if lead is None:
        raise NotFoundError("Lead not found")
    return lead


async def list_leads(
    db: AsyncSession,
    organization_id: str,
    page: int = 1,
    limit: int = 20,
    status: Optional[LeadStatus] = None,
    assigned_to: Optional[str] = None,
    search: Optional[str] = None
) -> tuple[list[Lead], int]:
    stmt = select(Lead).where(Lead.organization_id == organization_id)
    if status:
        stmt = stmt.where(Lead.status == status)
    if assigned_to:
        stmt = stmt.where(Lead.assigned_to == assigned_to)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(Lead.name.ilike(pattern) | Lead.email.ilike(pattern) | Lead.company.ilike(pattern))
    stmt = stmt.order_by(Lead.created_at.desc(), Lead.id.desc())
    return await paginate(db, stmt, page, limit)


async def create_lead(
    db: AsyncSession,
    organization_id: str,
    created_by: str,
    lead_data: LeadCreate,
    request: Optional[Request] = None
) -> Lead:
    """
    Raises:
        ConflictError: a lead with this email already exists in the organization
    """
    await _ensure_email_free(db, organization_id, lead_data.email)

    lead = Lead(organization_id=organization_id, **lead_data.model_dump())
    lead.email = lead.email.lower()
    db.add(lead)
    await db.commit()
    await db.refresh(lead)

    await log_audit(
        db,
        user_id=created_by,
        action=AuditAction.LEAD_CREATED,
        resource="Lead",
        resource_id=lead.id,
        organization_id=organization_id,
        details={"email": lead.email, "name": lead.name},
        request=request
    )
    return lead


async def update_lead(
    db: AsyncSession,
    organization_id: str,
    lead_id: str,
    updated_by: str,
    changes: dict,
    request: Optional[Request] = None
) -> Lead:
    """
    Apply changes and record them as {field: {old, new}}.

    The audit action is LEAD_ASSIGNED when the assignee is set, else
    LEAD_STATUS_CHANGED when the status moves, else LEAD_UPDATED.
    """
    lead = await get_lead(db, organization_id, lead_id)
    if changes.get("email"):
        changes["email"] = changes["email"].lower()
        await _ensure_email_free(db, organization_id, changes["email"], exclude_id=lead.id)

    old_status = lead.status
    diff = {}
    for field, value in changes.items():
        old = getattr(lead, field)
        diff[field] = {"old": old, "new": value}
        setattr(lead, field, value)
    await db.commit()
    await db.refresh(lead)

    action = AuditAction.LEAD_UPDATED
    if changes.get("status") and changes["status"] != old_status:
        action = AuditAction.LEAD_STATUS_CHANGED
    if changes.get("assigned_to"):
        action = AuditAction.LEAD_ASSIGNED

    await log_audit(
        db,
        user_id=updated_by,
        action=action,
        resource="Lead",
        resource_id=lead.id,
        organization_id=organization_id,
        details={"changes": _jsonable(diff)},
        request=request
    )
    return lead


async def delete_lead(
    db: AsyncSession,
    organization_id: str,
    lead_id: str,
    deleted_by: str,
    request: Optional[Request] = None
) -> None:
    lead = await get_lead(db, organization_id, lead_id)
    email, name = lead.email, lead.name
    await db.delete(lead)
    await db.commit()

    await log_audit(
        db,
        user_id=deleted_by,
        action=AuditAction.LEAD_DELETED,
        resource="Lead",
        resource_id=lead_id,
        organization_id=organization_id,
        details={"email": email, "name": name},
        request=request
    )


async def get_statistics(db: AsyncSession, organization_id: str) -> dict:
    result = await db.execute(
        select(Lead.status, func.count(Lead.id), func.coalesce(func.sum(Lead.value), 0))
        .where(Lead.organization_id == organization_id)
        .group_by(Lead.status)
    )
    by_status = {
        status: {"count": count, "value": Decimal(str(value))}
        for status, count, value in result.all()
    }
    return {
        "total": sum(bucket["count"] for bucket in by_status.values()),
        "total_value": sum((bucket["value"] for bucket in by_status.values()), Decimal(0)),
        "by_status": by_status,
    }


def _jsonable(diff: dict) -> dict:
    """Audit metadata is stored as JSON; stringify values JSON cannot hold."""
    def convert(value):
        if value is None or isinstance(value, (str, int, float, bool, list, dict)):
            return value
        if hasattr(value, "value"):
            return value.value
        return str(value)

    return {
        field: {"old": convert(change["old"]), "new": convert(change["new"])}
        for field, change in diff.items()
    }
