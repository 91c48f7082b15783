"""
Audit sink and audit log queries.
"""
from datetime import datetime
from typing import Any, Dict, Optional
from fastapi import Request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.pagination import paginate
from app.features.audit.models import AuditAction, AuditLog
from app.utils import get_logger


log = get_logger(__name__)


async def log_audit(
    db: AsyncSession,
    user_id: Optional[str],
    action: AuditAction,
    resource: Optional[str] = None,
    resource_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None
) -> Optional[AuditLog]:
    """
    Append an audit entry and commit it.

    Call this after the mutation it describes has been committed on db. The
    entry is written through a separate session on the same bind. A failed
    write is logged and swallowed: the triggering request still succeeds.

    Returns:
        The stored entry, or None if the write failed
    """
    entry = AuditLog(
        user_id=user_id,
        action=AuditAction(action).value,
        resource=resource,
        resource_id=resource_id,
        organization_id=organization_id,
        details=details,
        ip_address=request.client.host if request is not None and request.client else None,
        user_agent=request.headers.get("user-agent") if request is not None else None,
    )

    # Own session: a failed write must not roll back or expire the caller's objects
    async with AsyncSession(bind=db.bind, expire_on_commit=False) as audit_db:
        try:
            audit_db.add(entry)
            await audit_db.commit()
            await audit_db.refresh(entry)
        except SQLAlchemyError:
            await audit_db.rollback()
            log.exception("Failed to write audit entry %s for %s %s", entry.action, resource, resource_id)
            return None

    return entry


async def list_audit_logs(
    db: AsyncSession,
    page: int = 1,
    limit: int = 50,
    organization_id: Optional[str] = None,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None
) -> tuple[list[AuditLog], int]:
    """List audit entries, newest first, with optional filtering."""
    stmt = select(AuditLog)

    if organization_id:
        stmt = stmt.where(AuditLog.organization_id == organization_id)
    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource:
        stmt = stmt.where(AuditLog.resource == resource)
    if start_date:
        stmt = stmt.where(AuditLog.created_at >= start_date)
    if end_date:
        stmt = stmt.where(AuditLog.created_at <= end_date)

    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    return await paginate(db, stmt, page, limit)
