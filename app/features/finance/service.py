"""
Finance entry operations and summaries.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError
from app.core.pagination import paginate
from app.features.audit.models import AuditAction
from app.features.audit.service import log_audit
from app.features.finance.models import FinanceEntryType, FinancialEntry
from app.features.finance.schemas import FinancialEntryCreate
from app.utils import get_logger, utcnow


log = get_logger(__name__)

RESOURCE = "FinancialEntry"


async def get_entry(db: AsyncSession, organization_id: str, entry_id: str) -> FinancialEntry:
    entry = await db.scalar(
        select(FinancialEntry).where(
            FinancialEntry.id == entry_id,
            FinancialEntry.organization_id == organization_id
        )
    )
    if entry is None:
        raise NotFoundError("Financial entry not found")
    return entry


async def list_entries(
    db: AsyncSession,
    organization_id: str,
    page: int = 1,
    limit: int = 20,
    entry_type: Optional[FinanceEntryType] = None,
    category: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None
) -> tuple[list[FinancialEntry], int]:
    stmt = select(FinancialEntry).where(FinancialEntry.organization_id == organization_id)
    if entry_type:
        stmt = stmt.where(FinancialEntry.type == entry_type)
    if category:
        stmt = stmt.where(FinancialEntry.category == category)
    if start_date:
        stmt = stmt.where(FinancialEntry.date >= start_date)
    if end_date:
        stmt = stmt.where(FinancialEntry.date <= end_date)
    stmt = stmt.order_by(FinancialEntry.date.desc(), FinancialEntry.id.desc())
    return await paginate(db, stmt, page, limit)


async def list_categories(db: AsyncSession, organization_id: str) -> list[str]:
    result = await db.scalars(
        select(FinancialEntry.category)
        .where(FinancialEntry.organization_id == organization_id)
        .distinct()
        .order_by(FinancialEntry.category)
    )
    return list(result.all())


async def create_entry(
    db: AsyncSession,
    organization_id: str,
    created_by: str,
    entry_data: FinancialEntryCreate,
    request: Optional[Request] = None
) -> FinancialEntry:
    values = entry_data.model_dump()
    values["date"] = values["date"] or utcnow()
    entry = FinancialEntry(organization_id=organization_id, created_by=created_by, **values)
    db.add(entry)
    await db.commit()
    await db.refresh(entry)

    await log_audit(
        db,
        user_id=created_by,
        action=AuditAction.FINANCE_ENTRY_CREATED,
        resource=RESOURCE,
        resource_id=entry.id,
        organization_id=organization_id,
        details={"type": entry.type.value, "amount": str(entry.amount), "category": entry.category},
        request=request
    )
    return entry


async def update_entry(
    db: AsyncSession,
    organization_id: str,
    entry_id: str,
    updated_by: str,
    changes: dict,
    request: Optional[Request] = None
) -> FinancialEntry:
    entry = await get_entry(db, organization_id, entry_id)
    for field, value in changes.items():
        setattr(entry, field, value)
    await db.commit()
    await db.refresh(entry)

    await log_audit(
        db,
        user_id=updated_by,
        action=AuditAction.FINANCE_ENTRY_UPDATED,
        resource=RESOURCE,
        resource_id=entry.id,
        organization_id=organization_id,
        details={"fields": sorted(changes)},
        request=request
    )
    return entry


async def delete_entry(
    db: AsyncSession,
    organization_id: str,
    entry_id: str,
    deleted_by: str,
    request: Optional[Request] = None
) -> None:
    entry = await get_entry(db, organization_id, entry_id)
    details = {"type": entry.type.value, "amount": str(entry.amount), "category": entry.category}
    await db.delete(entry)
    await db.commit()

    await log_audit(
        db,
        user_id=deleted_by,
        action=AuditAction.FINANCE_ENTRY_DELETED,
        resource=RESOURCE,
        resource_id=entry_id,
        organization_id=organization_id,
        details=details,
        request=request
    )


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """[start, end) of a calendar month in UTC."""
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, end


async def get_monthly_summary(db: AsyncSession, organization_id: str, year: int, month: int) -> dict:
    start, end = month_bounds(year, month)
    result = await db.execute(
        select(FinancialEntry.type, func.coalesce(func.sum(FinancialEntry.amount), 0), func.count(FinancialEntry.id))
        .where(
            FinancialEntry.organization_id == organization_id,
            FinancialEntry.date >= start,
            FinancialEntry.date < end
        )
        .group_by(FinancialEntry.type)
    )

    totals = {FinanceEntryType.INCOME: Decimal(0), FinanceEntryType.EXPENSE: Decimal(0)}
    entry_count = 0
    for entry_type, total, count in result.all():
        totals[entry_type] = Decimal(str(total))
        entry_count += count

    return {
        "year": year,
        "month": month,
        "total_income": totals[FinanceEntryType.INCOME],
        "total_expense": totals[FinanceEntryType.EXPENSE],
        "net_balance": totals[FinanceEntryType.INCOME] - totals[FinanceEntryType.EXPENSE],
        "entry_count": entry_count,
    }


async def get_yearly_summary(db: AsyncSession, organization_id: str, year: int) -> list[dict]:
    return [await get_monthly_summary(db, organization_id, year, month) for month in range(1, 13)]
