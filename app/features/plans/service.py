"""
Plan catalog lookups and maintenance.
"""
from typing import Optional
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, NotFoundError
from app.core.pagination import paginate
from app.features.plans.models import Plan
from app.features.plans.schemas import PlanCreate, PlanUpdate
from app.utils import get_logger


log = get_logger(__name__)


async def get_plan(db: AsyncSession, plan_id: str) -> Plan:
    plan = await db.get(Plan, plan_id)
    if plan is None:
        raise NotFoundError("Plan not found")
    return plan


async def get_plan_by_name(db: AsyncSession, name: str) -> Plan:
    """Active plan by name, e.g. FREE or STARTER."""
    plan = await db.scalar(select(Plan).where(Plan.name == name.strip().upper(), Plan.is_active.is_(True)))
    if plan is None:
        raise NotFoundError(f'Plan "{name}" not found')
    return plan


async def list_plans(
    db: AsyncSession,
    page: int = 1,
    limit: int = 50,
    search: Optional[str] = None,
    include_inactive: bool = False
) -> tuple[list[Plan], int]:
    stmt = select(Plan)
    if not include_inactive:
        stmt = stmt.where(Plan.is_active.is_(True))
    if search:
        stmt = stmt.where(Plan.name.ilike(f"%{search}%"))
    stmt = stmt.order_by(Plan.sort_order, Plan.name)
    return await paginate(db, stmt, page, limit)


async def list_public_plans(db: AsyncSession) -> list[Plan]:
    result = await db.execute(
        select(Plan)
        .where(Plan.is_active.is_(True), Plan.is_public.is_(True))
        .order_by(Plan.sort_order, Plan.name)
    )
    return list(result.scalars().all())


async def _ensure_name_free(db: AsyncSession, name: str, exclude_id: Optional[str] = None) -> None:
    stmt = select(Plan.id).where(func.upper(Plan.name) == name.upper())
    if exclude_id:
        stmt = stmt.where(Plan.id != exclude_id)
    if await db.scalar(stmt) is not None:
        raise ConflictError(f'Plan "{name}" already exists')


async def create_plan(db: AsyncSession, plan_data: PlanCreate) -> Plan:
    """Create a plan; names are unique ignoring case."""
    await _ensure_name_free(db, plan_data.name)

    values = plan_data.model_dump()
    values["slug"] = values.get("slug") or plan_data.name.lower().replace("_", "-")
    plan = Plan(**values)
    db.add(plan)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f'Plan "{plan_data.name}" already exists')

    await db.refresh(plan)
    log.info("Created plan %s", plan.name)
    return plan


async def update_plan(db: AsyncSession, plan_id: str, update_data: PlanUpdate) -> Plan:
    plan = await get_plan(db, plan_id)
    updates = update_data.model_dump(exclude_unset=True)
    if updates.get("name") and updates["name"] != plan.name:
        await _ensure_name_free(db, updates["name"], exclude_id=plan_id)

    for field, value in updates.items():
        setattr(plan, field, value)

    await db.commit()
    await db.refresh(plan)
    return plan


async def set_plan_active(db: AsyncSession, plan_id: str, is_active: bool) -> Plan:
    """Activate or archive a plan. Plans are never hard-deleted."""
    plan = await get_plan(db, plan_id)
    plan.is_active = is_active
    await db.commit()
    await db.refresh(plan)
    return plan
