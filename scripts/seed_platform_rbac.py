"""
Seed script for platform RBAC and the default plan catalog.

Safe to run repeatedly. It:
- Inserts catalog permissions missing from storage
- Upserts the system platform roles and replaces their permission sets
- Assigns the SUPER_ADMIN platform role to every user whose global role is SUPER_ADMIN
- Upserts the default plans FREE, STARTER, PRO and ENTERPRISE

Usage:
    uv run python -m scripts.seed_platform_rbac
"""
import asyncio
from decimal import Decimal
from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.plans.models import BillingCycle, Plan
from app.features.platform_rbac.catalog import SYSTEM_PLATFORM_ROLES
from app.features.platform_rbac.models import PlatformRole, user_platform_roles
from app.features.platform_rbac.service import (
    create_role,
    normalize_role_name,
    replace_role_permissions,
    sync_permission_catalog,
)
from app.features.users.models import GlobalRole, User
from app.utils import get_logger


log = get_logger(__name__)


DEFAULT_PLANS = [
    {
        "name": "FREE",
        "description": "For individuals getting started",
        "price": Decimal("0"),
        "yearly_price": Decimal("0"),
        "features": ["Up to 3 members", "Basic CRM"],
        "max_members": 3,
        "max_leads": 50,
        "max_storage": 512,
        "trial_days": 0,
        "sort_order": 0,
    },
    {
        "name": "STARTER",
        "description": "For small teams",
        "price": Decimal("29"),
        "yearly_price": Decimal("290"),
        "features": ["Up to 10 members", "CRM", "Finance"],
        "max_members": 10,
        "max_leads": 1000,
        "max_storage": 5120,
        "trial_days": 14,
        "sort_order": 1,
    },
    {
        "name": "PRO",
        "description": "For growing businesses",
        "price": Decimal("79"),
        "yearly_price": Decimal("790"),
        "features": ["Up to 50 members", "CRM", "Finance", "Custom roles"],
        "max_members": 50,
        "max_leads": 10000,
        "max_storage": 51200,
        "trial_days": 14,
        "sort_order": 2,
    },
    {
        "name": "ENTERPRISE",
        "description": "For large organizations",
        "price": Decimal("199"),
        "yearly_price": Decimal("1990"),
        "features": ["Unlimited members", "CRM", "Finance", "Custom roles", "Audit export"],
        "max_members": 1000,
        "max_leads": 1000000,
        "max_storage": 512000,
        "trial_days": 30,
        "sort_order": 3,
    },
]


async def seed_system_roles(db: AsyncSession) -> dict[str, PlatformRole]:
    """
    Upsert the system roles and replace their permission sets.

    Returns:
        Dictionary mapping role names to PlatformRole objects
    """
    roles = {}
    for definition in SYSTEM_PLATFORM_ROLES:
        name = normalize_role_name(definition["name"])
        role = await db.scalar(select(PlatformRole).where(PlatformRole.name == name))
        if role is None:
            role = await create_role(db, name, definition["description"], is_system=True)
            log.info("Created system role %s", name)
        else:
            role.description = definition["description"]
            role.is_system = True
            await db.commit()

        role = await replace_role_permissions(db, role.id, definition["permissions"], allow_system=True)
        log.info("  %s: %d permissions assigned", name, len(role.permissions))
        roles[name] = role
    return roles


async def assign_super_admins(db: AsyncSession, super_admin_role: PlatformRole) -> int:
    """
    Give the SUPER_ADMIN platform role to every SUPER_ADMIN user lacking it.

    Returns:
        Number of newly assigned users
    """
    result = await db.execute(select(User.id).where(User.global_role == GlobalRole.SUPER_ADMIN))
    user_ids = list(result.scalars().all())

    result = await db.execute(
        select(user_platform_roles.c.user_id).where(user_platform_roles.c.role_id == super_admin_role.id)
    )
    already = set(result.scalars().all())

    missing = [user_id for user_id in user_ids if user_id not in already]
    for user_id in missing:
        await db.execute(
            insert(user_platform_roles).values(user_id=user_id, role_id=super_admin_role.id, assigned_by=user_id)
        )
    await db.commit()
    log.info("SUPER_ADMIN users ensured: %d checked, %d newly assigned", len(user_ids), len(missing))
    return len(missing)


async def seed_plans(db: AsyncSession) -> dict[str, Plan]:
    """Insert the default plans that do not exist yet. Existing plans are left untouched."""
    plans = {}
    for definition in DEFAULT_PLANS:
        plan = await db.scalar(select(Plan).where(Plan.name == definition["name"]))
        if plan is None:
            plan = Plan(slug=definition["name"].lower(), billing_cycle=BillingCycle.MONTHLY, **definition)
            db.add(plan)
            log.info("Created plan %s", definition["name"])
        plans[definition["name"]] = plan
    await db.commit()
    for plan in plans.values():
        await db.refresh(plan)
    return plans


async def seed(db: AsyncSession) -> None:
    inserted = await sync_permission_catalog(db)
    log.info("Permissions inserted: %d", inserted)

    roles = await seed_system_roles(db)
    await assign_super_admins(db, roles["SUPER_ADMIN"])
    await seed_plans(db)


async def main():
    """Main function to seed platform RBAC and plans."""
    log.info("Starting platform RBAC seed...")
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            await seed(db)
        except Exception:
            log.error("Error seeding platform RBAC", exc_info=True)
            await db.rollback()
            raise

    log.info("Platform RBAC seed completed successfully")


if __name__ == "__main__":
    asyncio.run(main())
