"""
Platform role store and platform permission resolution.

Resolution walks user -> assigned roles -> role-permission links -> permission
names. The super-admin bypass is not applied here; callers decide on it.
"""
from typing import Iterable, Optional
from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, ForbiddenError, NotFoundError
from app.core.pagination import paginate
from app.features.platform_rbac.catalog import ALL_PLATFORM_PERMISSIONS, module_for
from app.features.platform_rbac.models import (
    PlatformPermission,
    PlatformRole,
    platform_role_permissions,
    user_platform_roles,
)
from app.features.users.models import User
from app.utils import get_logger, utcnow


log = get_logger(__name__)


# ============================================================================
# Resolution
# ============================================================================

async def resolve_user_platform_permissions(db: AsyncSession, user_id: str) -> set[str]:
    """
    Union of the permission names granted by every role assigned to the user.

    A user without roles resolves to the empty set.
    """
    stmt = (
        select(PlatformPermission.name)
        .join(platform_role_permissions, platform_role_permissions.c.permission_id == PlatformPermission.id)
        .join(user_platform_roles, user_platform_roles.c.role_id == platform_role_permissions.c.role_id)
        .where(user_platform_roles.c.user_id == user_id)
        .distinct()
    )
    result = await db.execute(stmt)
    return set(result.scalars().all())


async def user_has_platform_permission(db: AsyncSession, user_id: str, permission: str) -> bool:
    return permission in await resolve_user_platform_permissions(db, user_id)


async def get_user_platform_roles(db: AsyncSession, user_id: str) -> list[PlatformRole]:
    stmt = (
        select(PlatformRole)
        .join(user_platform_roles, user_platform_roles.c.role_id == PlatformRole.id)
        .where(user_platform_roles.c.user_id == user_id)
        .order_by(PlatformRole.name)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ============================================================================
# User Role Assignment
# ============================================================================

async def get_role(db: AsyncSession, role_id: str) -> PlatformRole:
    """Get a platform role with its permissions or raise NotFound."""
    role = await db.get(PlatformRole, role_id)
    if role is None:
        raise NotFoundError("Platform role not found")
    return role


async def assign_role_to_user(
    db: AsyncSession,
    user_id: str,
    role_id: str,
    assigned_by: Optional[str] = None
) -> PlatformRole:
    """
    Assign a platform role to a user.

    Raises:
        NotFoundError: role or user does not exist
        ConflictError: user already holds the role
    """
    role = await get_role(db, role_id)
    if await db.get(User, user_id) is None:
        raise NotFoundError("User not found")

    existing = await db.scalar(
        select(user_platform_roles.c.role_id).where(
            user_platform_roles.c.user_id == user_id,
            user_platform_roles.c.role_id == role_id
        )
    )
    if existing is not None:
        raise ConflictError("User already has this platform role")

    try:
        await db.execute(
            insert(user_platform_roles).values(
                user_id=user_id,
                role_id=role_id,
                assigned_by=assigned_by,
                assigned_at=utcnow()
            )
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("User already has this platform role")

    log.info("Assigned platform role %s to user %s", role.name, user_id)
    return role


async def remove_role_from_user(db: AsyncSession, user_id: str, role_id: str) -> None:
    """Remove a platform role from a user, NotFound if it was not assigned."""
    result = await db.execute(
        delete(user_platform_roles).where(
            user_platform_roles.c.user_id == user_id,
            user_platform_roles.c.role_id == role_id
        )
    )
    if result.rowcount == 0:
        await db.rollback()
        raise NotFoundError("Role assignment not found")
    await db.commit()
    log.info("Removed platform role %s from user %s", role_id, user_id)


# ============================================================================
# Role Store
# ============================================================================

def normalize_role_name(name: str) -> str:
    return name.strip().upper()


async def list_roles(db: AsyncSession, page: int = 1, limit: int = 50) -> tuple[list[PlatformRole], int]:
    stmt = select(PlatformRole).order_by(PlatformRole.created_at.desc(), PlatformRole.id.desc())
    return await paginate(db, stmt, page, limit)


async def create_role(
    db: AsyncSession,
    name: str,
    description: Optional[str] = None,
    is_system: bool = False
) -> PlatformRole:
    """
    Create a platform role. Names are unique ignoring case.

    Raises:
        ConflictError: a role with the same name exists
    """
    normalized = normalize_role_name(name)
    existing = await db.scalar(select(PlatformRole.id).where(func.upper(PlatformRole.name) == normalized))
    if existing is not None:
        raise ConflictError("A role with this name already exists")

    role = PlatformRole(name=normalized, description=description, is_system=is_system)
    db.add(role)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("A role with this name already exists")

    await db.refresh(role)
    log.info("Created platform role %s", role.name)
    return role


async def replace_role_permissions(
    db: AsyncSession,
    role_id: str,
    permission_names: Iterable[str],
    allow_system: bool = False
) -> PlatformRole:
    """
    Replace a role's full permission set.

    Names missing from the stored catalog are dropped silently. Existing links
    are deleted and the new set inserted in the same transaction, so readers
    never observe a partial set.

    Args:
        allow_system: permit editing a system role (seeding only)

    Raises:
        NotFoundError: role does not exist
        ForbiddenError: role is a system role and allow_system is False
    """
    role = await get_role(db, role_id)
    if role.is_system and not allow_system:
        raise ForbiddenError("System roles cannot be edited")

    wanted = set(permission_names)
    permission_ids = []
    if wanted:
        result = await db.execute(select(PlatformPermission.id).where(PlatformPermission.name.in_(wanted)))
        permission_ids = list(result.scalars().all())

    dropped = len(wanted) - len(permission_ids)
    if dropped:
        log.debug("Ignoring %d unknown permission name(s) for role %s", dropped, role.name)

    await db.execute(delete(platform_role_permissions).where(platform_role_permissions.c.role_id == role_id))
    if permission_ids:
        await db.execute(
            insert(platform_role_permissions),
            [{"role_id": role_id, "permission_id": pid} for pid in permission_ids]
        )
    await db.commit()

    await db.refresh(role, attribute_names=["permissions"])
    log.info("Replaced permissions of platform role %s (%d granted)", role.name, len(permission_ids))
    return role


async def delete_role(db: AsyncSession, role_id: str) -> None:
    """
    Delete a non-system role with its permission links and user assignments.

    Raises:
        NotFoundError: role does not exist
        ForbiddenError: role is a system role
    """
    role = await get_role(db, role_id)
    if role.is_system:
        raise ForbiddenError("System roles cannot be deleted")

    name = role.name
    await db.refresh(role, attribute_names=["permissions"])
    await db.execute(delete(user_platform_roles).where(user_platform_roles.c.role_id == role_id))
    # Permission links go with the role through the secondary relationship
    await db.delete(role)
    await db.commit()
    log.info("Deleted platform role %s", name)


async def list_permissions(db: AsyncSession) -> list[PlatformPermission]:
    result = await db.execute(select(PlatformPermission).order_by(PlatformPermission.module, PlatformPermission.name))
    return list(result.scalars().all())


async def sync_permission_catalog(db: AsyncSession) -> int:
    """
    Insert catalog permissions missing from storage. Existing rows are kept.

    Returns:
        Number of permissions inserted
    """
    result = await db.execute(select(PlatformPermission.name))
    stored = set(result.scalars().all())

    missing = [name for name in ALL_PLATFORM_PERMISSIONS if name not in stored]
    for name in missing:
        db.add(PlatformPermission(name=name, module=module_for(name)))
    await db.commit()
    return len(missing)
