"""
Organization custom roles and their assignment to memberships.
"""
from typing import List, Optional
from fastapi import Request
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, ForbiddenError, NotFoundError
from app.features.audit.models import AuditAction
from app.features.audit.service import log_audit
from app.features.organizations.models import Membership
from app.features.permissions.models import OrganizationRole
from app.features.permissions.schemas import ModulePermission
from app.utils import get_logger


log = get_logger(__name__)

RESOURCE = "OrganizationRole"


def _dump_grants(grants: List[ModulePermission]) -> list[dict]:
    return [grant.model_dump(mode="json") for grant in grants]


async def _ensure_name_free(
    db: AsyncSession,
    organization_id: str,
    name: str,
    exclude_id: Optional[str] = None
) -> None:
    stmt = select(OrganizationRole.id).where(
        OrganizationRole.organization_id == organization_id,
        func.lower(OrganizationRole.name) == name.lower()
    )
    if exclude_id:
        stmt = stmt.where(OrganizationRole.id != exclude_id)
    if await db.scalar(stmt) is not None:
        raise ConflictError("A role with this name already exists in this organization")


async def list_roles(db: AsyncSession, organization_id: str) -> list[OrganizationRole]:
    result = await db.scalars(
        select(OrganizationRole)
        .where(OrganizationRole.organization_id == organization_id)
        .order_by(OrganizationRole.name)
    )
    return list(result.all())


async def get_role(db: AsyncSession, organization_id: str, role_id: str) -> OrganizationRole:
    """Custom role by id, scoped to the organization."""
    role = await db.scalar(
        select(OrganizationRole).where(
            OrganizationRole.id == role_id,
            OrganizationRole.organization_id == organization_id
        )
    )
    if role is None:
        raise NotFoundError("Role not found")
    return role


async def create_role(
    db: AsyncSession,
    organization_id: str,
    name: str,
    description: Optional[str],
    permissions: List[ModulePermission],
    created_by: str,
    request: Optional[Request] = None
) -> OrganizationRole:
    """
    Raises:
        ConflictError: name already used in this organization (case-insensitive)
    """
    await _ensure_name_free(db, organization_id, name)

    role = OrganizationRole(
        organization_id=organization_id,
        name=name,
        description=description,
        permissions=_dump_grants(permissions),
        is_system_role=False,
    )
    db.add(role)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("A role with this name already exists in this organization")
    await db.refresh(role)

    await log_audit(
        db,
        user_id=created_by,
        action=AuditAction.CUSTOM_ROLE_CREATED,
        resource=RESOURCE,
        resource_id=role.id,
        organization_id=organization_id,
        details={"name": role.name, "permissions": role.permissions},
        request=request
    )
    return role


async def update_role(
    db: AsyncSession,
    organization_id: str,
    role_id: str,
    changes: dict,
    updated_by: str,
    request: Optional[Request] = None
) -> OrganizationRole:
    """
    Apply name, description and/or a full replacement of the grants.

    Raises:
        NotFoundError: role not in this organization
        ForbiddenError: role is a system role
        ConflictError: new name already used in this organization
    """
    role = await get_role(db, organization_id, role_id)
    if role.is_system_role:
        raise ForbiddenError("System roles cannot be edited")

    if changes.get("name"):
        await _ensure_name_free(db, organization_id, changes["name"], exclude_id=role.id)
        role.name = changes["name"]
    if "description" in changes:
        role.description = changes["description"]
    if changes.get("permissions") is not None:
        role.permissions = _dump_grants(changes["permissions"])

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("A role with this name already exists in this organization")
    await db.refresh(role)

    await log_audit(
        db,
        user_id=updated_by,
        action=AuditAction.CUSTOM_ROLE_UPDATED,
        resource=RESOURCE,
        resource_id=role.id,
        organization_id=organization_id,
        details={"name": role.name, "permissions": role.permissions},
        request=request
    )
    return role


async def delete_role(
    db: AsyncSession,
    organization_id: str,
    role_id: str,
    deleted_by: str,
    request: Optional[Request] = None
) -> None:
    """
    Delete a custom role. Memberships pointing at it revert to their static role grants.

    Raises:
        NotFoundError: role not in this organization
        ForbiddenError: role is a system role
    """
    role = await get_role(db, organization_id, role_id)
    if role.is_system_role:
        raise ForbiddenError("System roles cannot be deleted")

    name = role.name
    await db.execute(
        update(Membership)
        .where(Membership.custom_role_id == role_id)
        .values(custom_role_id=None)
        .execution_options(synchronize_session=False)
    )
    await db.delete(role)
    await db.commit()

    await log_audit(
        db,
        user_id=deleted_by,
        action=AuditAction.CUSTOM_ROLE_DELETED,
        resource=RESOURCE,
        resource_id=role_id,
        organization_id=organization_id,
        details={"name": name},
        request=request
    )
    log.info("Deleted custom role %s of organization %s", role_id, organization_id)


async def assign_custom_role(
    db: AsyncSession,
    membership: Membership,
    custom_role_id: Optional[str],
    changed_by: str,
    request: Optional[Request] = None
) -> Membership:
    """
    Point a membership at a custom role of the same organization, or clear it.

    Raises:
        NotFoundError: custom role not in the membership's organization
    """
    if custom_role_id is not None:
        await get_role(db, membership.organization_id, custom_role_id)

    previous = membership.custom_role_id
    membership.custom_role_id = custom_role_id
    await db.commit()
    await db.refresh(membership)

    await log_audit(
        db,
        user_id=changed_by,
        action=AuditAction.ROLE_CHANGED,
        resource="Membership",
        resource_id=membership.id,
        organization_id=membership.organization_id,
        details={
            "targetUserId": membership.user_id,
            "oldCustomRoleId": previous,
            "newCustomRoleId": custom_role_id,
        },
        request=request
    )
    return membership
