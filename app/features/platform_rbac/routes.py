"""
Platform RBAC admin routes.

Provides endpoints for the permission catalog, platform roles and the
assignment of roles to admin users.
"""
from itertools import groupby
from typing import Annotated, List
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.pagination import Page, page_count
from app.features.audit.models import AuditAction
from app.features.audit.service import log_audit
from app.features.platform_rbac import service
from app.features.platform_rbac.catalog import ALL_PLATFORM_PERMISSIONS, PlatformPermissionKey
from app.features.platform_rbac.dependencies import check_platform_permission
from app.features.platform_rbac.schemas import (
    AssignPlatformRole,
    CatalogSyncResponse,
    PermissionGroup,
    PlatformPermissionResponse,
    PlatformRoleCreate,
    PlatformRolePermissionsUpdate,
    PlatformRoleResponse,
    PlatformRoleWithPermissions,
    UserPlatformPermissionsResponse,
)
from app.features.users.auth import Principal
from app.features.users.dependencies import get_current_principal, require_super_admin


router = APIRouter()

RESOURCE = "PlatformRole"


# ============================================================================
# Permission Routes
# ============================================================================

@router.get("/permissions", response_model=List[PermissionGroup])
async def list_permissions(
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(check_platform_permission(PlatformPermissionKey.DESIGNATION_VIEW))]
):
    """List catalog permissions grouped by module."""
    permissions = await service.list_permissions(db)
    return [
        PermissionGroup(
            module=module,
            permissions=[PlatformPermissionResponse.model_validate(p) for p in perms]
        )
        for module, perms in groupby(permissions, key=lambda p: p.module)
    ]


@router.post("/permissions/sync", response_model=CatalogSyncResponse)
async def sync_permissions(
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(require_super_admin)]
):
    """Insert catalog permissions missing from storage. Super admins only."""
    return CatalogSyncResponse(inserted=await service.sync_permission_catalog(db))


@router.get("/me/permissions", response_model=UserPlatformPermissionsResponse)
async def get_my_permissions(
    principal: Annotated[Principal, Depends(get_current_principal)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Resolved platform permissions of the caller."""
    if principal.is_super_admin:
        permissions = ALL_PLATFORM_PERMISSIONS
    else:
        permissions = sorted(await service.resolve_user_platform_permissions(db, principal.user_id))
    return UserPlatformPermissionsResponse(
        user_id=principal.user_id,
        is_super_admin=principal.is_super_admin,
        permissions=permissions
    )


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=Page[PlatformRoleResponse])
async def list_roles(
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(check_platform_permission(PlatformPermissionKey.DESIGNATION_VIEW))],
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200)
):
    """List platform roles, newest first."""
    roles, total = await service.list_roles(db, page, limit)
    return Page[PlatformRoleResponse](
        items=[PlatformRoleResponse.model_validate(r) for r in roles],
        total=total,
        page=page,
        page_size=limit,
        pages=page_count(total, limit)
    )


@router.get("/roles/{role_id}", response_model=PlatformRoleWithPermissions)
async def get_role(
    role_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(check_platform_permission(PlatformPermissionKey.DESIGNATION_VIEW))]
):
    """Get a platform role with its permissions."""
    return await service.get_role(db, role_id)


@router.post("/roles", response_model=PlatformRoleWithPermissions, status_code=status.HTTP_201_CREATED)
async def create_role(
    role_data: PlatformRoleCreate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(check_platform_permission(PlatformPermissionKey.DESIGNATION_CREATE))]
):
    """Create a custom platform role."""
    role = await service.create_role(db, role_data.name, role_data.description)
    await log_audit(
        db,
        user_id=principal.user_id,
        action=AuditAction.PLATFORM_ROLE_CREATED,
        resource=RESOURCE,
        resource_id=role.id,
        details={"name": role.name},
        request=request
    )
    return role


@router.patch("/roles/{role_id}/permissions", response_model=PlatformRoleWithPermissions)
async def update_role_permissions(
    role_id: str,
    update_data: PlatformRolePermissionsUpdate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(check_platform_permission(PlatformPermissionKey.DESIGNATION_EDIT))]
):
    """Replace the full permission set of a role."""
    role = await service.replace_role_permissions(db, role_id, update_data.permissions)
    await log_audit(
        db,
        user_id=principal.user_id,
        action=AuditAction.PLATFORM_ROLE_UPDATED,
        resource=RESOURCE,
        resource_id=role_id,
        details={"permissions": [p.name for p in role.permissions]},
        request=request
    )
    return role


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(check_platform_permission(PlatformPermissionKey.DESIGNATION_ARCHIVE))]
):
    """Delete a non-system platform role."""
    await service.delete_role(db, role_id)
    await log_audit(
        db,
        user_id=principal.user_id,
        action=AuditAction.PLATFORM_ROLE_DELETED,
        resource=RESOURCE,
        resource_id=role_id,
        request=request
    )


# ============================================================================
# User Role Assignment Routes
# ============================================================================

@router.get("/users/{user_id}/roles", response_model=List[PlatformRoleResponse])
async def get_user_roles(
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(check_platform_permission(PlatformPermissionKey.ADMIN_VIEW))]
):
    """List the platform roles assigned to a user."""
    return await service.get_user_platform_roles(db, user_id)


@router.get("/users/{user_id}/permissions", response_model=UserPlatformPermissionsResponse)
async def get_user_permissions(
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(check_platform_permission(PlatformPermissionKey.ADMIN_VIEW))]
):
    """Resolved platform permissions of a user, from role assignments only."""
    permissions = await service.resolve_user_platform_permissions(db, user_id)
    return UserPlatformPermissionsResponse(user_id=user_id, permissions=sorted(permissions))


@router.post("/users/{user_id}/roles", response_model=PlatformRoleResponse, status_code=status.HTTP_201_CREATED)
async def assign_role_to_user(
    user_id: str,
    assignment: AssignPlatformRole,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(check_platform_permission(PlatformPermissionKey.ADMIN_INVITE))]
):
    """Assign a platform role to a user."""
    role = await service.assign_role_to_user(db, user_id, assignment.role_id, assigned_by=principal.user_id)
    await log_audit(
        db,
        user_id=principal.user_id,
        action=AuditAction.ADMIN_ROLE_ASSIGNED,
        resource="User",
        resource_id=user_id,
        details={"role_id": role.id, "role_name": role.name},
        request=request
    )
    return role


@router.delete("/users/{user_id}/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_role_from_user(
    user_id: str,
    role_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(check_platform_permission(PlatformPermissionKey.ADMIN_SUSPEND))]
):
    """Remove a platform role from a user."""
    await service.remove_role_from_user(db, user_id, role_id)
    await log_audit(
        db,
        user_id=principal.user_id,
        action=AuditAction.ADMIN_ROLE_REMOVED,
        resource="User",
        resource_id=user_id,
        details={"role_id": role_id},
        request=request
    )
