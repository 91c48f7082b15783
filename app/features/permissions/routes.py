"""
Organization custom role routes.

Mounted under /organizations, so every path carries the organization id the
membership is resolved against.
"""
from typing import Annotated, List
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions import service
from app.features.permissions.catalog import ActionType, ModuleType, Permission
from app.features.permissions.dependencies import (
    MembershipContext,
    require_membership,
    require_module_permission,
    require_permission,
)
from app.features.permissions.schemas import (
    MembershipContextResponse,
    OrganizationRoleCreate,
    OrganizationRoleResponse,
    OrganizationRoleUpdate,
)


router = APIRouter()


@router.get("/{organization_id}/my-permissions", response_model=MembershipContextResponse)
async def get_my_permissions(
    organization_id: str,
    membership: Annotated[MembershipContext, Depends(require_membership())]
):
    """Resolved role, legacy permissions and module grants of the caller."""
    return MembershipContextResponse(
        membership_id=membership.membership_id,
        organization_id=membership.organization_id,
        role=membership.role,
        custom_role_id=membership.custom_role_id,
        permissions=sorted(membership.permissions),
        module_permissions=membership.module_permissions,
    )


@router.get("/{organization_id}/roles", response_model=List[OrganizationRoleResponse])
async def list_roles(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _membership: Annotated[MembershipContext, Depends(require_module_permission(ModuleType.ROLE, ActionType.READ))]
):
    """List the custom roles of an organization."""
    return await service.list_roles(db, organization_id)


@router.post("/{organization_id}/roles", response_model=OrganizationRoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    organization_id: str,
    role_data: OrganizationRoleCreate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_permission(Permission.ORG_MANAGE))]
):
    """Create a custom role."""
    return await service.create_role(
        db,
        organization_id,
        role_data.name,
        role_data.description,
        role_data.permissions,
        created_by=membership.user_id,
        request=request
    )


@router.patch("/{organization_id}/roles/{role_id}", response_model=OrganizationRoleResponse)
async def update_role(
    organization_id: str,
    role_id: str,
    role_data: OrganizationRoleUpdate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_permission(Permission.ORG_MANAGE))]
):
    """Update a custom role. Permissions, when given, replace the full grant list."""
    changes = {
        field: getattr(role_data, field)
        for field in role_data.model_fields_set
    }
    return await service.update_role(
        db,
        organization_id,
        role_id,
        changes,
        updated_by=membership.user_id,
        request=request
    )


@router.delete("/{organization_id}/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    organization_id: str,
    role_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_permission(Permission.ORG_MANAGE))]
):
    """Delete a custom role."""
    await service.delete_role(db, organization_id, role_id, deleted_by=membership.user_id, request=request)
