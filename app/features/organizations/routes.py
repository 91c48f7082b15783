"""
Organization feature routes.

router is mounted at /organizations and admin_router at /admin/organizations.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.pagination import Page, page_count
from app.features.organizations import service
from app.features.organizations.dependencies import get_membership_by_id, get_organization_by_id
from app.features.organizations.models import Membership, Organization, OrgStatus
from app.features.organizations.schemas import (
    AddMemberRequest,
    AssignCustomRoleRequest,
    ChangeRoleRequest,
    MemberResponse,
    MyOrganizationResponse,
    OrganizationCreate,
    OrganizationResponse,
    OrganizationStatusUpdate,
    OrganizationUpdate,
    TransferOwnershipRequest,
)
from app.features.permissions.catalog import ActionType, ModuleType, Permission
from app.features.permissions.dependencies import (
    MembershipContext,
    require_admin,
    require_membership,
    require_module_permission,
    require_owner,
    require_permission,
)
from app.features.permissions.service import assign_custom_role
from app.features.platform_rbac.catalog import PlatformPermissionKey
from app.features.platform_rbac.dependencies import check_platform_permission
from app.features.users.auth import Principal
from app.features.users.dependencies import get_current_principal, get_current_user
from app.features.users.models import User


router = APIRouter(tags=["organizations"])
admin_router = APIRouter(tags=["admin-organizations"])


async def _organization_response(db: AsyncSession, organization: Organization) -> OrganizationResponse:
    response = OrganizationResponse.model_validate(organization)
    response.member_count = await service.count_members(db, organization.id)
    return response


# Organization endpoints
@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    request: Request,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create an organization owned by the caller. No organization context is needed."""
    organization = await service.create_organization(
        db,
        owner_id=user.id,
        name=org_data.name,
        description=org_data.description,
        plan_id=org_data.plan_id,
        request=request
    )
    return await _organization_response(db, organization)


@router.get("/my", response_model=List[MyOrganizationResponse])
async def list_my_organizations(
    principal: Annotated[Principal, Depends(get_current_principal)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Organizations the caller belongs to, with the caller's role in each."""
    rows = await service.list_user_organizations(db, principal.user_id)
    responses = []
    for organization, role in rows:
        response = MyOrganizationResponse.model_validate({
            **OrganizationResponse.model_validate(organization).model_dump(),
            "role": role,
        })
        response.member_count = await service.count_members(db, organization.id)
        responses.append(response)
    return responses


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _membership: Annotated[MembershipContext, Depends(require_membership())]
):
    """Get an organization the caller belongs to."""
    organization = await service.get_organization(db, organization_id)
    return await _organization_response(db, organization)


@router.patch("/{organization_id}", response_model=OrganizationResponse)
async def update_organization(
    organization_id: str,
    org_data: OrganizationUpdate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_permission(Permission.ORG_MANAGE))]
):
    """Update organization information."""
    organization = await service.update_organization(
        db,
        organization_id,
        membership.user_id,
        org_data.model_dump(exclude_unset=True),
        request=request
    )
    return await _organization_response(db, organization)


@router.delete("/{organization_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_organization(
    organization_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_owner)]
):
    """Delete (suspend) an organization. Owner only."""
    await service.delete_organization(db, organization_id, membership.user_id, request=request)


# Membership endpoints
@router.get("/{organization_id}/members", response_model=Page[MemberResponse])
async def list_members(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _membership: Annotated[MembershipContext, Depends(require_permission(Permission.USER_VIEW))],
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200)
):
    """List the members of an organization."""
    members, total = await service.list_members(db, organization_id, page, limit)
    return Page[MemberResponse](
        items=[MemberResponse.model_validate(m) for m in members],
        total=total,
        page=page,
        page_size=limit,
        pages=page_count(total, limit)
    )


@router.post("/{organization_id}/members", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
async def add_member(
    organization_id: str,
    member_data: AddMemberRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_permission(Permission.USER_INVITE))]
):
    """Add an existing user to the organization."""
    return await service.add_member(
        db,
        organization_id,
        member_data.email,
        member_data.role,
        added_by=membership.user_id,
        request=request
    )


@router.patch("/{organization_id}/members/{membership_id}/role", response_model=MemberResponse)
async def change_member_role(
    organization_id: str,
    membership_id: str,
    role_data: ChangeRoleRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_admin)]
):
    """Change a member's static role. Admins and owners only."""
    return await service.change_member_role(
        db,
        organization_id,
        membership_id,
        role_data.role,
        changed_by=membership.user_id,
        request=request
    )


@router.put("/{organization_id}/members/{membership_id}/custom-role", response_model=MemberResponse)
async def set_member_custom_role(
    role_data: AssignCustomRoleRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_module_permission(ModuleType.ROLE, ActionType.UPDATE))],
    target: Annotated[Membership, Depends(get_membership_by_id)]
):
    """Assign a custom role to a member, or clear it with null."""
    return await assign_custom_role(
        db,
        target,
        role_data.custom_role_id,
        changed_by=membership.user_id,
        request=request
    )


@router.delete("/{organization_id}/members/{membership_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    organization_id: str,
    membership_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_permission(Permission.USER_REMOVE))]
):
    """Remove a member. The owner cannot be removed."""
    await service.remove_member(db, organization_id, membership_id, removed_by=membership.user_id, request=request)


@router.post("/{organization_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_organization(
    organization_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_membership())]
):
    """Leave an organization. The owner has to transfer ownership first."""
    await service.leave_organization(db, organization_id, membership.user_id, request=request)


@router.post("/{organization_id}/transfer-ownership", response_model=OrganizationResponse)
async def transfer_ownership(
    organization_id: str,
    transfer: TransferOwnershipRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(require_owner)]
):
    """Hand the organization to another member. Owner only."""
    organization = await service.transfer_ownership(
        db,
        organization_id,
        current_owner_id=membership.user_id,
        new_owner_id=transfer.new_owner_id,
        request=request
    )
    return await _organization_response(db, organization)


# Platform admin endpoints
@admin_router.get("/", response_model=Page[OrganizationResponse])
async def admin_list_organizations(
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(check_platform_permission(PlatformPermissionKey.ORG_VIEW))],
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    search: Optional[str] = None,
    org_status: Optional[OrgStatus] = Query(None, alias="status")
):
    """List every organization on the platform."""
    organizations, total = await service.list_organizations(db, page, limit, search=search, status=org_status)
    return Page[OrganizationResponse](
        items=[await _organization_response(db, o) for o in organizations],
        total=total,
        page=page,
        page_size=limit,
        pages=page_count(total, limit)
    )


@admin_router.get("/{organization_id}", response_model=OrganizationResponse)
async def admin_get_organization(
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
    _principal: Annotated[Principal, Depends(check_platform_permission(PlatformPermissionKey.ORG_VIEW))]
):
    """Get any organization."""
    return await _organization_response(db, organization)


@admin_router.patch("/{organization_id}/status", response_model=OrganizationResponse)
async def admin_change_organization_status(
    organization_id: str,
    status_data: OrganizationStatusUpdate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(check_platform_permission(PlatformPermissionKey.ORG_SUSPEND))]
):
    """Suspend or reactivate an organization."""
    organization = await service.change_organization_status(
        db,
        organization_id,
        status_data.status,
        principal.user_id,
        request=request
    )
    return await _organization_response(db, organization)
