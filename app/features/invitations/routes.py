"""
Invitation routes, mounted at /invitations.

Token lookup and acceptance act for the invitee; everything under
/{organization_id} needs the USER_INVITE permission in that organization.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.invitations import service
from app.features.invitations.models import InvitationStatus
from app.features.invitations.schemas import (
    InvitationAccept,
    InvitationCreate,
    InvitationPreview,
    InvitationResponse,
    InvitationWithToken,
)
from app.features.permissions.catalog import Permission
from app.features.permissions.dependencies import MembershipContext, require_permission
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


router = APIRouter(tags=["invitations"])

can_invite = require_permission(Permission.USER_INVITE)


@router.get("/token/{token}", response_model=InvitationPreview)
async def preview_invitation(token: str, db: Annotated[AsyncSession, Depends(get_db)]):
    """Show the organization and role behind an invitation link (no authentication)."""
    invitation = await service.get_invitation_by_token(db, token)
    return InvitationPreview(
        organization_id=invitation.organization_id,
        organization_name=invitation.organization.name,
        email=invitation.email,
        role=invitation.role,
        status=invitation.status,
        expires_at=invitation.expires_at
    )


# Declared before /{organization_id} so "accept" is never read as an organization id
@router.post("/accept", response_model=InvitationResponse)
async def accept_invitation(
    accept_data: InvitationAccept,
    request: Request,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Join the organization as the invited user."""
    return await service.accept_invitation(db, accept_data.token, user, request=request)


@router.post("/{organization_id}", response_model=InvitationWithToken, status_code=status.HTTP_201_CREATED)
async def create_invitation(
    organization_id: str,
    invitation_data: InvitationCreate,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(can_invite)]
):
    return await service.create_invitation(
        db,
        organization_id,
        invitation_data.email,
        invitation_data.role,
        invited_by=membership.user_id,
        custom_role_id=invitation_data.custom_role_id,
        request=request
    )


@router.get("/{organization_id}", response_model=List[InvitationResponse])
async def list_invitations(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _membership: Annotated[MembershipContext, Depends(can_invite)],
    invitation_status: Optional[InvitationStatus] = Query(None, alias="status")
):
    """List invitations of an organization, newest first."""
    return await service.list_invitations(db, organization_id, invitation_status)


@router.delete("/{organization_id}/{invitation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_invitation(
    organization_id: str,
    invitation_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    membership: Annotated[MembershipContext, Depends(can_invite)]
):
    await service.cancel_invitation(db, organization_id, invitation_id, membership.user_id, request=request)


@router.post("/{organization_id}/{invitation_id}/resend", response_model=InvitationWithToken)
async def resend_invitation(
    organization_id: str,
    invitation_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _membership: Annotated[MembershipContext, Depends(can_invite)]
):
    """Issue a new token and restart the expiry clock."""
    return await service.resend_invitation(db, organization_id, invitation_id)
