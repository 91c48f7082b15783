"""
Pydantic schemas for organization invitations.
"""
from datetime import datetime
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.features.invitations.models import InvitationStatus
from app.features.permissions.catalog import OrgRole
from app.features.users.schemas import UserPublic


class InvitationCreate(BaseModel):
    """Invite an email address to the organization."""
    email: EmailStr
    role: OrgRole = OrgRole.MEMBER
    custom_role_id: str | None = None


class InvitationAccept(BaseModel):
    token: str = Field(..., min_length=1)


class InvitationResponse(BaseModel):
    """Invitation as listed to organization admins. The token is never included."""
    id: str
    organization_id: str
    email: str
    role: OrgRole
    custom_role_id: str | None = None
    status: InvitationStatus
    invited_by: str
    inviter: UserPublic | None = None
    expires_at: datetime
    accepted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvitationWithToken(InvitationResponse):
    """Returned once on create and resend so the caller can deliver the link."""
    token: str


class InvitationPreview(BaseModel):
    """What an invitee sees before accepting."""
    organization_id: str
    organization_name: str
    email: str
    role: OrgRole
    status: InvitationStatus
    expires_at: datetime
