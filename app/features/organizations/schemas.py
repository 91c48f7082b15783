"""
Pydantic schemas for organization-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.features.organizations.models import OrgStatus
from app.features.permissions.catalog import OrgRole
from app.features.users.schemas import UserPublic


# Organization Schemas
class OrganizationBase(BaseModel):
    """Base organization schema."""
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)


class OrganizationCreate(OrganizationBase):
    """Schema for creating a new organization. Any authenticated user may create one."""
    plan_id: str | None = Field(None, description="Plan to subscribe to, defaults to FREE")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be blank")
        return v


class OrganizationUpdate(BaseModel):
    """Schema for updating organization information."""
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)


class OrganizationStatusUpdate(BaseModel):
    """Schema for suspending or reactivating an organization (platform admins)."""
    status: OrgStatus


class OrganizationResponse(OrganizationBase):
    """Schema for organization responses."""
    id: str
    slug: str
    owner_id: str
    status: OrgStatus
    is_active: bool
    created_at: datetime
    updated_at: datetime
    member_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class MyOrganizationResponse(OrganizationResponse):
    """Organization as seen by one of its members."""
    role: OrgRole


# Membership Schemas
class MemberResponse(BaseModel):
    """Schema for membership responses."""
    id: str
    organization_id: str
    user_id: str
    role: OrgRole
    custom_role_id: str | None = None
    joined_at: datetime
    user: UserPublic | None = None

    model_config = ConfigDict(from_attributes=True)


class AddMemberRequest(BaseModel):
    """Add an existing user to the organization."""
    email: EmailStr
    role: OrgRole = OrgRole.MEMBER


class ChangeRoleRequest(BaseModel):
    """Change a member's static role."""
    role: OrgRole


class AssignCustomRoleRequest(BaseModel):
    """Point a membership at a custom role, or clear it with null."""
    custom_role_id: str | None = None


class TransferOwnershipRequest(BaseModel):
    """Hand the organization to another member."""
    new_owner_id: str = Field(..., min_length=1)
