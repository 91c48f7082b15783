"""
Pydantic schemas for organization-scoped permissions and custom roles.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.permissions.catalog import ActionType, ModuleType, OrgRole, Permission


# ============================================================================
# Module/Action Grants
# ============================================================================

class ModulePermission(BaseModel):
    """A module/action grant."""
    module: ModuleType
    actions: List[ActionType] = Field(default_factory=list)

    @field_validator("actions")
    @classmethod
    def dedupe_actions(cls, v: List[ActionType]) -> List[ActionType]:
        """Drop repeated actions while keeping their order."""
        return list(dict.fromkeys(v))


# ============================================================================
# Custom Role Schemas
# ============================================================================

class OrganizationRoleBase(BaseModel):
    """Base custom role schema."""
    name: str = Field(..., min_length=1, max_length=100, description="Role name, unique per organization")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")


class OrganizationRoleCreate(OrganizationRoleBase):
    """Schema for creating a custom role."""
    permissions: List[ModulePermission] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class OrganizationRoleUpdate(BaseModel):
    """Schema for updating a custom role."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    permissions: Optional[List[ModulePermission]] = None


class OrganizationRoleResponse(OrganizationRoleBase):
    """Schema for custom role response."""
    id: str
    organization_id: str
    permissions: List[ModulePermission] = []
    is_system_role: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Resolved Context
# ============================================================================

class MembershipContextResponse(BaseModel):
    """What the caller can do in an organization."""
    membership_id: str
    organization_id: str
    role: OrgRole
    custom_role_id: Optional[str] = None
    permissions: List[Permission] = []
    module_permissions: List[ModulePermission] = []
