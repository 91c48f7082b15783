"""
Pydantic schemas for platform roles and permissions.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class PlatformPermissionResponse(BaseModel):
    """Schema for a catalog permission."""
    id: str
    name: str
    module: str
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PermissionGroup(BaseModel):
    """Permissions of one display module."""
    module: str
    permissions: List[PlatformPermissionResponse]


class PlatformRoleCreate(BaseModel):
    """Schema for creating a platform role."""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)


class PlatformRolePermissionsUpdate(BaseModel):
    """Full replacement permission set, by permission name."""
    permissions: List[str] = Field(default_factory=list)


class PlatformRoleResponse(BaseModel):
    """Schema for a platform role."""
    id: str
    name: str
    description: Optional[str] = None
    is_system: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PlatformRoleWithPermissions(PlatformRoleResponse):
    """Platform role with its granted permissions."""
    permissions: List[PlatformPermissionResponse] = []


class AssignPlatformRole(BaseModel):
    """Schema for assigning a platform role to a user."""
    role_id: str


class UserPlatformPermissionsResponse(BaseModel):
    """Resolved platform permissions of a user."""
    user_id: str
    is_super_admin: bool = False
    permissions: List[str]


class CatalogSyncResponse(BaseModel):
    inserted: int
