"""
Platform permission guard for admin panel routes.
"""
from typing import Annotated
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import ForbiddenError
from app.features.platform_rbac.catalog import PlatformPermissionKey
from app.features.platform_rbac.service import user_has_platform_permission
from app.features.users.auth import Principal
from app.features.users.dependencies import get_current_principal
from app.utils import get_logger


log = get_logger(__name__)


def check_platform_permission(permission: PlatformPermissionKey):
    """
    Dependency factory protecting a route with a platform permission.

    Super admins pass without touching the database; everyone else needs a
    role granting the permission.

    Usage:
        @router.get("/roles")
        async def list_roles(
            principal: Principal = Depends(check_platform_permission(PlatformPermissionKey.DESIGNATION_VIEW))
        ):
            ...
    """
    name = PlatformPermissionKey(permission).value

    async def platform_permission_dependency(
        principal: Annotated[Principal, Depends(get_current_principal)],
        db: Annotated[AsyncSession, Depends(get_db)]
    ) -> Principal:
        if principal.is_super_admin:
            return principal
        if not await user_has_platform_permission(db, principal.user_id, name):
            log.debug("User %s lacks platform permission %s", principal.user_id, name)
            raise ForbiddenError("Forbidden: insufficient permissions")
        return principal

    return platform_permission_dependency
