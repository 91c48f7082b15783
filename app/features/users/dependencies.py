"""
FastAPI dependencies for authentication and global-role authorization.
"""
from typing import Annotated
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import ForbiddenError, UnauthorizedError
from app.features.users.auth import Principal, verify_jwt_token
from app.features.users.models import GlobalRole, User
from app.utils import get_logger, utcnow


log = get_logger(__name__)

# auto_error is off so a missing header surfaces as our own Unauthorized error
security = HTTPBearer(auto_error=False)


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)]
) -> Principal:
    """
    Resolve the principal from the bearer token.

    Usage:
        @router.get("/me")
        async def get_me(principal: Principal = Depends(get_current_principal)):
            return principal
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("No token provided")
    return verify_jwt_token(credentials.credentials)


async def get_current_user(
    principal: Annotated[Principal, Depends(get_current_principal)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Load the User row behind the principal and stamp last_login_at.

    Raises:
        UnauthorizedError: token references a user that does not exist
        ForbiddenError: user account is deactivated
    """
    user = await db.scalar(select(User).where(User.id == principal.user_id))
    if user is None:
        raise UnauthorizedError("Unknown user")
    if not user.is_active:
        raise ForbiddenError("User account is deactivated")

    user.last_login_at = utcnow()
    await db.commit()
    await db.refresh(user)
    return user


def require_global_role(*roles: GlobalRole):
    """
    Dependency factory gating a route on the token's global role claim.

    Usage:
        @router.get("/admin/stats", dependencies=[Depends(require_global_role(GlobalRole.SUPER_ADMIN))])
    """
    allowed = frozenset(roles)

    async def global_role_dependency(
        principal: Annotated[Principal, Depends(get_current_principal)]
    ) -> Principal:
        if principal.global_role not in allowed:
            log.debug("Global role %s not in %s", principal.global_role, sorted(allowed))
            raise ForbiddenError("Insufficient permissions")
        return principal

    return global_role_dependency


require_super_admin = require_global_role(GlobalRole.SUPER_ADMIN)


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
