"""
Access token verification.

Tokens are minted by the auth service (password hashing and login live there);
this module only verifies them and turns the claims into a Principal.
"""
from dataclasses import dataclass
from datetime import timedelta

import jwt

from app.core import config
from app.core.errors import UnauthorizedError
from app.features.users.models import GlobalRole
from app.utils import get_logger, utcnow


log = get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    """The authenticated actor, trusted as-is once the token verifies."""
    user_id: str
    email: str
    global_role: GlobalRole

    @property
    def is_super_admin(self) -> bool:
        return self.global_role == GlobalRole.SUPER_ADMIN


def create_access_token(
    user_id: str,
    email: str,
    global_role: GlobalRole = GlobalRole.USER,
    expires_in: timedelta | None = None,
) -> str:
    """
    Mint an access token with the claims verify_jwt_token expects.

    Used by seed scripts, local development and tests.
    """
    expires_in = expires_in or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    now = utcnow()
    payload = {
        "userId": user_id,
        "email": email,
        "globalRole": GlobalRole(global_role).value,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def verify_jwt_token(token: str) -> Principal:
    """
    Verify an access token and return the principal it identifies.

    Raises:
        UnauthorizedError: If the token is expired, malformed or missing claims
    """
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token has expired")
    except jwt.InvalidTokenError as e:
        log.debug("Rejected token: %s", e)
        raise UnauthorizedError("Invalid or expired token")

    user_id = payload.get("userId")
    email = payload.get("email")
    if not user_id or not email:
        raise UnauthorizedError("Invalid token payload")

    try:
        global_role = GlobalRole(payload.get("globalRole", GlobalRole.USER.value))
    except ValueError:
        raise UnauthorizedError("Invalid token payload")

    return Principal(user_id=user_id, email=email, global_role=global_role)
