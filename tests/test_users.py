from datetime import timedelta

import jwt
import pytest

from app.core import config
from app.core.errors import ForbiddenError, UnauthorizedError
from app.features.users.auth import Principal, create_access_token, verify_jwt_token
from app.features.users.dependencies import require_global_role, require_super_admin
from app.features.users.models import GlobalRole


pytestmark = pytest.mark.anyio


def test_token_round_trip():
    token = create_access_token("01HUSER", "a@example.com", GlobalRole.SUPER_ADMIN)

    principal = verify_jwt_token(token)

    assert principal.user_id == "01HUSER"
    assert principal.is_super_admin


def test_expired_token():
    token = create_access_token("01HUSER", "a@example.com", expires_in=timedelta(seconds=-5))

    with pytest.raises(UnauthorizedError, match="expired"):
        verify_jwt_token(token)


def test_token_signed_with_another_key():
    token = jwt.encode({"userId": "01HUSER", "email": "a@example.com"}, "x" * 40, algorithm=config.JWT_ALGORITHM)

    with pytest.raises(UnauthorizedError):
        verify_jwt_token(token)


def test_token_without_user_id():
    token = jwt.encode({"email": "a@example.com"}, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)

    with pytest.raises(UnauthorizedError, match="payload"):
        verify_jwt_token(token)


async def test_me(client, owner, auth_headers):
    response = await client.get("/users/me", headers=auth_headers(owner))

    assert response.status_code == 200
    assert response.json()["email"] == owner.email
    assert response.json()["last_login_at"] is not None


async def test_token_for_unknown_user(client):
    token = create_access_token("01HZZZZZZZZZZZZZZZZZZZZZZZ", "ghost@example.com")

    response = await client.get("/users/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


async def test_update_profile(client, owner, auth_headers):
    response = await client.patch("/users/me", json={"name": "Olive Owner"}, headers=auth_headers(owner))

    assert response.status_code == 200
    assert response.json()["name"] == "Olive Owner"
    assert response.json()["email"] == owner.email


class TestGlobalRoleGate:
    async def test_user_claim_is_forbidden(self):
        principal = Principal(user_id="01HUSER", email="a@example.com", global_role=GlobalRole.USER)

        with pytest.raises(ForbiddenError, match="Insufficient permissions"):
            await require_super_admin(principal)

    async def test_super_admin_claim_passes(self):
        principal = Principal(user_id="01HROOT", email="root@example.com", global_role=GlobalRole.SUPER_ADMIN)

        assert await require_super_admin(principal) is principal

    async def test_any_listed_role_passes(self):
        gate = require_global_role(GlobalRole.USER, GlobalRole.SUPER_ADMIN)
        principal = Principal(user_id="01HUSER", email="a@example.com", global_role=GlobalRole.USER)

        assert await gate(principal) is principal

    async def test_catalog_sync_route(self, client, owner, super_admin, auth_headers):
        response = await client.post("/platform-rbac/permissions/sync", headers=auth_headers(owner))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

        response = await client.post("/platform-rbac/permissions/sync", headers=auth_headers(super_admin))
        assert response.status_code == 200
        assert response.json()["inserted"] >= 0

        response = await client.post("/platform-rbac/permissions/sync", headers=auth_headers(super_admin))
        assert response.json() == {"inserted": 0}
