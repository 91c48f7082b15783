import pytest
from sqlalchemy import func, select

from app.core.errors import ConflictError, ForbiddenError, NotFoundError
from app.features.platform_rbac import service
from app.features.platform_rbac.catalog import ALL_PLATFORM_PERMISSIONS, PlatformPermissionKey
from app.features.platform_rbac.models import PlatformPermission, user_platform_roles
from scripts.seed_platform_rbac import seed, seed_system_roles


pytestmark = pytest.mark.anyio


@pytest.fixture
async def system_roles(db):
    await service.sync_permission_catalog(db)
    return await seed_system_roles(db)


@pytest.fixture
async def auditor_role(db, system_roles):
    role = await service.create_role(db, "auditor", "Reads audit logs and organizations")
    return await service.replace_role_permissions(
        db, role.id, [PlatformPermissionKey.ORG_VIEW.value, PlatformPermissionKey.AUDIT_VIEW.value]
    )


async def test_catalog_sync_is_idempotent(db):
    assert await service.sync_permission_catalog(db) == len(ALL_PLATFORM_PERMISSIONS)
    assert await service.sync_permission_catalog(db) == 0
    assert await db.scalar(select(func.count()).select_from(PlatformPermission)) == len(ALL_PLATFORM_PERMISSIONS)


async def test_seed_assigns_super_admins_once(db, super_admin):
    await seed(db)
    await seed(db)

    roles = await service.get_user_platform_roles(db, super_admin.id)
    assert [role.name for role in roles] == ["SUPER_ADMIN"]
    assert await service.resolve_user_platform_permissions(db, super_admin.id) == set(ALL_PLATFORM_PERMISSIONS)


async def test_permissions_are_the_union_of_roles(db, auditor_role, make_user):
    billing = await service.create_role(db, "billing")
    await service.replace_role_permissions(
        db, billing.id, [PlatformPermissionKey.AUDIT_VIEW.value, PlatformPermissionKey.PLAN_VIEW.value]
    )
    staff = await make_user("staff@example.com")

    assert await service.resolve_user_platform_permissions(db, staff.id) == set()

    await service.assign_role_to_user(db, staff.id, auditor_role.id)
    await service.assign_role_to_user(db, staff.id, billing.id)

    assert await service.resolve_user_platform_permissions(db, staff.id) == {"ORG_VIEW", "AUDIT_VIEW", "PLAN_VIEW"}
    assert await service.user_has_platform_permission(db, staff.id, "PLAN_VIEW")
    assert not await service.user_has_platform_permission(db, staff.id, "PLAN_CHANGE")


async def test_unknown_permission_names_are_dropped(db, system_roles):
    role = await service.create_role(db, "viewer")
    role = await service.replace_role_permissions(db, role.id, ["ORG_VIEW", "NOT_A_PERMISSION"])

    assert [p.name for p in role.permissions] == ["ORG_VIEW"]


async def test_role_names_are_unique_ignoring_case(db, system_roles):
    with pytest.raises(ConflictError):
        await service.create_role(db, "Support_Admin")

    role = await service.create_role(db, "  regional lead ")
    assert role.name == "REGIONAL LEAD"


async def test_system_roles_cannot_be_changed(db, system_roles):
    support = system_roles["SUPPORT_ADMIN"]
    before = {p.name for p in support.permissions}

    with pytest.raises(ForbiddenError):
        await service.delete_role(db, support.id)
    with pytest.raises(ForbiddenError):
        await service.replace_role_permissions(db, support.id, ["PLAN_CHANGE"])

    role = await service.get_role(db, support.id)
    await db.refresh(role, attribute_names=["permissions"])
    assert {p.name for p in role.permissions} == before


async def test_deleting_a_role_revokes_it(db, auditor_role, make_user):
    staff = await make_user("staff@example.com")
    await service.assign_role_to_user(db, staff.id, auditor_role.id)

    await service.delete_role(db, auditor_role.id)

    assert await service.resolve_user_platform_permissions(db, staff.id) == set()
    remaining = await db.scalar(
        select(func.count()).select_from(user_platform_roles).where(user_platform_roles.c.user_id == staff.id)
    )
    assert remaining == 0


async def test_assignment_conflicts_and_missing_rows(db, auditor_role, make_user):
    staff = await make_user("staff@example.com")
    await service.assign_role_to_user(db, staff.id, auditor_role.id)

    with pytest.raises(ConflictError):
        await service.assign_role_to_user(db, staff.id, auditor_role.id)

    await service.remove_role_from_user(db, staff.id, auditor_role.id)
    with pytest.raises(NotFoundError):
        await service.remove_role_from_user(db, staff.id, auditor_role.id)
    with pytest.raises(NotFoundError):
        await service.assign_role_to_user(db, "01HZZZZZZZZZZZZZZZZZZZZZZZ", auditor_role.id)


class TestRoutes:
    async def test_super_admin_bypasses_role_checks(self, client, super_admin, auth_headers):
        response = await client.get("/platform-rbac/me/permissions", headers=auth_headers(super_admin))

        assert response.status_code == 200
        body = response.json()
        assert body["is_super_admin"] is True
        assert set(body["permissions"]) == set(ALL_PLATFORM_PERMISSIONS)

        response = await client.get("/platform-rbac/roles", headers=auth_headers(super_admin))
        assert response.status_code == 200

    async def test_role_grants_only_what_it_lists(self, client, db, organization, auditor_role, make_user, auth_headers):
        staff = await make_user("staff@example.com")
        await service.assign_role_to_user(db, staff.id, auditor_role.id)

        response = await client.get("/admin/organizations/", headers=auth_headers(staff))
        assert response.status_code == 200
        assert response.json()["total"] == 1

        response = await client.get("/admin/subscriptions/kpi", headers=auth_headers(staff))
        assert response.status_code == 403
        assert response.json()["error"] == {"code": "FORBIDDEN", "message": "Forbidden: insufficient permissions"}

    async def test_user_without_roles_is_forbidden(self, client, owner, auth_headers):
        response = await client.get("/platform-rbac/roles", headers=auth_headers(owner))

        assert response.status_code == 403

    async def test_missing_token_is_unauthorized(self, client):
        response = await client.get("/platform-rbac/roles")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    async def test_role_crud(self, client, system_roles, super_admin, auth_headers):
        headers = auth_headers(super_admin)

        response = await client.post("/platform-rbac/roles", json={"name": "support_admin"}, headers=headers)
        assert response.status_code == 409

        response = await client.post("/platform-rbac/roles", json={"name": "Onboarding"}, headers=headers)
        assert response.status_code == 201
        role_id = response.json()["id"]
        assert response.json()["name"] == "ONBOARDING"

        response = await client.patch(
            f"/platform-rbac/roles/{role_id}/permissions",
            json={"permissions": ["ORG_VIEW", "ORG_CREATE"]},
            headers=headers
        )
        assert response.status_code == 200
        assert {p["name"] for p in response.json()["permissions"]} == {"ORG_VIEW", "ORG_CREATE"}

        response = await client.delete(f"/platform-rbac/roles/{system_roles['FINANCE_ADMIN'].id}", headers=headers)
        assert response.status_code == 403

        response = await client.delete(f"/platform-rbac/roles/{role_id}", headers=headers)
        assert response.status_code == 204

    async def test_assign_role_over_http(self, client, auditor_role, super_admin, make_user, auth_headers):
        staff = await make_user("staff@example.com")
        headers = auth_headers(super_admin)

        response = await client.post(f"/platform-rbac/users/{staff.id}/roles", json={"role_id": auditor_role.id}, headers=headers)
        assert response.status_code == 201

        response = await client.post(f"/platform-rbac/users/{staff.id}/roles", json={"role_id": auditor_role.id}, headers=headers)
        assert response.status_code == 409

        response = await client.get(f"/platform-rbac/users/{staff.id}/permissions", headers=headers)
        assert sorted(response.json()["permissions"]) == ["AUDIT_VIEW", "ORG_VIEW"]
