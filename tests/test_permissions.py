import pytest
from starlette.requests import Request

from app.core.errors import ConflictError, ForbiddenError, NotFoundError
from app.features.organizations.models import Membership
from app.features.organizations.service import add_member, create_organization
from app.features.permissions import service
from app.features.permissions.catalog import ActionType, ModuleType, OrgRole, Permission
from app.features.permissions.dependencies import (
    MembershipContext,
    build_membership_context,
    check_any_permission,
    check_module_permission,
    check_org_role,
    check_permission,
    ensure_context,
    resolve_organization_id,
)
from app.features.permissions.models import OrganizationRole
from app.features.permissions.schemas import ModulePermission


pytestmark = pytest.mark.anyio


def make_context(role=OrgRole.MEMBER, grants=(), permissions=frozenset()):
    return MembershipContext(
        membership_id="m1",
        organization_id="o1",
        user_id="u1",
        role=role,
        permissions=frozenset(permissions),
        module_permissions=[ModulePermission(module=m, actions=list(a)) for m, a in grants],
    )


@pytest.fixture
async def member(db, organization, owner, make_user):
    user = await make_user("member@example.com")
    membership = await add_member(db, organization.id, user.email, OrgRole.MEMBER, added_by=owner.id)
    return user, membership


class TestChecks:
    def test_owner_passes_without_grants(self):
        context = make_context(role=OrgRole.OWNER)

        for module in ModuleType:
            for action in ActionType:
                assert check_module_permission(context, module, action) is context
        assert check_permission(context, Permission.ORG_MANAGE, Permission.SUBSCRIPTION_MANAGE) is context

    def test_grants_for_one_module_are_merged(self):
        context = make_context(grants=[
            (ModuleType.CRM, [ActionType.READ]),
            (ModuleType.CRM, [ActionType.UPDATE]),
        ])

        check_module_permission(context, ModuleType.CRM, ActionType.READ)
        check_module_permission(context, ModuleType.CRM, ActionType.UPDATE)
        with pytest.raises(ForbiddenError):
            check_module_permission(context, ModuleType.CRM, ActionType.DELETE)
        with pytest.raises(ForbiddenError):
            check_module_permission(context, ModuleType.FINANCE, ActionType.READ)

    def test_manage_in_any_grant_covers_the_module(self):
        context = make_context(grants=[
            (ModuleType.CRM, [ActionType.READ]),
            (ModuleType.CRM, [ActionType.UPDATE, ActionType.MANAGE]),
        ])

        check_module_permission(context, ModuleType.CRM, ActionType.DELETE)
        with pytest.raises(ForbiddenError, match="FINANCE"):
            check_module_permission(context, ModuleType.FINANCE, ActionType.READ)

    def test_manage_implies_every_action(self):
        context = make_context(grants=[(ModuleType.FINANCE, [ActionType.MANAGE])])

        for action in ActionType:
            check_module_permission(context, ModuleType.FINANCE, action)
        with pytest.raises(ForbiddenError):
            check_module_permission(context, ModuleType.CRM, ActionType.READ)

    def test_missing_context_is_denied(self):
        with pytest.raises(ForbiddenError, match="Membership context required"):
            ensure_context(None)
        with pytest.raises(ForbiddenError):
            check_permission(None, Permission.ORG_VIEW)
        with pytest.raises(ForbiddenError):
            check_module_permission(None, ModuleType.CRM, ActionType.READ)
        with pytest.raises(ForbiddenError):
            check_org_role(None, OrgRole.OWNER)

    def test_legacy_permissions(self):
        context = make_context(permissions={Permission.CRM_READ, Permission.USER_VIEW})

        check_permission(context, Permission.CRM_READ, Permission.USER_VIEW)
        check_any_permission(context, Permission.CRM_WRITE, Permission.CRM_READ)
        with pytest.raises(ForbiddenError):
            check_permission(context, Permission.CRM_READ, Permission.CRM_WRITE)
        with pytest.raises(ForbiddenError):
            check_any_permission(context, Permission.CRM_WRITE, Permission.ORG_MANAGE)

    def test_org_role_check(self):
        context = make_context(role=OrgRole.ADMIN)

        assert check_org_role(context, OrgRole.OWNER, OrgRole.ADMIN) is context
        with pytest.raises(ForbiddenError):
            check_org_role(context, OrgRole.OWNER)


class TestOrganizationIdResolution:
    @staticmethod
    def make_request(path_params=None, query_string=b"", headers=()):
        return Request({
            "type": "http",
            "method": "GET",
            "path": "/",
            "path_params": path_params or {},
            "query_string": query_string,
            "headers": list(headers),
        })

    def test_path_wins(self):
        request = self.make_request(
            path_params={"organization_id": "from-path"},
            query_string=b"organization_id=from-query",
            headers=[(b"x-organization-id", b"from-header")]
        )
        assert resolve_organization_id(request) == "from-path"

    def test_query_then_header(self):
        assert resolve_organization_id(self.make_request(query_string=b"organizationId=camel")) == "camel"
        assert resolve_organization_id(self.make_request(headers=[(b"x-organization-id", b"hdr")])) == "hdr"
        assert resolve_organization_id(self.make_request()) is None


async def test_unknown_organization_is_not_found(db, owner):
    with pytest.raises(NotFoundError):
        await build_membership_context(db, owner.id, "01HZZZZZZZZZZZZZZZZZZZZZZZ")


async def test_non_member_is_forbidden(db, organization, make_user):
    stranger = await make_user("stranger@example.com")

    with pytest.raises(ForbiddenError):
        await build_membership_context(db, stranger.id, organization.id)


async def test_static_role_defaults(db, organization, member):
    user, _ = member

    context = await build_membership_context(db, user.id, organization.id)

    assert context.role == OrgRole.MEMBER
    assert Permission.ORG_MANAGE not in context.permissions
    assert ActionType.CREATE in context.actions_for(ModuleType.CRM)
    assert context.actions_for(ModuleType.ROLE) == set()


async def test_custom_role_replaces_defaults(db, organization, owner, member):
    user, membership = member
    role = await service.create_role(
        db,
        organization.id,
        "Bookkeeper",
        None,
        [ModulePermission(module=ModuleType.FINANCE, actions=[ActionType.MANAGE])],
        created_by=owner.id
    )
    await service.assign_custom_role(db, membership, role.id, changed_by=owner.id)

    context = await build_membership_context(db, user.id, organization.id)

    assert context.custom_role_id == role.id
    check_module_permission(context, ModuleType.FINANCE, ActionType.DELETE)
    with pytest.raises(ForbiddenError):
        check_module_permission(context, ModuleType.CRM, ActionType.READ)


async def test_foreign_custom_role_falls_back_to_defaults(db, organization, owner, member, make_user):
    user, membership = member
    other_owner = await make_user("other@example.com")
    other = await create_organization(db, other_owner.id, "Other Org")
    foreign = await service.create_role(
        db, other.id, "Everything", None,
        [ModulePermission(module=module, actions=[ActionType.MANAGE]) for module in ModuleType],
        created_by=other_owner.id
    )

    with pytest.raises(NotFoundError):
        await service.assign_custom_role(db, membership, foreign.id, changed_by=owner.id)

    membership.custom_role_id = foreign.id
    await db.commit()

    context = await build_membership_context(db, user.id, organization.id)

    assert context.actions_for(ModuleType.FINANCE) == {ActionType.READ}
    with pytest.raises(ForbiddenError):
        check_module_permission(context, ModuleType.ROLE, ActionType.DELETE)


async def test_role_names_are_unique_per_organization(db, organization, owner, make_user):
    await service.create_role(db, organization.id, "Sales", None, [], created_by=owner.id)

    with pytest.raises(ConflictError):
        await service.create_role(db, organization.id, "sales", None, [], created_by=owner.id)

    other_owner = await make_user("other@example.com")
    other = await create_organization(db, other_owner.id, "Other Org")
    role = await service.create_role(db, other.id, "Sales", None, [], created_by=other_owner.id)
    assert role.organization_id == other.id


async def test_system_roles_are_protected(db, organization, owner):
    system = OrganizationRole(organization_id=organization.id, name="Owner", permissions=[], is_system_role=True)
    db.add(system)
    await db.commit()

    with pytest.raises(ForbiddenError):
        await service.update_role(db, organization.id, system.id, {"name": "Boss"}, updated_by=owner.id)
    with pytest.raises(ForbiddenError):
        await service.delete_role(db, organization.id, system.id, deleted_by=owner.id)


async def test_deleting_a_role_detaches_members(db, organization, owner, member):
    user, membership = member
    role = await service.create_role(db, organization.id, "Temp", None, [], created_by=owner.id)
    await service.assign_custom_role(db, membership, role.id, changed_by=owner.id)

    await service.delete_role(db, organization.id, role.id, deleted_by=owner.id)

    refreshed = await db.get(Membership, membership.id, populate_existing=True)
    assert refreshed.custom_role_id is None
    with pytest.raises(NotFoundError):
        await service.get_role(db, organization.id, role.id)


class TestRoutes:
    async def test_my_permissions(self, client, organization, member, auth_headers):
        user, membership = member

        response = await client.get(f"/organizations/{organization.id}/my-permissions", headers=auth_headers(user))

        assert response.status_code == 200
        body = response.json()
        assert body["membership_id"] == membership.id
        assert body["role"] == "MEMBER"
        assert "ORG_MANAGE" not in body["permissions"]

    async def test_non_member_gets_forbidden(self, client, organization, make_user, auth_headers):
        stranger = await make_user("stranger@example.com")

        response = await client.get(f"/organizations/{organization.id}/my-permissions", headers=auth_headers(stranger))

        assert response.status_code == 403

    async def test_custom_role_lifecycle(self, client, organization, owner, member, auth_headers):
        user, membership = member
        headers = auth_headers(owner)

        response = await client.post(
            f"/organizations/{organization.id}/roles",
            json={"name": "Closer", "permissions": [{"module": "CRM", "actions": ["READ", "DELETE"]}]},
            headers=headers
        )
        assert response.status_code == 201
        role_id = response.json()["id"]

        response = await client.post(
            f"/organizations/{organization.id}/roles",
            json={"name": "closer"},
            headers=headers
        )
        assert response.status_code == 409

        response = await client.put(
            f"/organizations/{organization.id}/members/{membership.id}/custom-role",
            json={"custom_role_id": role_id},
            headers=headers
        )
        assert response.status_code == 200
        assert response.json()["custom_role_id"] == role_id

        response = await client.get(f"/organizations/{organization.id}/my-permissions", headers=auth_headers(user))
        assert response.json()["module_permissions"] == [{"module": "CRM", "actions": ["READ", "DELETE"]}]

        response = await client.patch(
            f"/organizations/{organization.id}/roles/{role_id}",
            json={"description": "Closes deals"},
            headers=headers
        )
        assert response.status_code == 200
        assert response.json()["description"] == "Closes deals"

        response = await client.delete(f"/organizations/{organization.id}/roles/{role_id}", headers=headers)
        assert response.status_code == 204

        response = await client.get(f"/organizations/{organization.id}/roles", headers=headers)
        assert response.json() == []

    async def test_member_cannot_manage_roles(self, client, organization, member, auth_headers):
        user, _ = member

        response = await client.post(
            f"/organizations/{organization.id}/roles",
            json={"name": "Sneaky"},
            headers=auth_headers(user)
        )
        assert response.status_code == 403

        response = await client.get(f"/organizations/{organization.id}/roles", headers=auth_headers(user))
        assert response.status_code == 403
