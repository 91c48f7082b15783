from datetime import timedelta

import pytest
from sqlalchemy import select

from app.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from app.features.audit.models import AuditAction, AuditLog
from app.features.invitations import service
from app.features.invitations.models import Invitation, InvitationStatus
from app.features.organizations.service import add_member, get_user_membership
from app.features.permissions import service as roles
from app.features.permissions.catalog import OrgRole
from app.utils import utcnow


pytestmark = pytest.mark.anyio


@pytest.fixture
async def invitee(make_user):
    return await make_user("invitee@example.com")


async def test_create_rules(db, organization, owner, invitee):
    with pytest.raises(ConflictError):
        await service.create_invitation(db, organization.id, owner.email, OrgRole.MEMBER, invited_by=owner.id)
    with pytest.raises(BadRequestError):
        await service.create_invitation(db, organization.id, invitee.email, OrgRole.OWNER, invited_by=owner.id)
    with pytest.raises(NotFoundError):
        await service.create_invitation(
            db, organization.id, invitee.email, OrgRole.MEMBER, invited_by=owner.id, custom_role_id="missing"
        )

    invitation = await service.create_invitation(
        db, organization.id, " Invitee@Example.com ", OrgRole.ADMIN, invited_by=owner.id
    )
    assert invitation.email == "invitee@example.com"
    assert invitation.status == InvitationStatus.PENDING
    assert len(invitation.token) == 64
    assert invitation.expires_at > utcnow() + timedelta(days=6)

    with pytest.raises(ConflictError):
        await service.create_invitation(db, organization.id, "INVITEE@example.com", OrgRole.MEMBER, invited_by=owner.id)


async def test_accept_creates_membership(db, organization, owner, invitee):
    invitation = await service.create_invitation(db, organization.id, invitee.email, OrgRole.ADMIN, invited_by=owner.id)

    accepted = await service.accept_invitation(db, invitation.token, invitee)

    assert accepted.status == InvitationStatus.ACCEPTED
    assert accepted.accepted_at is not None
    membership = await get_user_membership(db, organization.id, invitee.id)
    assert membership.role == OrgRole.ADMIN

    entry = await db.scalar(select(AuditLog).where(AuditLog.action == AuditAction.INVITATION_ACCEPTED.value))
    assert entry.resource_id == invitation.id
    assert entry.user_id == invitee.id

    with pytest.raises(BadRequestError, match="accepted"):
        await service.accept_invitation(db, invitation.token, invitee)


async def test_accept_rejections(db, organization, owner, invitee, make_user):
    invitation = await service.create_invitation(db, organization.id, invitee.email, OrgRole.MEMBER, invited_by=owner.id)
    impostor = await make_user("impostor@example.com")

    with pytest.raises(NotFoundError):
        await service.accept_invitation(db, "not-a-token", invitee)
    with pytest.raises(ForbiddenError):
        await service.accept_invitation(db, invitation.token, impostor)

    await add_member(db, organization.id, invitee.email, OrgRole.MEMBER, added_by=owner.id)
    with pytest.raises(ConflictError):
        await service.accept_invitation(db, invitation.token, invitee)

    stored = await db.get(Invitation, invitation.id, populate_existing=True)
    assert stored.status == InvitationStatus.PENDING


async def test_expired_invitation_is_marked(db, organization, owner, invitee):
    invitation = await service.create_invitation(db, organization.id, invitee.email, OrgRole.MEMBER, invited_by=owner.id)
    invitation.expires_at = utcnow() - timedelta(minutes=1)
    await db.commit()

    with pytest.raises(BadRequestError, match="expired"):
        await service.accept_invitation(db, invitation.token, invitee)

    stored = await db.get(Invitation, invitation.id, populate_existing=True)
    assert stored.status == InvitationStatus.EXPIRED
    assert await get_user_membership(db, organization.id, invitee.id) is None


async def test_deleted_custom_role_falls_back(db, organization, owner, invitee):
    role = await roles.create_role(db, organization.id, "Temp", None, [], created_by=owner.id)
    invitation = await service.create_invitation(
        db, organization.id, invitee.email, OrgRole.MEMBER, invited_by=owner.id, custom_role_id=role.id
    )
    await roles.delete_role(db, organization.id, role.id, deleted_by=owner.id)

    await service.accept_invitation(db, invitation.token, invitee)

    membership = await get_user_membership(db, organization.id, invitee.id)
    assert membership.custom_role_id is None


async def test_cancel_and_resend(db, organization, owner, invitee, make_user):
    invitation = await service.create_invitation(db, organization.id, invitee.email, OrgRole.MEMBER, invited_by=owner.id)
    old_token = invitation.token

    resent = await service.resend_invitation(db, organization.id, invitation.id)
    assert resent.token != old_token
    with pytest.raises(NotFoundError):
        await service.get_invitation_by_token(db, old_token)

    await service.cancel_invitation(db, organization.id, invitation.id, cancelled_by=owner.id)
    with pytest.raises(BadRequestError):
        await service.cancel_invitation(db, organization.id, invitation.id, cancelled_by=owner.id)
    with pytest.raises(BadRequestError):
        await service.resend_invitation(db, organization.id, invitation.id)
    with pytest.raises(BadRequestError, match="cancelled"):
        await service.accept_invitation(db, resent.token, invitee)

    # A cancelled invitation no longer blocks a new one
    again = await service.create_invitation(db, organization.id, invitee.email, OrgRole.MEMBER, invited_by=owner.id)
    pending = await service.list_invitations(db, organization.id, InvitationStatus.PENDING)
    assert [i.id for i in pending] == [again.id]
    assert len(await service.list_invitations(db, organization.id)) == 2


async def test_invitation_ids_are_scoped_to_the_organization(db, organization, owner, invitee, make_user):
    from app.features.organizations.service import create_organization

    other_owner = await make_user("other@example.com")
    other = await create_organization(db, other_owner.id, "Other Org")
    foreign = await service.create_invitation(db, other.id, invitee.email, OrgRole.MEMBER, invited_by=other_owner.id)

    with pytest.raises(NotFoundError):
        await service.cancel_invitation(db, organization.id, foreign.id, cancelled_by=owner.id)


class TestRoutes:
    async def test_invite_and_accept(self, client, organization, owner, invitee, auth_headers):
        response = await client.post(
            f"/invitations/{organization.id}",
            json={"email": invitee.email, "role": "MEMBER"},
            headers=auth_headers(owner)
        )
        assert response.status_code == 201
        token = response.json()["token"]

        response = await client.get(f"/invitations/{organization.id}", headers=auth_headers(owner))
        assert response.status_code == 200
        assert "token" not in response.json()[0]

        response = await client.get(f"/invitations/token/{token}")
        assert response.status_code == 200
        assert response.json()["organization_name"] == "Acme Corp"

        response = await client.post("/invitations/accept", json={"token": token}, headers=auth_headers(invitee))
        assert response.status_code == 200
        assert response.json()["status"] == "ACCEPTED"

        response = await client.get(f"/organizations/{organization.id}", headers=auth_headers(invitee))
        assert response.status_code == 200

    async def test_members_cannot_invite(self, client, db, organization, owner, make_user, auth_headers):
        member = await make_user("member@example.com")
        await add_member(db, organization.id, member.email, OrgRole.MEMBER, added_by=owner.id)

        response = await client.post(
            f"/invitations/{organization.id}",
            json={"email": "friend@example.com"},
            headers=auth_headers(member)
        )
        assert response.status_code == 403

        response = await client.get(f"/invitations/{organization.id}", headers=auth_headers(member))
        assert response.status_code == 403

    async def test_admin_cancels(self, client, db, organization, owner, make_user, auth_headers):
        admin = await make_user("admin@example.com")
        await add_member(db, organization.id, admin.email, OrgRole.ADMIN, added_by=owner.id)
        invitation = await service.create_invitation(
            db, organization.id, "friend@example.com", OrgRole.MEMBER, invited_by=owner.id
        )

        response = await client.delete(f"/invitations/{organization.id}/{invitation.id}", headers=auth_headers(admin))
        assert response.status_code == 204

        response = await client.get(
            f"/invitations/{organization.id}", params={"status": "CANCELLED"}, headers=auth_headers(admin)
        )
        assert [item["id"] for item in response.json()] == [invitation.id]

    async def test_accept_needs_a_token(self, client, invitee, auth_headers):
        response = await client.post("/invitations/accept", json={"token": "nope"}, headers=auth_headers(invitee))
        assert response.status_code == 404

        response = await client.post("/invitations/accept", json={"token": "nope"})
        assert response.status_code == 401
