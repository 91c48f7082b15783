"""
Organization invitation lifecycle: create, list, accept, cancel, resend.

Delivering the invitation link is left to the caller; the token is returned
once on create and resend.
"""
from typing import Optional
from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from app.features.audit.models import AuditAction
from app.features.audit.service import log_audit
from app.features.invitations.models import Invitation, InvitationStatus, default_expiry, generate_token
from app.features.organizations.models import Membership
from app.features.organizations.service import get_organization, get_user_membership
from app.features.permissions.catalog import OrgRole
from app.features.permissions.models import OrganizationRole
from app.features.permissions.service import get_role
from app.features.users.models import User
from app.utils import as_utc, get_logger, utcnow


log = get_logger(__name__)

RESOURCE = "Invitation"


async def get_invitation(db: AsyncSession, organization_id: str, invitation_id: str) -> Invitation:
    invitation = await db.scalar(
        select(Invitation).where(Invitation.id == invitation_id, Invitation.organization_id == organization_id)
    )
    if invitation is None:
        raise NotFoundError("Invitation not found")
    return invitation


async def get_invitation_by_token(db: AsyncSession, token: str) -> Invitation:
    invitation = await db.scalar(select(Invitation).where(Invitation.token == token))
    if invitation is None:
        raise NotFoundError("Invitation not found")
    return invitation


async def create_invitation(
    db: AsyncSession,
    organization_id: str,
    email: str,
    role: OrgRole,
    invited_by: str,
    custom_role_id: Optional[str] = None,
    request: Optional[Request] = None
) -> Invitation:
    """
    Invite an email address to the organization.

    Raises:
        NotFoundError: organization or custom role does not exist
        ConflictError: email already belongs to a member, or already has a pending invitation
        BadRequestError: role is OWNER
    """
    await get_organization(db, organization_id)
    email = email.strip().lower()

    user_id = await db.scalar(select(User.id).where(func.lower(User.email) == email))
    if user_id is not None and await get_user_membership(db, organization_id, user_id) is not None:
        raise ConflictError("User is already a member of this organization")

    pending = await db.scalar(
        select(Invitation.id).where(
            Invitation.organization_id == organization_id,
            Invitation.email == email,
            Invitation.status == InvitationStatus.PENDING
        )
    )
    if pending is not None:
        raise ConflictError("An invitation has already been sent to this email")

    if role == OrgRole.OWNER:
        raise BadRequestError("Cannot invite as owner")
    if custom_role_id is not None:
        await get_role(db, organization_id, custom_role_id)

    invitation = Invitation(
        organization_id=organization_id,
        email=email,
        role=role,
        custom_role_id=custom_role_id,
        invited_by=invited_by,
        status=InvitationStatus.PENDING
    )
    db.add(invitation)
    await db.commit()
    await db.refresh(invitation)
    log.info("Invited %s to organization %s as %s", email, organization_id, role.value)

    await log_audit(
        db,
        user_id=invited_by,
        action=AuditAction.USER_INVITED,
        resource=RESOURCE,
        resource_id=invitation.id,
        organization_id=organization_id,
        details={"email": email, "role": role.value},
        request=request
    )
    return invitation


async def list_invitations(
    db: AsyncSession,
    organization_id: str,
    status: Optional[InvitationStatus] = None
) -> list[Invitation]:
    stmt = select(Invitation).where(Invitation.organization_id == organization_id)
    if status is not None:
        stmt = stmt.where(Invitation.status == status)
    result = await db.scalars(stmt.order_by(Invitation.created_at.desc(), Invitation.id.desc()))
    return list(result.all())


async def accept_invitation(
    db: AsyncSession,
    token: str,
    user: User,
    request: Optional[Request] = None
) -> Invitation:
    """
    Accept an invitation on behalf of user and create the membership.

    An invitation found past its expiry is marked EXPIRED before the request
    is rejected.

    Raises:
        NotFoundError: unknown token
        BadRequestError: invitation expired or no longer pending
        ForbiddenError: invitation was sent to another email
        ConflictError: user is already a member
    """
    invitation = await get_invitation_by_token(db, token)

    if invitation.status == InvitationStatus.PENDING and as_utc(invitation.expires_at) < utcnow():
        invitation.status = InvitationStatus.EXPIRED
        await db.commit()
        raise BadRequestError("Invitation has expired")

    if invitation.status != InvitationStatus.PENDING:
        raise BadRequestError(f"Invitation is {invitation.status.value.lower()}")

    if user.email.lower() != invitation.email:
        raise ForbiddenError("This invitation was sent to a different email")

    organization_id = invitation.organization_id
    if await get_user_membership(db, organization_id, user.id) is not None:
        raise ConflictError("You are already a member of this organization")

    # A custom role deleted since the invitation was sent falls back to the static role
    custom_role_id = invitation.custom_role_id
    if custom_role_id is not None and await db.get(OrganizationRole, custom_role_id) is None:
        custom_role_id = None

    membership = Membership(
        user_id=user.id,
        organization_id=organization_id,
        role=invitation.role,
        custom_role_id=custom_role_id
    )
    db.add(membership)
    invitation.status = InvitationStatus.ACCEPTED
    invitation.accepted_at = utcnow()
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("You are already a member of this organization")
    await db.refresh(invitation)
    log.info("User %s joined organization %s by invitation", user.id, organization_id)

    await log_audit(
        db,
        user_id=user.id,
        action=AuditAction.INVITATION_ACCEPTED,
        resource=RESOURCE,
        resource_id=invitation.id,
        organization_id=organization_id,
        details={"membershipId": membership.id, "role": invitation.role.value},
        request=request
    )
    return invitation


async def cancel_invitation(
    db: AsyncSession,
    organization_id: str,
    invitation_id: str,
    cancelled_by: str,
    request: Optional[Request] = None
) -> Invitation:
    invitation = await get_invitation(db, organization_id, invitation_id)
    if invitation.status != InvitationStatus.PENDING:
        raise BadRequestError("Can only cancel pending invitations")

    invitation.status = InvitationStatus.CANCELLED
    await db.commit()
    await db.refresh(invitation)

    await log_audit(
        db,
        user_id=cancelled_by,
        action=AuditAction.INVITATION_CANCELLED,
        resource=RESOURCE,
        resource_id=invitation.id,
        organization_id=organization_id,
        details={"email": invitation.email},
        request=request
    )
    return invitation


async def resend_invitation(db: AsyncSession, organization_id: str, invitation_id: str) -> Invitation:
    """Issue a fresh token and expiry. The previous token stops working."""
    invitation = await get_invitation(db, organization_id, invitation_id)
    if invitation.status != InvitationStatus.PENDING:
        raise BadRequestError("Can only resend pending invitations")

    invitation.token = generate_token()
    invitation.expires_at = default_expiry()
    await db.commit()
    await db.refresh(invitation)
    return invitation
