"""
Organization and membership operations.

Invariant kept here: once an organization exists exactly one of its
memberships has role OWNER, and organization.owner_id points at that user.
"""
import re
from typing import Optional
from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import generate_ulid
from app.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from app.core.pagination import paginate
from app.features.audit.models import AuditAction
from app.features.audit.service import log_audit
from app.features.organizations.models import Membership, Organization, OrgStatus
from app.features.permissions.catalog import OrgRole
from app.features.plans.models import Plan
from app.features.plans.service import get_plan
from app.features.subscriptions.models import SubscriptionCreatedBy
from app.features.subscriptions.service import create_subscription
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

DEFAULT_PLAN_NAME = "FREE"


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "org"


async def _unique_slug(db: AsyncSession, name: str) -> str:
    base = slugify(name)[:200]
    if await db.scalar(select(Organization.id).where(Organization.slug == base)) is None:
        return base
    return f"{base}-{generate_ulid()[-6:].lower()}"


# ============================================================================
# Organizations
# ============================================================================

async def get_organization(db: AsyncSession, organization_id: str) -> Organization:
    organization = await db.get(Organization, organization_id)
    if organization is None:
        raise NotFoundError("Organization not found")
    return organization


async def create_organization(
    db: AsyncSession,
    owner_id: str,
    name: str,
    description: Optional[str] = None,
    plan_id: Optional[str] = None,
    request: Optional[Request] = None
) -> Organization:
    """
    Create an organization owned by owner_id and start its subscription.

    The subscription goes on plan_id, or the active FREE plan when omitted.

    Raises:
        NotFoundError: plan_id does not exist
        BadRequestError: no plan given and no FREE plan is configured
    """
    if plan_id:
        plan = await get_plan(db, plan_id)
    else:
        plan = await db.scalar(select(Plan).where(Plan.name == DEFAULT_PLAN_NAME, Plan.is_active.is_(True)))
        if plan is None:
            raise BadRequestError(f"Default plan {DEFAULT_PLAN_NAME} is not configured")

    organization = Organization(
        name=name,
        slug=await _unique_slug(db, name),
        description=description,
        owner_id=owner_id,
        status=OrgStatus.ACTIVE,
    )
    db.add(organization)
    await db.flush()
    db.add(Membership(user_id=owner_id, organization_id=organization.id, role=OrgRole.OWNER))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Organization with this slug already exists")
    await db.refresh(organization)

    await log_audit(
        db,
        user_id=owner_id,
        action=AuditAction.ORG_CREATED,
        resource="Organization",
        resource_id=organization.id,
        organization_id=organization.id,
        details={"name": organization.name},
        request=request
    )

    await create_subscription(
        db,
        organization.id,
        plan.id,
        changed_by=owner_id,
        created_by=SubscriptionCreatedBy.SELF_SERVE,
        reason="Organization created",
        request=request
    )
    log.info("Created organization %s owned by %s", organization.id, owner_id)
    return organization


async def list_user_organizations(db: AsyncSession, user_id: str) -> list[tuple[Organization, OrgRole]]:
    result = await db.execute(
        select(Organization, Membership.role)
        .join(Membership, Membership.organization_id == Organization.id)
        .where(Membership.user_id == user_id)
        .order_by(Organization.name)
    )
    return [(org, role) for org, role in result.all()]


async def list_organizations(
    db: AsyncSession,
    page: int = 1,
    limit: int = 50,
    search: Optional[str] = None,
    status: Optional[OrgStatus] = None
) -> tuple[list[Organization], int]:
    stmt = select(Organization)
    if search:
        stmt = stmt.where(Organization.name.ilike(f"%{search}%"))
    if status:
        stmt = stmt.where(Organization.status == status)
    stmt = stmt.order_by(Organization.created_at.desc(), Organization.id.desc())
    return await paginate(db, stmt, page, limit)


async def update_organization(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    changes: dict,
    request: Optional[Request] = None
) -> Organization:
    organization = await get_organization(db, organization_id)
    for field, value in changes.items():
        setattr(organization, field, value)
    await db.commit()
    await db.refresh(organization)

    await log_audit(
        db,
        user_id=user_id,
        action=AuditAction.ORG_UPDATED,
        resource="Organization",
        resource_id=organization.id,
        organization_id=organization.id,
        details={"changes": changes},
        request=request
    )
    return organization


async def change_organization_status(
    db: AsyncSession,
    organization_id: str,
    status: OrgStatus,
    user_id: str,
    request: Optional[Request] = None
) -> Organization:
    """Suspend or reactivate an organization. Deletion is a suspension."""
    organization = await get_organization(db, organization_id)
    old_status = organization.status
    organization.status = status
    organization.is_active = status == OrgStatus.ACTIVE
    await db.commit()
    await db.refresh(organization)

    await log_audit(
        db,
        user_id=user_id,
        action=AuditAction.ORG_ACTIVATED if status == OrgStatus.ACTIVE else AuditAction.ORG_SUSPENDED,
        resource="Organization",
        resource_id=organization.id,
        organization_id=organization.id,
        details={"oldStatus": old_status.value, "newStatus": status.value},
        request=request
    )
    return organization


async def delete_organization(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    request: Optional[Request] = None
) -> None:
    """Soft delete: the organization is suspended and its rows are kept."""
    organization = await get_organization(db, organization_id)
    organization.status = OrgStatus.SUSPENDED
    organization.is_active = False
    await db.commit()

    await log_audit(
        db,
        user_id=user_id,
        action=AuditAction.ORG_DELETED,
        resource="Organization",
        resource_id=organization_id,
        organization_id=organization_id,
        request=request
    )
    log.info("Organization %s deleted by %s", organization_id, user_id)


# ============================================================================
# Memberships
# ============================================================================

async def get_membership(db: AsyncSession, organization_id: str, membership_id: str) -> Membership:
    """Membership by id, scoped to the organization so ids cannot cross tenants."""
    membership = await db.scalar(
        select(Membership).where(
            Membership.id == membership_id,
            Membership.organization_id == organization_id
        )
    )
    if membership is None:
        raise NotFoundError("Membership not found")
    return membership


async def get_user_membership(db: AsyncSession, organization_id: str, user_id: str) -> Optional[Membership]:
    return await db.scalar(
        select(Membership).where(
            Membership.user_id == user_id,
            Membership.organization_id == organization_id
        )
    )


async def list_members(
    db: AsyncSession,
    organization_id: str,
    page: int = 1,
    limit: int = 50
) -> tuple[list[Membership], int]:
    stmt = (
        select(Membership)
        .where(Membership.organization_id == organization_id)
        .order_by(Membership.joined_at, Membership.id)
    )
    return await paginate(db, stmt, page, limit)


async def count_members(db: AsyncSession, organization_id: str) -> int:
    return await db.scalar(
        select(func.count()).select_from(Membership).where(Membership.organization_id == organization_id)
    ) or 0


async def add_member(
    db: AsyncSession,
    organization_id: str,
    email: str,
    role: OrgRole,
    added_by: str,
    request: Optional[Request] = None
) -> Membership:
    """
    Add an existing user to the organization.

    Raises:
        BadRequestError: role is OWNER
        NotFoundError: no user with that email
        ConflictError: user is already a member
    """
    if role == OrgRole.OWNER:
        raise BadRequestError("Cannot add a member as owner")

    user = await db.scalar(select(User).where(func.lower(User.email) == email.lower()))
    if user is None:
        raise NotFoundError("User not found")
    if await get_user_membership(db, organization_id, user.id) is not None:
        raise ConflictError("User is already a member of this organization")

    membership = Membership(user_id=user.id, organization_id=organization_id, role=role)
    db.add(membership)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("User is already a member of this organization")
    await db.refresh(membership)

    await log_audit(
        db,
        user_id=added_by,
        action=AuditAction.USER_INVITED,
        resource="Membership",
        resource_id=membership.id,
        organization_id=organization_id,
        details={"targetUserId": user.id, "role": role.value},
        request=request
    )
    return membership


async def change_member_role(
    db: AsyncSession,
    organization_id: str,
    membership_id: str,
    new_role: OrgRole,
    changed_by: str,
    request: Optional[Request] = None
) -> Membership:
    """
    Change a member's static role. Ownership only moves through transfer_ownership.

    Raises:
        NotFoundError: membership not in this organization
        BadRequestError: target is the owner, or new_role is OWNER
    """
    membership = await get_membership(db, organization_id, membership_id)
    if membership.role == OrgRole.OWNER:
        raise BadRequestError("Cannot change owner role")
    if new_role == OrgRole.OWNER:
        raise BadRequestError("Cannot promote to owner")

    old_role = membership.role
    membership.role = new_role
    await db.commit()
    await db.refresh(membership)

    await log_audit(
        db,
        user_id=changed_by,
        action=AuditAction.ROLE_CHANGED,
        resource="Membership",
        resource_id=membership.id,
        organization_id=organization_id,
        details={"targetUserId": membership.user_id, "oldRole": old_role.value, "newRole": new_role.value},
        request=request
    )
    return membership


async def remove_member(
    db: AsyncSession,
    organization_id: str,
    membership_id: str,
    removed_by: str,
    request: Optional[Request] = None
) -> None:
    """
    Raises:
        NotFoundError: membership not in this organization
        BadRequestError: target is the owner
    """
    membership = await get_membership(db, organization_id, membership_id)
    if membership.role == OrgRole.OWNER:
        raise BadRequestError("Cannot remove organization owner")

    removed_user_id, role = membership.user_id, membership.role
    await db.delete(membership)
    await db.commit()

    await log_audit(
        db,
        user_id=removed_by,
        action=AuditAction.MEMBER_REMOVED,
        resource="Membership",
        resource_id=membership_id,
        organization_id=organization_id,
        details={"removedUserId": removed_user_id, "role": role.value},
        request=request
    )


async def leave_organization(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    request: Optional[Request] = None
) -> None:
    """The owner cannot leave; ownership has to be transferred first."""
    membership = await get_user_membership(db, organization_id, user_id)
    if membership is None:
        raise NotFoundError("Membership not found")
    if membership.role == OrgRole.OWNER:
        raise BadRequestError("Owner cannot leave organization. Transfer ownership first.")

    membership_id = membership.id
    await db.delete(membership)
    await db.commit()

    await log_audit(
        db,
        user_id=user_id,
        action=AuditAction.MEMBER_REMOVED,
        resource="Membership",
        resource_id=membership_id,
        organization_id=organization_id,
        details={"leftVoluntarily": True},
        request=request
    )


async def transfer_ownership(
    db: AsyncSession,
    organization_id: str,
    current_owner_id: str,
    new_owner_id: str,
    request: Optional[Request] = None
) -> Organization:
    """
    Hand the organization to another member in one commit.

    The outgoing owner becomes ADMIN and the incoming member becomes OWNER;
    both role changes and owner_id land together or not at all.

    Raises:
        ForbiddenError: caller is not the owner
        BadRequestError: new owner is not a member, or already the owner
    """
    organization = await get_organization(db, organization_id)
    current = await get_user_membership(db, organization_id, current_owner_id)
    if organization.owner_id != current_owner_id or current is None or current.role != OrgRole.OWNER:
        raise ForbiddenError("Only the owner can transfer ownership")
    if new_owner_id == current_owner_id:
        raise BadRequestError("User is already the owner")

    incoming = await get_user_membership(db, organization_id, new_owner_id)
    if incoming is None:
        raise BadRequestError("New owner must be a member of the organization")

    current.role = OrgRole.ADMIN
    incoming.role = OrgRole.OWNER
    organization.owner_id = new_owner_id
    await db.commit()
    await db.refresh(organization)

    await log_audit(
        db,
        user_id=current_owner_id,
        action=AuditAction.ROLE_CHANGED,
        resource="Organization",
        resource_id=organization_id,
        organization_id=organization_id,
        details={"previousOwner": current_owner_id, "newOwner": new_owner_id, "type": "OWNERSHIP_TRANSFER"},
        request=request
    )
    log.info("Ownership of %s transferred from %s to %s", organization_id, current_owner_id, new_owner_id)
    return organization
