"""
Organization membership resolution and permission enforcement.

Implements:
- Membership loading for the organization named on the request
- Resolution of the legacy coarse permission set and the module/action grants
- FastAPI dependencies guarding routes on permissions, module actions and roles

Every enforcement dependency depends on load_membership, so the membership is
resolved once per request and always before the check runs.
"""
from dataclasses import dataclass, field
from typing import Annotated, List, Optional
from fastapi import Depends, Request
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import ForbiddenError, NotFoundError
from app.features.organizations.models import Membership, Organization
from app.features.permissions.catalog import (
    ActionType,
    ModuleType,
    OrgRole,
    Permission,
    default_module_permissions_for,
    legacy_permissions_for,
)
from app.features.permissions.models import OrganizationRole
from app.features.permissions.schemas import ModulePermission
from app.features.users.auth import Principal
from app.features.users.dependencies import get_current_principal
from app.utils import get_logger


log = get_logger(__name__)

ORGANIZATION_ID_HEADER = "X-Organization-Id"


@dataclass
class MembershipContext:
    """Authorization context attached to a request that names an organization."""
    membership_id: str
    organization_id: str
    user_id: str
    role: OrgRole
    custom_role_id: Optional[str] = None
    permissions: frozenset = field(default_factory=frozenset)
    module_permissions: List[ModulePermission] = field(default_factory=list)

    @property
    def is_owner(self) -> bool:
        return self.role == OrgRole.OWNER

    def actions_for(self, module: ModuleType) -> set:
        """Union of actions across every grant naming the module."""
        actions: set = set()
        for grant in self.module_permissions:
            if grant.module == module:
                actions.update(grant.actions)
        return actions


# ============================================================================
# Resolution
# ============================================================================

def _parse_grants(raw_grants: list) -> List[ModulePermission]:
    grants = []
    for raw in raw_grants or []:
        try:
            grants.append(ModulePermission.model_validate(raw))
        except ValidationError:
            log.warning("Skipping malformed module grant %r", raw)
    return grants


async def resolve_module_permissions(
    db: AsyncSession,
    membership: Membership
) -> List[ModulePermission]:
    """
    Module/action grants in effect for a membership.

    A custom role replaces the static role's fallback table. A custom role that
    no longer exists (or belongs to another organization) falls back to the
    static role instead of failing the request.
    """
    if membership.custom_role_id:
        custom_role = await db.get(OrganizationRole, membership.custom_role_id)
        if custom_role is not None and custom_role.organization_id == membership.organization_id:
            return _parse_grants(custom_role.permissions)
        log.warning(
            "Membership %s references missing custom role %s, using %s defaults",
            membership.id, membership.custom_role_id, membership.role
        )

    return _parse_grants(default_module_permissions_for(membership.role))


async def build_membership_context(
    db: AsyncSession,
    user_id: str,
    organization_id: str
) -> MembershipContext:
    """
    Resolve the caller's membership in an organization.

    Raises:
        NotFoundError: organization does not exist
        ForbiddenError: user is not a member of the organization
    """
    organization = await db.scalar(select(Organization.id).where(Organization.id == organization_id))
    if organization is None:
        raise NotFoundError("Organization not found")

    membership = await db.scalar(
        select(Membership).where(
            Membership.user_id == user_id,
            Membership.organization_id == organization_id
        )
    )
    if membership is None:
        raise ForbiddenError("You are not a member of this organization")

    role = OrgRole(membership.role)
    return MembershipContext(
        membership_id=membership.id,
        organization_id=organization_id,
        user_id=user_id,
        role=role,
        custom_role_id=membership.custom_role_id,
        permissions=legacy_permissions_for(role),
        module_permissions=await resolve_module_permissions(db, membership),
    )


def resolve_organization_id(request: Request) -> Optional[str]:
    """Organization named by the request path, query string or header, if any."""
    return (
        request.path_params.get("organization_id")
        or request.query_params.get("organization_id")
        or request.query_params.get("organizationId")
        or request.headers.get(ORGANIZATION_ID_HEADER)
    )


async def load_membership(
    request: Request,
    principal: Annotated[Principal, Depends(get_current_principal)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Optional[MembershipContext]:
    """
    Load the caller's membership for the organization named on the request.

    Returns None when the request names no organization at all; global actions
    such as creating a first organization proceed without one.
    """
    organization_id = resolve_organization_id(request)
    if not organization_id:
        return None

    context = await build_membership_context(db, principal.user_id, organization_id)
    request.state.membership = context
    return context


# ============================================================================
# Checks
# ============================================================================

def ensure_context(context: Optional[MembershipContext]) -> MembershipContext:
    """A missing context is a route wiring error, never an implicit allow."""
    if context is None:
        raise ForbiddenError("Membership context required")
    return context


def check_permission(context: Optional[MembershipContext], *permissions: Permission) -> MembershipContext:
    """Require every given legacy permission. Owners always pass."""
    context = ensure_context(context)
    if context.is_owner:
        return context
    if not all(Permission(p) in context.permissions for p in permissions):
        log.debug("Membership %s lacks %s", context.membership_id, permissions)
        raise ForbiddenError("Insufficient permissions")
    return context


def check_any_permission(context: Optional[MembershipContext], *permissions: Permission) -> MembershipContext:
    """Require at least one of the given legacy permissions. Owners always pass."""
    context = ensure_context(context)
    if context.is_owner:
        return context
    if not any(Permission(p) in context.permissions for p in permissions):
        raise ForbiddenError("Insufficient permissions")
    return context


def check_module_permission(
    context: Optional[MembershipContext],
    module: ModuleType,
    action: ActionType
) -> MembershipContext:
    """Require an action on a module, either granted directly or via MANAGE. Owners always pass."""
    context = ensure_context(context)
    if context.is_owner:
        return context

    module = ModuleType(module)
    actions = context.actions_for(module)
    if ActionType(action) in actions or ActionType.MANAGE in actions:
        return context

    log.debug("Membership %s denied %s on %s", context.membership_id, action, module)
    raise ForbiddenError(f"You do not have permission to {ActionType(action).value} in the {module.value} module")


def check_org_role(context: Optional[MembershipContext], *roles: OrgRole) -> MembershipContext:
    """Require the membership's static role to be one of the given roles."""
    context = ensure_context(context)
    if context.role not in roles:
        raise ForbiddenError("Insufficient role permissions")
    return context


# ============================================================================
# FastAPI Dependencies
# ============================================================================

def require_membership():
    """
    Dependency requiring a resolved membership, without any permission check.

    Usage:
        @router.get("/{organization_id}")
        async def get_org(membership: MembershipContext = Depends(require_membership())):
            ...
    """
    async def membership_dependency(
        context: Annotated[Optional[MembershipContext], Depends(load_membership)]
    ) -> MembershipContext:
        return ensure_context(context)

    return membership_dependency


def require_permission(*permissions: Permission):
    """
    Dependency requiring every given legacy permission.

    Usage:
        @router.get("/{organization_id}/members")
        async def list_members(
            membership: MembershipContext = Depends(require_permission(Permission.USER_VIEW))
        ):
            ...
    """
    async def permission_dependency(
        context: Annotated[Optional[MembershipContext], Depends(load_membership)]
    ) -> MembershipContext:
        return check_permission(context, *permissions)

    return permission_dependency


def require_any_permission(*permissions: Permission):
    """Dependency requiring at least one of the given legacy permissions."""
    async def permission_dependency(
        context: Annotated[Optional[MembershipContext], Depends(load_membership)]
    ) -> MembershipContext:
        return check_any_permission(context, *permissions)

    return permission_dependency


def require_module_permission(module: ModuleType, action: ActionType):
    """
    Dependency requiring an action on a module.

    Usage:
        @router.post("/{organization_id}/leads")
        async def create_lead(
            membership: MembershipContext = Depends(require_module_permission(ModuleType.CRM, ActionType.CREATE))
        ):
            ...
    """
    async def module_permission_dependency(
        context: Annotated[Optional[MembershipContext], Depends(load_membership)]
    ) -> MembershipContext:
        return check_module_permission(context, module, action)

    return module_permission_dependency


def require_org_role(*roles: OrgRole):
    """Dependency requiring one of the given static org roles."""
    async def org_role_dependency(
        context: Annotated[Optional[MembershipContext], Depends(load_membership)]
    ) -> MembershipContext:
        return check_org_role(context, *roles)

    return org_role_dependency


require_owner = require_org_role(OrgRole.OWNER)
require_admin = require_org_role(OrgRole.OWNER, OrgRole.ADMIN)
