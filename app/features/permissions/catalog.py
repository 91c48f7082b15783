"""
Organization-scoped permission vocabulary.

Two models coexist here:
- the legacy coarse ``Permission`` set, fixed per static org role
- the module/action grants used by custom roles, with a hardcoded fallback
  table per static org role for memberships without a custom role
"""
import enum


class OrgRole(str, enum.Enum):
    """Static role of a membership within an organization."""
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class ModuleType(str, enum.Enum):
    """Business modules that module/action grants refer to."""
    USER = "USER"
    FINANCE = "FINANCE"
    CRM = "CRM"
    AUDIT = "AUDIT"
    SUBSCRIPTION = "SUBSCRIPTION"
    ORGANIZATION = "ORGANIZATION"
    ROLE = "ROLE"


class ActionType(str, enum.Enum):
    """Actions a grant may carry. MANAGE means every action on the module."""
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    MANAGE = "MANAGE"


class Permission(str, enum.Enum):
    """Legacy coarse organization permissions."""
    ORG_MANAGE = "ORG_MANAGE"
    ORG_VIEW = "ORG_VIEW"

    USER_INVITE = "USER_INVITE"
    USER_REMOVE = "USER_REMOVE"
    USER_VIEW = "USER_VIEW"

    CRM_READ = "CRM_READ"
    CRM_WRITE = "CRM_WRITE"

    FINANCE_READ = "FINANCE_READ"
    FINANCE_WRITE = "FINANCE_WRITE"

    SUBSCRIPTION_VIEW = "SUBSCRIPTION_VIEW"
    SUBSCRIPTION_MANAGE = "SUBSCRIPTION_MANAGE"

    AUDIT_READ = "AUDIT_READ"


ROLE_PERMISSIONS: dict[OrgRole, frozenset[Permission]] = {
    OrgRole.OWNER: frozenset(Permission),
    OrgRole.ADMIN: frozenset({
        Permission.ORG_VIEW,
        Permission.USER_INVITE,
        Permission.USER_VIEW,
        Permission.CRM_READ,
        Permission.CRM_WRITE,
        Permission.FINANCE_READ,
        Permission.FINANCE_WRITE,
        Permission.SUBSCRIPTION_VIEW,
        Permission.AUDIT_READ,
    }),
    OrgRole.MEMBER: frozenset({
        Permission.ORG_VIEW,
        Permission.USER_VIEW,
        Permission.CRM_READ,
        Permission.FINANCE_READ,
        Permission.SUBSCRIPTION_VIEW,
    }),
}

CRUD_ACTIONS: tuple[ActionType, ...] = (
    ActionType.CREATE,
    ActionType.READ,
    ActionType.UPDATE,
    ActionType.DELETE,
)

# Owners get the concrete CRUD actions on every module, never the MANAGE wildcard.
DEFAULT_MODULE_PERMISSIONS: dict[OrgRole, list[dict]] = {
    OrgRole.OWNER: [
        {"module": module, "actions": list(CRUD_ACTIONS)}
        for module in ModuleType
    ],
    OrgRole.ADMIN: [
        {"module": ModuleType.USER, "actions": [ActionType.CREATE, ActionType.READ, ActionType.UPDATE]},
        {"module": ModuleType.CRM, "actions": list(CRUD_ACTIONS)},
        {"module": ModuleType.FINANCE, "actions": list(CRUD_ACTIONS)},
        {"module": ModuleType.AUDIT, "actions": [ActionType.READ]},
        {"module": ModuleType.SUBSCRIPTION, "actions": [ActionType.READ]},
        {"module": ModuleType.ORGANIZATION, "actions": [ActionType.READ]},
        {"module": ModuleType.ROLE, "actions": [ActionType.READ]},
    ],
    OrgRole.MEMBER: [
        {"module": ModuleType.USER, "actions": [ActionType.READ]},
        {"module": ModuleType.CRM, "actions": [ActionType.CREATE, ActionType.READ, ActionType.UPDATE]},
        {"module": ModuleType.FINANCE, "actions": [ActionType.READ]},
        {"module": ModuleType.SUBSCRIPTION, "actions": [ActionType.READ]},
        {"module": ModuleType.ORGANIZATION, "actions": [ActionType.READ]},
    ],
}


def legacy_permissions_for(role: OrgRole) -> frozenset[Permission]:
    """Coarse permission set for a static org role."""
    return ROLE_PERMISSIONS.get(OrgRole(role), frozenset())


def default_module_permissions_for(role: OrgRole) -> list[dict]:
    """Copy of the fallback module/action grants for a static org role."""
    return [
        {"module": grant["module"], "actions": list(grant["actions"])}
        for grant in DEFAULT_MODULE_PERMISSIONS.get(OrgRole(role), [])
    ]
