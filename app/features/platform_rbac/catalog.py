"""
Platform permission catalog.

Identifiers are referenced by persisted role-permission links: never rename or
remove one, only append.
"""
import enum


class PlatformPermissionKey(str, enum.Enum):
    """Atomic capabilities of the platform admin panel."""
    # Organizations
    ORG_VIEW = "ORG_VIEW"
    ORG_CREATE = "ORG_CREATE"
    ORG_EDIT = "ORG_EDIT"
    ORG_SUSPEND = "ORG_SUSPEND"
    ORG_DELETE = "ORG_DELETE"

    # Plans
    PLAN_VIEW = "PLAN_VIEW"
    PLAN_CREATE = "PLAN_CREATE"
    PLAN_CHANGE = "PLAN_CHANGE"

    SUBSCRIPTION_VIEW = "SUBSCRIPTION_VIEW"
    ANALYTICS_VIEW = "ANALYTICS_VIEW"
    AUDIT_VIEW = "AUDIT_VIEW"

    # Admin users
    ADMIN_VIEW = "ADMIN_VIEW"
    ADMIN_INVITE = "ADMIN_INVITE"
    ADMIN_EDIT = "ADMIN_EDIT"
    ADMIN_SUSPEND = "ADMIN_SUSPEND"

    # Designations (platform roles)
    DESIGNATION_VIEW = "DESIGNATION_VIEW"
    DESIGNATION_CREATE = "DESIGNATION_CREATE"
    DESIGNATION_EDIT = "DESIGNATION_EDIT"
    DESIGNATION_ARCHIVE = "DESIGNATION_ARCHIVE"


ALL_PLATFORM_PERMISSIONS: list[str] = [p.value for p in PlatformPermissionKey]

# Display grouping only, carries no authorization meaning
PERMISSION_MODULE_MAP: dict[str, str] = {
    p.value: p.value.split("_", 1)[0] for p in PlatformPermissionKey
}

SYSTEM_PLATFORM_ROLES: list[dict] = [
    {
        "name": "SUPER_ADMIN",
        "description": "Full access to the admin panel",
        "permissions": ALL_PLATFORM_PERMISSIONS,
    },
    {
        "name": "SUPPORT_ADMIN",
        "description": "Read access to organizations, audit logs and admin users",
        "permissions": [
            PlatformPermissionKey.ORG_VIEW.value,
            PlatformPermissionKey.AUDIT_VIEW.value,
            PlatformPermissionKey.ADMIN_VIEW.value,
        ],
    },
    {
        "name": "FINANCE_ADMIN",
        "description": "Read access to analytics, subscriptions and plans",
        "permissions": [
            PlatformPermissionKey.ANALYTICS_VIEW.value,
            PlatformPermissionKey.SUBSCRIPTION_VIEW.value,
            PlatformPermissionKey.PLAN_VIEW.value,
        ],
    },
]


def module_for(permission: str) -> str | None:
    """Display module of a permission identifier, None if it is not in the catalog."""
    return PERMISSION_MODULE_MAP.get(permission)
