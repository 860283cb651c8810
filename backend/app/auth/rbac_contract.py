"""
RBAC Contract - permission catalog and default staff roles.

This module defines the permissions a staff role may hold and the four
default roles every server is provisioned with. Roles are data (they live in
``staff_roles`` and can be edited per server), so this contract only fixes:
- the set of explicit permissions (no wildcards)
- the shape of dynamic punishment permissions
- the default role ladder and the reserved root role name
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Final, Literal

from .role_hierarchy import SUPER_ADMIN_ROLE


# ============================================================================
# ACTOR TYPES
# ============================================================================

class ActorType(str, Enum):
    """
    Actor types represent WHO is performing an action.

    USER is a staff member acting through the panel, SYSTEM is a game server
    or background job acting with an API key, ANONYMOUS is unauthenticated.
    """
    USER = "user"
    SYSTEM = "system"
    ANONYMOUS = "anonymous"


ActorTypeValue = Literal["user", "system", "anonymous"]

ALLOWED_ACTOR_TYPES: Final[frozenset[str]] = frozenset({"user", "system", "anonymous"})


# ============================================================================
# PERMISSIONS - EXPLICIT ONLY, NO WILDCARDS
# ============================================================================

ADMIN_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "admin.settings.view",
    "admin.settings.modify",
    "admin.staff.manage",
    "admin.analytics.view",
    "admin.audit.view",
})

PUNISHMENT_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "punishment.modify",
})

TICKET_PERMISSIONS: Final[frozenset[str]] = frozenset({
    "ticket.view.all",
    "ticket.reply.all",
    "ticket.close.all",
    "ticket.delete.all",
})

ALLOWED_PERMISSIONS: Final[frozenset[str]] = (
    ADMIN_PERMISSIONS | PUNISHMENT_PERMISSIONS | TICKET_PERMISSIONS
)

PERMISSION_CATEGORIES: Final[dict[str, str]] = {
    "punishment": "Punishment Permissions",
    "ticket": "Ticket Permissions",
    "admin": "Administrative Permissions",
}

# id -> (display name, description); category is the id prefix
PERMISSION_DESCRIPTIONS: Final[dict[str, tuple[str, str]]] = {
    "admin.settings.view": ("View Settings", "View all system settings"),
    "admin.settings.modify": (
        "Modify Settings",
        "Modify system settings (excluding account settings)",
    ),
    "admin.staff.manage": ("Manage Staff", "Invite, remove, and modify staff members"),
    "admin.analytics.view": ("View Analytics", "Access system analytics and reports"),
    "admin.audit.view": ("View Audit Logs", "Access the staff audit trail"),
    "punishment.modify": (
        "Modify Punishments",
        "Pardon, modify duration, and edit existing punishments",
    ),
    "ticket.view.all": ("View All Tickets", "View all tickets regardless of type"),
    "ticket.reply.all": ("Reply to All Tickets", "Reply to all ticket types"),
    "ticket.close.all": ("Close/Reopen All Tickets", "Close and reopen all ticket types"),
    "ticket.delete.all": ("Delete Tickets", "Delete tickets from the system"),
}

# One permission per configured punishment type, e.g. punishment.apply.chat-abuse
PUNISHMENT_APPLY_PREFIX: Final[str] = "punishment.apply."
_PUNISHMENT_APPLY_PATTERN = re.compile(r"^punishment\.apply\.[a-z0-9]+(?:-[a-z0-9]+)*$")

# Punishment types moderators are never granted by default
SEVERE_PUNISHMENT_MARKERS: Final[tuple[str, ...]] = ("blacklist", "security-ban")


def punishment_permission_id(punishment_type_name: str) -> str:
    """Derive the apply permission for a punishment type name."""
    slug = re.sub(r"\s+", "-", punishment_type_name.strip().lower())
    return f"{PUNISHMENT_APPLY_PREFIX}{slug}"


def is_punishment_apply_permission(permission: str) -> bool:
    return bool(_PUNISHMENT_APPLY_PATTERN.match(permission))


def permission_category(permission: str) -> str:
    return permission.split(".", 1)[0]


# ============================================================================
# VALIDATION
# ============================================================================

def validate_actor_type(actor_type: str) -> None:
    """
    Validate that actor_type is one of the allowed values.

    Args:
        actor_type: The actor type to validate

    Raises:
        ValueError: If actor_type is not allowed
    """
    if actor_type not in ALLOWED_ACTOR_TYPES:
        raise ValueError(
            f"Invalid actor_type '{actor_type}'. "
            f"Must be one of: {', '.join(sorted(ALLOWED_ACTOR_TYPES))}"
        )


def validate_permission(permission: str) -> None:
    """
    Validate that a permission is explicitly allowed.

    Wildcards are never allowed. Punishment apply permissions are accepted
    when they match the slug shape produced by ``punishment_permission_id``.

    Raises:
        ValueError: If permission contains wildcards or is not allowed
    """
    if permission.endswith("*"):
        raise ValueError(
            f"Wildcard permission '{permission}' is not allowed. "
            "All permissions must be explicit."
        )

    if permission in ALLOWED_PERMISSIONS or is_punishment_apply_permission(permission):
        return

    raise ValueError(f"Invalid permission '{permission}'")


def validate_permissions(permissions: list[str]) -> list[str]:
    """Validate a permission list and return it de-duplicated in input order."""
    seen: dict[str, None] = {}
    for permission in permissions:
        validate_permission(permission)
        seen.setdefault(permission, None)
    return list(seen)


# ============================================================================
# DEFAULT ROLES (for provisioning only)
# ============================================================================

# Runtime checks read the server's staff_roles table through the hierarchy
# cache, never this list.
DEFAULT_ROLES: Final[tuple[dict[str, object], ...]] = (
    {
        "slug": "super-admin",
        "name": SUPER_ADMIN_ROLE,
        "description": "Full access to all features and settings",
        "order": 0,
        "permissions": (
            "admin.settings.view",
            "admin.settings.modify",
            "admin.staff.manage",
            "admin.analytics.view",
            "punishment.modify",
            "ticket.view.all",
            "ticket.reply.all",
            "ticket.close.all",
            "ticket.delete.all",
        ),
    },
    {
        "slug": "admin",
        "name": "Admin",
        "description": "Administrative access with some restrictions",
        "order": 1,
        "permissions": (
            "admin.settings.view",
            "admin.staff.manage",
            "admin.analytics.view",
            "punishment.modify",
            "ticket.view.all",
            "ticket.reply.all",
            "ticket.close.all",
        ),
    },
    {
        "slug": "moderator",
        "name": "Moderator",
        "description": "Moderation permissions for punishments and tickets",
        "order": 2,
        "permissions": (
            "punishment.modify",
            "ticket.view.all",
            "ticket.reply.all",
            "ticket.close.all",
        ),
    },
    {
        "slug": "helper",
        "name": "Helper",
        "description": "Basic support permissions",
        "order": 3,
        "permissions": (
            "ticket.view.all",
            "ticket.reply.all",
        ),
    },
)


def default_role_permissions(role_name: str, punishment_permissions: list[str]) -> list[str]:
    """Permissions a default role is provisioned with, punishment types included."""
    for role in DEFAULT_ROLES:
        if role["name"] != role_name:
            continue
        base = list(role["permissions"])  # type: ignore[arg-type]
        if role_name in {SUPER_ADMIN_ROLE, "Admin"}:
            return base + list(punishment_permissions)
        if role_name == "Moderator":
            return base + [
                permission
                for permission in punishment_permissions
                if not any(marker in permission for marker in SEVERE_PUNISHMENT_MARKERS)
            ]
        return base
    return []


def _validate_contract() -> None:
    """Validate the default roles at module import time."""
    errors = []
    names = [role["name"] for role in DEFAULT_ROLES]
    if names.count(SUPER_ADMIN_ROLE) != 1:
        errors.append(f"Exactly one default role must be named '{SUPER_ADMIN_ROLE}'")

    if set(PERMISSION_DESCRIPTIONS) != ALLOWED_PERMISSIONS:
        errors.append("Every allowed permission needs exactly one description")

    orders = [role["order"] for role in DEFAULT_ROLES]
    if len(set(orders)) != len(orders):
        errors.append("Default role orders must be unique")

    for role in DEFAULT_ROLES:
        for permission in role["permissions"]:  # type: ignore[union-attr]
            try:
                validate_permission(permission)
            except ValueError as e:
                errors.append(f"Role '{role['name']}' has invalid permission: {e}")

    if errors:
        raise RuntimeError(
            "RBAC Contract validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )


_validate_contract()
