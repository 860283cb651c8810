"""
Role hierarchy - ordinal authority model shared by every API surface.

Roles are ranked by an integer ``order`` where a LOWER value means MORE
authority. The "Super Admin" role is the single immutable root role of a
server: it can never be modified or removed through the policy gate.

All functions here are pure and synchronous. Policy functions never raise:
an unknown role name is treated as "no authority" and every decision that
depends on it is a denial.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Final


SUPER_ADMIN_ROLE: Final[str] = "Super Admin"

# Order given to roles without one, and reported for unknown roles
DEFAULT_ROLE_ORDER: Final[int] = 999


@dataclass(frozen=True)
class RoleHierarchyInfo:
    name: str
    order: int
    permissions: frozenset[str] = field(default_factory=frozenset)


RoleHierarchy = dict[str, RoleHierarchyInfo]


@dataclass(frozen=True)
class ReorderDecision:
    can_reorder: bool
    invalid_roles: tuple[str, ...] = ()


def _record_value(record: Mapping[str, Any] | object, key: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(key)
    return getattr(record, key, None)


def build_role_hierarchy(roles: Iterable[Mapping[str, Any] | object]) -> RoleHierarchy:
    """Build a hierarchy table from role records.

    Records may be mappings or objects exposing ``name``, ``order`` and
    ``permissions``. A missing order falls back to ``DEFAULT_ROLE_ORDER`` and
    missing permissions to an empty set. Later records with the same name win.
    """
    hierarchy: RoleHierarchy = {}
    for role in roles:
        name = _record_value(role, "name")
        if not isinstance(name, str) or not name:
            continue
        order = _record_value(role, "order")
        permissions = _record_value(role, "permissions") or ()
        hierarchy[name] = RoleHierarchyInfo(
            name=name,
            order=DEFAULT_ROLE_ORDER if order is None else int(order),
            permissions=frozenset(permissions),
        )
    return hierarchy


# ============================================================================
# AUTHORITY COMPARATOR
# ============================================================================

def has_higher_or_equal_authority(
    role_a: str, role_b: str, hierarchy: Mapping[str, RoleHierarchyInfo]
) -> bool:
    """Return True if ``role_a`` outranks or equals ``role_b``."""
    info_a = hierarchy.get(role_a)
    info_b = hierarchy.get(role_b)
    if info_a is None or info_b is None:
        return False
    return info_a.order <= info_b.order


def has_higher_authority(
    role_a: str, role_b: str, hierarchy: Mapping[str, RoleHierarchyInfo]
) -> bool:
    """Return True if ``role_a`` strictly outranks ``role_b``."""
    info_a = hierarchy.get(role_a)
    info_b = hierarchy.get(role_b)
    if info_a is None or info_b is None:
        return False
    return info_a.order < info_b.order


def is_super_admin_role(role_name: str | None) -> bool:
    return role_name == SUPER_ADMIN_ROLE


def get_user_role_order(
    role_name: str, hierarchy: Mapping[str, RoleHierarchyInfo]
) -> int:
    info = hierarchy.get(role_name)
    return info.order if info is not None else DEFAULT_ROLE_ORDER


def has_permission(
    role_name: str, permission: str, hierarchy: Mapping[str, RoleHierarchyInfo]
) -> bool:
    info = hierarchy.get(role_name)
    if info is None:
        return False
    return permission in info.permissions


def get_user_permissions(
    role_name: str, hierarchy: Mapping[str, RoleHierarchyInfo]
) -> list[str]:
    info = hierarchy.get(role_name)
    return sorted(info.permissions) if info is not None else []


# ============================================================================
# POLICY GATE
# ============================================================================

def can_modify_role(
    actor_role: str,
    target_role: str,
    new_role: str,
    hierarchy: Mapping[str, RoleHierarchyInfo],
) -> bool:
    """Decide whether ``actor_role`` may change a member from ``target_role`` to ``new_role``.

    Denied when:
    - the target holds the root role
    - actor and target hold the same role
    - the new role is the root role and the actor is not root
    - the actor does not strictly outrank both the target and the new role
    """
    if is_super_admin_role(target_role):
        return False
    if actor_role == target_role:
        return False
    if is_super_admin_role(new_role) and not is_super_admin_role(actor_role):
        return False
    return has_higher_authority(actor_role, target_role, hierarchy) and has_higher_authority(
        actor_role, new_role, hierarchy
    )


def can_remove_user(
    actor_role: str,
    target_role: str,
    hierarchy: Mapping[str, RoleHierarchyInfo],
) -> bool:
    if is_super_admin_role(target_role):
        return False
    if actor_role == target_role:
        return False
    return has_higher_authority(actor_role, target_role, hierarchy)


def can_assign_minecraft_player(
    actor_role: str,
    target_role: str,
    actor_id: str,
    target_id: str,
    hierarchy: Mapping[str, RoleHierarchyInfo],
) -> bool:
    """Identity-based assignment rule.

    The root role may (re)assign a Minecraft player for anyone. Every other
    role may only change its own assignment, whatever the relative ranks.
    """
    if actor_role not in hierarchy or target_role not in hierarchy:
        return False
    if is_super_admin_role(actor_role):
        return True
    return str(actor_id) == str(target_id)


def can_assign_minecraft_player_by_rank(
    actor_role: str,
    target_role: str,
    hierarchy: Mapping[str, RoleHierarchyInfo],
) -> bool:
    """Rank-based assignment rule: higher or equal authority is enough."""
    return has_higher_or_equal_authority(actor_role, target_role, hierarchy)


def can_reorder_role_list(
    actor_role: str, hierarchy: Mapping[str, RoleHierarchyInfo]
) -> bool:
    """Only the root role may reorder the server's whole role list."""
    return actor_role in hierarchy and is_super_admin_role(actor_role)


def can_reorder_roles(
    actor_role: str,
    roles_to_reorder: Iterable[str],
    hierarchy: Mapping[str, RoleHierarchyInfo],
) -> ReorderDecision:
    """Check a partial reorder request and report the rejected roles.

    The root role may move every role except itself. Other roles may only
    move roles strictly below their own authority. The root role and roles
    unknown to the hierarchy are always rejected.
    """
    requested = list(roles_to_reorder)
    if actor_role not in hierarchy:
        return ReorderDecision(can_reorder=False, invalid_roles=tuple(requested))

    actor_is_root = is_super_admin_role(actor_role)
    invalid: list[str] = []
    for role_name in requested:
        if is_super_admin_role(role_name) or role_name not in hierarchy:
            invalid.append(role_name)
        elif not actor_is_root and not has_higher_authority(actor_role, role_name, hierarchy):
            invalid.append(role_name)

    return ReorderDecision(can_reorder=not invalid, invalid_roles=tuple(invalid))
