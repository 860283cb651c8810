import logging
import uuid
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from ...auth import rbac_contract
from ...auth.role_hierarchy import (
    SUPER_ADMIN_ROLE,
    can_reorder_role_list,
    can_reorder_roles,
    get_user_role_order,
    is_super_admin_role,
)
from ...crud.staff_role import StaffRoleRepository
from ...errors import ConflictError, NotFoundError, ValidationError
from ...models.staff import Staff
from ...models.staff_role import StaffRole
from ..audit.audit_service import AuditService
from .permission_service import PermissionService
from .role_hierarchy_cache import clear_role_hierarchy_cache
from .staff_service import MANAGE_STAFF_PERMISSION

logger = logging.getLogger("modl.roles")


@dataclass(frozen=True)
class RoleWithCount:
    role: StaffRole
    user_count: int


@dataclass(frozen=True)
class PermissionDefinition:
    id: str
    name: str
    description: str
    category: str


def _punishment_definition(permission: str) -> PermissionDefinition:
    type_name = (
        permission.removeprefix(rbac_contract.PUNISHMENT_APPLY_PREFIX).replace("-", " ").title()
    )
    return PermissionDefinition(
        id=permission,
        name=f"Apply {type_name}",
        description=f"Permission to apply {type_name} punishments",
        category="punishment",
    )


def _validate_permissions(permissions: list[str]) -> list[str]:
    invalid = []
    for permission in permissions:
        try:
            rbac_contract.validate_permission(permission)
        except ValueError:
            invalid.append(permission)
    if invalid:
        raise ValidationError("Invalid permissions", details={"invalidPermissions": invalid})
    return rbac_contract.validate_permissions(permissions)


def _role_snapshot(role: StaffRole) -> dict[str, object]:
    return {
        "name": role.name,
        "order": role.order,
        "description": role.description,
        "permissions": list(role.permissions or []),
    }


class RoleService:
    def __init__(
        self,
        session: AsyncSession,
        server_name: str,
        permissions: PermissionService,
        cache_invalidator: Callable[[str | None], None] = clear_role_hierarchy_cache,
    ):
        self.session = session
        self.server_name = server_name
        self.permissions = permissions
        self.role_repo = StaffRoleRepository(session)
        self.audit = AuditService(session, server_name)
        self._invalidate_cache = cache_invalidator

    async def _commit(self) -> None:
        await self.session.commit()
        self._invalidate_cache(self.server_name)

    async def _get_role(self, role_id: uuid.UUID) -> StaffRole:
        role = await self.role_repo.get_by_id(self.server_name, role_id)
        if role is None:
            raise NotFoundError("Role not found")
        return role

    async def list_roles(self, actor: Staff) -> list[RoleWithCount]:
        await self.permissions.require_permission(actor, MANAGE_STAFF_PERMISSION)
        roles = await self.role_repo.list_for_server(self.server_name)
        return [
            RoleWithCount(
                role=role,
                user_count=await self.role_repo.count_members(self.server_name, role.name),
            )
            for role in roles
        ]

    async def get_role(self, actor: Staff, role_id: uuid.UUID) -> RoleWithCount:
        await self.permissions.require_permission(actor, MANAGE_STAFF_PERMISSION)
        role = await self._get_role(role_id)
        return RoleWithCount(
            role=role,
            user_count=await self.role_repo.count_members(self.server_name, role.name),
        )

    async def list_permissions(self, actor: Staff) -> list[PermissionDefinition]:
        """Permissions a role may be granted on this server.

        Punishment apply permissions are the ones already held by one of the
        server's roles, which the role seeding derives from its punishment types.
        """
        await self.permissions.require_permission(actor, MANAGE_STAFF_PERMISSION)
        definitions = [
            PermissionDefinition(
                id=permission,
                name=name,
                description=description,
                category=rbac_contract.permission_category(permission),
            )
            for permission, (name, description) in rbac_contract.PERMISSION_DESCRIPTIONS.items()
        ]
        punishment_permissions = {
            permission
            for role in await self.role_repo.list_for_server(self.server_name)
            for permission in role.permissions or []
            if rbac_contract.is_punishment_apply_permission(permission)
        }
        definitions.extend(
            _punishment_definition(permission) for permission in sorted(punishment_permissions)
        )
        return definitions

    async def create_role(
        self,
        actor: Staff,
        name: str,
        description: str,
        permissions: list[str],
    ) -> StaffRole:
        """Create a custom role below every existing role of the server."""
        await self.permissions.require_permission(actor, MANAGE_STAFF_PERMISSION)
        await self.permissions.require_super_admin(actor, "roles.create")

        name = name.strip()
        if not name:
            raise ValidationError("Role name is required")
        if is_super_admin_role(name):
            raise ValidationError(f"'{SUPER_ADMIN_ROLE}' is a reserved role name")
        validated = _validate_permissions(permissions)

        if await self.role_repo.get_by_name(self.server_name, name) is not None:
            raise ConflictError("Role name already exists", details={"name": name})

        existing = await self.role_repo.list_for_server(self.server_name)
        role = await self.role_repo.create(
            self.server_name,
            slug=f"custom-{uuid.uuid4().hex[:12]}",
            name=name,
            order=max((other.order for other in existing), default=0) + 1,
            permissions=validated,
            description=description,
        )
        await self.audit.log_create("staff_role", role.id, _role_snapshot(role), actor=actor)
        await self._commit()
        logger.info(
            "[ROLES] created server=%s role=%s order=%s by=%s",
            self.server_name,
            role.name,
            role.order,
            actor.id,
        )
        return role

    async def reorder(self, actor: Staff, orders: dict[uuid.UUID, int]) -> list[StaffRole]:
        """Apply new ``order`` values to some or all of the server's roles.

        A request covering every non-root role is a reorder of the whole list
        and is reserved to the root role. Partial requests may only move roles
        below the actor, and only to positions still below the actor.
        """
        await self.permissions.require_permission(actor, MANAGE_STAFF_PERMISSION)
        if not orders:
            raise ValidationError("At least one role order is required")

        all_roles = await self.role_repo.list_for_server(self.server_name)
        roles_by_id = {role.id: role for role in all_roles}
        missing = [str(role_id) for role_id in orders if role_id not in roles_by_id]
        if missing:
            raise NotFoundError("Role not found", details={"roleIds": missing})

        hierarchy = await self.permissions.hierarchy()
        non_root_ids = {role.id for role in all_roles if not is_super_admin_role(role.name)}
        if set(orders) == non_root_ids and not can_reorder_role_list(actor.role, hierarchy):
            await self.permissions.deny(
                actor,
                "roles.reorder",
                message="Only the Super Admin can reorder the role list.",
            )

        names = [roles_by_id[role_id].name for role_id in orders]
        decision = can_reorder_roles(actor.role, names, hierarchy)
        if not decision.can_reorder:
            await self.permissions.deny(
                actor,
                "roles.reorder",
                target=",".join(decision.invalid_roles),
                message="You cannot reorder one or more of these roles.",
                details={"invalidRoles": list(decision.invalid_roles)},
            )

        actor_order = get_user_role_order(actor.role, hierarchy)
        if not is_super_admin_role(actor.role):
            too_high = [
                roles_by_id[role_id].name
                for role_id, order in orders.items()
                if order <= actor_order
            ]
            if too_high:
                await self.permissions.deny(
                    actor,
                    "roles.reorder",
                    target=",".join(too_high),
                    message="Roles cannot be moved to or above your own level.",
                    details={"invalidRoles": too_high},
                )

        before = {roles_by_id[role_id].name: roles_by_id[role_id].order for role_id in orders}
        for role_id, order in orders.items():
            roles_by_id[role_id].order = order
        await self.session.flush()
        await self.audit.log(
            action="staff_role.reorder",
            entity_type="staff_role",
            entity_id="order",
            actor=actor,
            before=before,
            after={roles_by_id[role_id].name: order for role_id, order in orders.items()},
        )
        await self._commit()
        logger.info(
            "[ROLES] reordered server=%s roles=%s by=%s", self.server_name, len(orders), actor.id
        )
        return sorted(roles_by_id.values(), key=lambda role: (role.order, role.name))

    async def update_role(
        self,
        actor: Staff,
        role_id: uuid.UUID,
        permissions: list[str],
        description: str | None = None,
    ) -> StaffRole:
        await self.permissions.require_permission(actor, MANAGE_STAFF_PERMISSION)
        await self.permissions.require_super_admin(actor, "roles.update")
        role = await self._get_role(role_id)
        if is_super_admin_role(role.name):
            await self.permissions.deny(
                actor, "roles.update", target=role.name, message="Cannot modify Super Admin role"
            )

        validated = _validate_permissions(permissions)
        before = _role_snapshot(role)
        role.permissions = validated
        if description is not None:
            role.description = description
        await self.role_repo.update(role)
        await self.audit.log_update("staff_role", role.id, before, _role_snapshot(role), actor=actor)
        await self._commit()
        logger.info("[ROLES] updated server=%s role=%s by=%s", self.server_name, role.name, actor.id)
        return role

    async def delete_role(self, actor: Staff, role_id: uuid.UUID) -> None:
        await self.permissions.require_permission(actor, MANAGE_STAFF_PERMISSION)
        await self.permissions.require_super_admin(actor, "roles.delete")
        role = await self._get_role(role_id)
        if is_super_admin_role(role.name):
            await self.permissions.deny(
                actor, "roles.delete", target=role.name, message="Cannot delete Super Admin role"
            )

        if await self.role_repo.count_members(self.server_name, role.name):
            raise ConflictError(
                "Cannot delete role that is currently assigned to staff members",
                details={
                    "message": "Please reassign all staff members to a different role "
                    "before deleting this role."
                },
            )

        snapshot = _role_snapshot(role)
        await self.role_repo.delete(role)
        await self.audit.log_delete("staff_role", role_id, snapshot, actor=actor)
        await self._commit()
        logger.info("[ROLES] deleted server=%s role=%s by=%s", self.server_name, role.name, actor.id)
