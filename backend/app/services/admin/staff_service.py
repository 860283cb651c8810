import logging
import uuid
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.role_hierarchy import (
    can_assign_minecraft_player,
    can_assign_minecraft_player_by_rank,
    can_modify_role,
    can_remove_user,
    can_reorder_role_list,
)
from ...crud.player import PlayerRepository
from ...crud.staff import StaffRepository
from ...errors import ConflictError, NotFoundError, ValidationError
from ...models.staff import Staff
from ..audit.audit_service import AuditService
from .permission_service import PermissionService
from .role_hierarchy_cache import clear_role_hierarchy_cache

MANAGE_STAFF_PERMISSION = "admin.staff.manage"
UNKNOWN_USERNAME = "Unknown"

logger = logging.getLogger("modl.staff")


@dataclass(frozen=True)
class StaffCapabilities:
    staff_id: uuid.UUID
    can_change_role: bool
    assignable_roles: list[str]
    can_remove: bool
    can_assign_minecraft_player: bool
    can_assign_minecraft_player_by_rank: bool
    can_reorder_roles: bool


def _staff_snapshot(staff: Staff) -> dict[str, str | None]:
    return {
        "username": staff.username,
        "role": staff.role,
        "assigned_minecraft_uuid": staff.assigned_minecraft_uuid,
        "assigned_minecraft_username": staff.assigned_minecraft_username,
    }


class StaffService:
    """Staff mutations gated by the role hierarchy."""

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
        self.staff_repo = StaffRepository(session)
        self.player_repo = PlayerRepository(session)
        self.audit = AuditService(session, server_name)
        self._invalidate_cache = cache_invalidator

    async def _get_target(self, staff_id: uuid.UUID) -> Staff:
        target = await self.staff_repo.get_by_id(self.server_name, staff_id)
        if target is None:
            raise NotFoundError("Staff member not found")
        return target

    async def _commit(self) -> None:
        await self.session.commit()
        self._invalidate_cache(self.server_name)

    async def capabilities(self, actor: Staff, staff_id: uuid.UUID) -> StaffCapabilities:
        target = await self._get_target(staff_id)
        hierarchy = await self.permissions.hierarchy()
        assignable = [
            role_name
            for role_name in sorted(hierarchy, key=lambda name: hierarchy[name].order)
            if can_modify_role(actor.role, target.role, role_name, hierarchy)
        ]
        return StaffCapabilities(
            staff_id=target.id,
            can_change_role=bool(assignable),
            assignable_roles=assignable,
            can_remove=can_remove_user(actor.role, target.role, hierarchy),
            can_assign_minecraft_player=can_assign_minecraft_player(
                actor.role, target.role, str(actor.id), str(target.id), hierarchy
            ),
            can_assign_minecraft_player_by_rank=can_assign_minecraft_player_by_rank(
                actor.role, target.role, hierarchy
            ),
            can_reorder_roles=can_reorder_role_list(actor.role, hierarchy),
        )

    async def change_role(self, actor: Staff, staff_id: uuid.UUID, new_role: str) -> Staff:
        await self.permissions.require_permission(actor, MANAGE_STAFF_PERMISSION)
        hierarchy = await self.permissions.hierarchy()
        if new_role not in hierarchy:
            raise ValidationError("Specified role does not exist.")

        target = await self._get_target(staff_id)
        if target.id == actor.id or not can_modify_role(
            actor.role, target.role, new_role, hierarchy
        ):
            await self.permissions.deny(
                actor,
                "staff.role_change",
                target=str(target.id),
                message="You cannot change this staff member's role.",
            )

        if target.role == new_role:
            return target

        before = _staff_snapshot(target)
        target.role = new_role
        await self.staff_repo.update(target)
        await self.audit.log(
            action="staff.role_change",
            entity_type="staff",
            entity_id=target.id,
            actor=actor,
            before=before,
            after=_staff_snapshot(target),
        )
        await self._commit()
        logger.info(
            "[STAFF] role_changed server=%s staff_id=%s from=%s to=%s by=%s",
            self.server_name,
            target.id,
            before["role"],
            new_role,
            actor.id,
        )
        return target

    async def remove(self, actor: Staff, staff_id: uuid.UUID) -> None:
        await self.permissions.require_permission(actor, MANAGE_STAFF_PERMISSION)
        target = await self._get_target(staff_id)
        hierarchy = await self.permissions.hierarchy()
        if target.id == actor.id or not can_remove_user(actor.role, target.role, hierarchy):
            await self.permissions.deny(
                actor,
                "staff.remove",
                target=str(target.id),
                message="You cannot remove this staff member.",
            )

        snapshot = _staff_snapshot(target)
        await self.staff_repo.delete(target)
        await self.audit.log_delete("staff", staff_id, snapshot, actor=actor)
        await self._commit()
        logger.info(
            "[STAFF] removed server=%s staff_id=%s by=%s", self.server_name, staff_id, actor.id
        )

    async def assign_minecraft_player(
        self, actor: Staff, staff_id: uuid.UUID, minecraft_uuid: str | None
    ) -> Staff:
        """Assign (or clear, with ``None``) the Minecraft player linked to a staff member."""
        target = await self._get_target(staff_id)
        hierarchy = await self.permissions.hierarchy()
        if not can_assign_minecraft_player(
            actor.role, target.role, str(actor.id), str(target.id), hierarchy
        ):
            await self.permissions.deny(
                actor,
                "staff.minecraft_player",
                target=str(target.id),
                message="You can only change your own Minecraft player assignment.",
            )

        before = _staff_snapshot(target)
        if minecraft_uuid is None:
            target.assigned_minecraft_uuid = None
            target.assigned_minecraft_username = None
        else:
            player = await self.player_repo.get_by_uuid(self.server_name, minecraft_uuid)
            if player is None:
                raise NotFoundError("Minecraft player not found")
            existing = await self.staff_repo.get_by_minecraft_uuid(self.server_name, minecraft_uuid)
            if existing is not None and existing.id != target.id:
                raise ConflictError(
                    "This Minecraft player is already assigned to another staff member",
                    details={"assignedTo": existing.username},
                )
            usernames = player.usernames or []
            target.assigned_minecraft_uuid = player.minecraft_uuid
            target.assigned_minecraft_username = (
                usernames[-1].get("username", UNKNOWN_USERNAME) if usernames else UNKNOWN_USERNAME
            )

        await self.staff_repo.update(target)
        await self.audit.log_update(
            "staff", target.id, before, _staff_snapshot(target), actor=actor
        )
        await self._commit()
        return target
