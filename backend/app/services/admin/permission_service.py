import logging
from typing import Any, AsyncContextManager, Awaitable, Callable, NoReturn

from sqlalchemy.ext.asyncio import AsyncSession

from ...auth import rbac_contract
from ...auth.role_hierarchy import RoleHierarchy, has_permission, is_super_admin_role
from ...database import AsyncSessionLocal
from ...errors import PermissionError
from ...models.staff import Staff
from .role_hierarchy_cache import get_role_hierarchy

HierarchyProvider = Callable[[str], Awaitable[RoleHierarchy]]

logger = logging.getLogger("modl.roles.permissions")


class PermissionService:
    """Answers permission questions for staff of one server.

    Permissions come from the staff member's role in the server's hierarchy
    table; there are no wildcards and no per-user grants.
    """

    def __init__(
        self,
        session: AsyncSession,
        server_name: str,
        hierarchy_provider: HierarchyProvider = get_role_hierarchy,
        audit_session_factory: Callable[[], AsyncContextManager[AsyncSession]] = AsyncSessionLocal,
    ):
        self.session = session
        self.server_name = server_name
        self._hierarchy_provider = hierarchy_provider
        self._audit_session_factory = audit_session_factory

    async def hierarchy(self) -> RoleHierarchy:
        return await self._hierarchy_provider(self.server_name)

    async def has_permission(
        self,
        staff: Staff | None,
        permission_name: str,
        actor_type: str = "user",
    ) -> bool:
        """Check whether a staff member's role grants ``permission_name``.

        Raises:
            ValueError: If actor_type is invalid
        """
        rbac_contract.validate_actor_type(actor_type)

        try:
            rbac_contract.validate_permission(permission_name)
        except ValueError:
            return False

        if actor_type != rbac_contract.ActorType.USER or staff is None:
            return False

        return has_permission(staff.role, permission_name, await self.hierarchy())

    async def deny(
        self,
        staff: Staff | None,
        action: str,
        target: str | None = None,
        *,
        message: str | None = None,
        details: Any | None = None,
    ) -> NoReturn:
        """Audit a refused request in its own transaction, then raise 403."""
        from ..audit.audit_service import AuditService

        try:
            async with self._audit_session_factory() as audit_session:
                await AuditService(audit_session, self.server_name).log_permission_denied(
                    action=action, actor=staff, target=target
                )
                await audit_session.commit()
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "[AUDIT] permission_denied_not_recorded server=%s action=%s",
                self.server_name,
                action,
                exc_info=exc,
            )

        logger.warning(
            "[ROLES] denied server=%s staff_id=%s role=%s action=%s target=%s",
            self.server_name,
            staff.id if staff is not None else None,
            staff.role if staff is not None else None,
            action,
            target,
        )
        raise PermissionError(message or f"Permission denied: {action}", details=details)

    async def require_permission(self, staff: Staff | None, permission_name: str) -> None:
        if not await self.has_permission(staff, permission_name):
            await self.deny(staff, permission_name)

    async def require_super_admin(self, staff: Staff | None, action: str) -> None:
        if staff is None or not is_super_admin_role(staff.role):
            await self.deny(staff, action)
