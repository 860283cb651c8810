import uuid
from typing import Any
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth import rbac_contract
from ...crud.audit_log import AuditLogRepository
from ...models.staff import Staff


class AuditService:
    """Records staff and game-server actions for a server.

    Entries are flushed into the caller's transaction; the caller commits.
    """

    def __init__(self, session: AsyncSession, server_name: str):
        self.session = session
        self.server_name = server_name
        self.audit_repo = AuditLogRepository(session)

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: str | uuid.UUID,
        actor: Staff | None = None,
        actor_type: str = "user",
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        reason: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ):
        """Log an audit event.

        Args:
            action: The action performed (e.g., 'staff.role_change')
            entity_type: The type of entity (e.g., 'staff')
            entity_id: The ID of the entity
            actor: The staff member performing the action (None for game servers)
            actor_type: Type of actor - 'user', 'system', or 'anonymous'

        Raises:
            ValueError: If actor_type is invalid
        """
        rbac_contract.validate_actor_type(actor_type)

        return await self.audit_repo.create(
            server_name=self.server_name,
            actor_id=actor.id if actor else None,
            actor_type=actor_type,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            before=before,
            after=after,
            reason=reason,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    async def log_create(
        self,
        entity_type: str,
        entity_id: str | uuid.UUID,
        entity_data: dict[str, Any],
        actor: Staff | None = None,
        actor_type: str = "user",
        reason: str | None = None,
    ):
        return await self.log(
            action=f"{entity_type}.create",
            entity_type=entity_type,
            entity_id=entity_id,
            actor=actor,
            actor_type=actor_type,
            before=None,
            after=entity_data,
            reason=reason,
        )

    async def log_update(
        self,
        entity_type: str,
        entity_id: str | uuid.UUID,
        before_data: dict[str, Any],
        after_data: dict[str, Any],
        actor: Staff | None = None,
        actor_type: str = "user",
        reason: str | None = None,
    ):
        return await self.log(
            action=f"{entity_type}.update",
            entity_type=entity_type,
            entity_id=entity_id,
            actor=actor,
            actor_type=actor_type,
            before=before_data,
            after=after_data,
            reason=reason,
        )

    async def log_delete(
        self,
        entity_type: str,
        entity_id: str | uuid.UUID,
        entity_data: dict[str, Any],
        actor: Staff | None = None,
        actor_type: str = "user",
        reason: str | None = None,
    ):
        return await self.log(
            action=f"{entity_type}.delete",
            entity_type=entity_type,
            entity_id=entity_id,
            actor=actor,
            actor_type=actor_type,
            before=entity_data,
            after=None,
            reason=reason,
        )

    async def log_permission_denied(
        self,
        action: str,
        actor: Staff | None = None,
        target: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ):
        """Record a request the role hierarchy refused."""
        return await self.log(
            action="security.permission_denied",
            entity_type="permission",
            entity_id=action,
            actor=actor,
            actor_type="user" if actor is not None else "anonymous",
            after={
                "action": action,
                "actor_role": actor.role if actor is not None else None,
                "target": target,
            },
            ip_address=ip_address,
            user_agent=user_agent,
        )
