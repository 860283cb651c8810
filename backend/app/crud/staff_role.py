import uuid
from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.staff import Staff
from ..models.staff_role import StaffRole


class StaffRoleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        server_name: str,
        slug: str,
        name: str,
        order: int,
        permissions: Iterable[str] = (),
        description: str | None = None,
        is_default: bool = False,
    ) -> StaffRole:
        role = StaffRole(
            server_name=server_name,
            slug=slug,
            name=name,
            order=order,
            permissions=list(permissions),
            description=description,
            is_default=is_default,
        )
        self.session.add(role)
        await self.session.flush()
        await self.session.refresh(role)
        return role

    async def get_by_id(self, server_name: str, role_id: uuid.UUID) -> StaffRole | None:
        result = await self.session.execute(
            select(StaffRole).where(
                StaffRole.server_name == server_name, StaffRole.id == role_id
            )
        )
        return result.scalar_one_or_none()

    async def get_by_name(self, server_name: str, name: str) -> StaffRole | None:
        result = await self.session.execute(
            select(StaffRole).where(
                StaffRole.server_name == server_name, StaffRole.name == name
            )
        )
        return result.scalar_one_or_none()

    async def list_for_server(self, server_name: str) -> list[StaffRole]:
        result = await self.session.execute(
            select(StaffRole)
            .where(StaffRole.server_name == server_name)
            .order_by(StaffRole.order, StaffRole.name)
        )
        return list(result.scalars().all())

    async def count_members(self, server_name: str, role_name: str) -> int:
        result = await self.session.execute(
            select(func.count(Staff.id)).where(
                Staff.server_name == server_name, Staff.role == role_name
            )
        )
        return int(result.scalar_one())

    async def update(self, role: StaffRole) -> StaffRole:
        await self.session.flush()
        await self.session.refresh(role)
        return role

    async def delete(self, role: StaffRole) -> None:
        await self.session.delete(role)
        await self.session.flush()
