import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.staff import Staff


class StaffRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, server_name: str, staff_id: uuid.UUID) -> Staff | None:
        result = await self.session.execute(
            select(Staff).where(Staff.server_name == server_name, Staff.id == staff_id)
        )
        return result.scalar_one_or_none()

    async def get_by_minecraft_uuid(self, server_name: str, minecraft_uuid: str) -> Staff | None:
        result = await self.session.execute(
            select(Staff).where(
                Staff.server_name == server_name,
                Staff.assigned_minecraft_uuid == minecraft_uuid,
            )
        )
        return result.scalar_one_or_none()

    async def update(self, staff: Staff) -> Staff:
        await self.session.flush()
        await self.session.refresh(staff)
        return staff

    async def delete(self, staff: Staff) -> None:
        await self.session.delete(staff)
        await self.session.flush()
