from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.api_key import ServerApiKey


class ServerApiKeyRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, server_name: str, key_hash: str) -> ServerApiKey:
        api_key = ServerApiKey(server_name=server_name, key_hash=key_hash)
        self.session.add(api_key)
        await self.session.flush()
        await self.session.refresh(api_key)
        return api_key

    async def get_active(self, server_name: str, key_hash: str) -> ServerApiKey | None:
        result = await self.session.execute(
            select(ServerApiKey).where(
                ServerApiKey.server_name == server_name,
                ServerApiKey.key_hash == key_hash,
                ServerApiKey.revoked.is_(False),
            )
        )
        return result.scalar_one_or_none()
