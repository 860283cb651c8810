from collections.abc import Iterable
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.player import Player

PLAYER_DOCUMENT_FIELDS = ("usernames", "notes", "ip_list", "punishments", "data")


class PlayerRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_many_by_uuid(
        self, server_name: str, minecraft_uuids: Iterable[str]
    ) -> dict[str, Player]:
        uuids = list(minecraft_uuids)
        if not uuids:
            return {}
        result = await self.session.execute(
            select(Player).where(
                Player.server_name == server_name, Player.minecraft_uuid.in_(uuids)
            )
        )
        return {player.minecraft_uuid: player for player in result.scalars().all()}

    async def get_by_uuid(self, server_name: str, minecraft_uuid: str) -> Player | None:
        result = await self.session.execute(
            select(Player).where(
                Player.server_name == server_name, Player.minecraft_uuid == minecraft_uuid
            )
        )
        return result.scalar_one_or_none()

    def add(self, server_name: str, document: dict[str, Any]) -> Player:
        player = Player(
            server_name=server_name,
            minecraft_uuid=document["minecraft_uuid"],
            pending_notifications=[],
            **{field: document[field] for field in PLAYER_DOCUMENT_FIELDS},
        )
        self.session.add(player)
        return player

    @staticmethod
    def apply(player: Player, document: dict[str, Any]) -> Player:
        for field in PLAYER_DOCUMENT_FIELDS:
            setattr(player, field, document[field])
        return player

    async def commit(self) -> None:
        await self.session.commit()
