"""Per-server memo of the role hierarchy table.

Tables are rebuilt from the role store once older than the TTL. When a
rebuild fails the previous table is served (or an empty one, which denies
everything) and the error is logged, never raised.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ...auth.role_hierarchy import RoleHierarchy, build_role_hierarchy
from ...crud.staff_role import StaffRoleRepository
from ...database import AsyncSessionLocal

DEFAULT_CACHE_TTL_SECONDS = 300

RoleLoader = Callable[[str], Awaitable[Iterable[Any]]]

logger = logging.getLogger("modl.roles.cache")


@dataclass
class HierarchyCacheEntry:
    table: RoleHierarchy
    built_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.built_at < self.ttl


class RoleHierarchyCache:
    def __init__(
        self,
        loader: RoleLoader,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, HierarchyCacheEntry] = {}

    async def get_role_hierarchy(self, server_name: str) -> RoleHierarchy:
        now = self._clock()
        entry = self._entries.get(server_name)
        if entry is not None and entry.is_fresh(now):
            return entry.table

        try:
            roles = await self._loader(server_name)
            table = build_role_hierarchy(roles)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "[ROLES] hierarchy_rebuild_failed server=%s stale=%s",
                server_name,
                entry is not None,
                exc_info=exc,
            )
            return entry.table if entry is not None else {}

        self._entries[server_name] = HierarchyCacheEntry(
            table=table, built_at=now, ttl=self.ttl_seconds
        )
        logger.debug("[ROLES] hierarchy_rebuilt server=%s roles=%s", server_name, len(table))
        return table

    def clear(self, server_name: str | None = None) -> None:
        if server_name is None:
            self._entries.clear()
        else:
            self._entries.pop(server_name, None)


async def load_staff_roles(server_name: str) -> list[Any]:
    async with AsyncSessionLocal() as session:
        return await StaffRoleRepository(session).list_for_server(server_name)


default_role_hierarchy_cache = RoleHierarchyCache(load_staff_roles)


async def get_role_hierarchy(server_name: str) -> RoleHierarchy:
    return await default_role_hierarchy_cache.get_role_hierarchy(server_name)


def clear_role_hierarchy_cache(server_name: str | None = None) -> None:
    default_role_hierarchy_cache.clear(server_name)
