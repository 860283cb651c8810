"""State stores for process-wide mutable records.

Rate-limit entries, cooldown entries and migration state are kept behind this
small key/value interface so the policies using them can be tested without
real time passing and moved to Redis when the API runs on several workers.

Values are pydantic models. The in-memory store keeps the objects as they are;
the Redis store serializes them to JSON under a namespaced key.
"""
from __future__ import annotations

import logging
from typing import Callable, Generic, Protocol, TypeVar

from pydantic import BaseModel
from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

logger = logging.getLogger("modl.state_store")

ModelT = TypeVar("ModelT", bound=BaseModel)

SweepPredicate = Callable[[str, ModelT], bool]


class StateStore(Protocol[ModelT]):
    async def get(self, key: str) -> ModelT | None: ...

    async def set(self, key: str, value: ModelT, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def sweep(self, predicate: SweepPredicate) -> int: ...

    async def clear(self) -> None: ...


class InMemoryStateStore(Generic[ModelT]):
    """Process-local store. TTLs are ignored; expiry is handled by ``sweep``."""

    def __init__(self) -> None:
        self._entries: dict[str, ModelT] = {}

    async def get(self, key: str) -> ModelT | None:
        return self._entries.get(key)

    async def set(self, key: str, value: ModelT, ttl_seconds: int | None = None) -> None:
        self._entries[key] = value

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def sweep(self, predicate: SweepPredicate) -> int:
        expired = [key for key, value in self._entries.items() if predicate(key, value)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisStateStore(Generic[ModelT]):
    """Redis-backed store shared by every worker process."""

    def __init__(self, redis_client: AsyncRedis, namespace: str, model: type[ModelT]) -> None:
        self._redis = redis_client
        self._namespace = namespace
        self._model = model

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> ModelT | None:
        raw = await self._redis.get(self._key(key))
        if raw is None:
            return None
        return self._model.model_validate_json(raw)

    async def set(self, key: str, value: ModelT, ttl_seconds: int | None = None) -> None:
        await self._redis.set(self._key(key), value.model_dump_json(), ex=ttl_seconds)

    async def delete(self, key: str) -> bool:
        return bool(await self._redis.delete(self._key(key)))

    async def sweep(self, predicate: SweepPredicate) -> int:
        removed = 0
        prefix = f"{self._namespace}:"
        async for full_key in self._redis.scan_iter(match=f"{prefix}*"):
            raw = await self._redis.get(full_key)
            if raw is None:
                continue
            key = full_key[len(prefix):]
            try:
                value = self._model.model_validate_json(raw)
            except ValueError as exc:
                logger.warning("Dropping unreadable state entry key=%s error=%s", full_key, exc)
                await self._redis.delete(full_key)
                removed += 1
                continue
            if predicate(key, value):
                await self._redis.delete(full_key)
                removed += 1
        return removed

    async def clear(self) -> None:
        try:
            async for full_key in self._redis.scan_iter(match=f"{self._namespace}:*"):
                await self._redis.delete(full_key)
        except RedisError as exc:
            logger.error("Redis operation failed operation=CLEAR namespace=%s error=%s", self._namespace, exc)
            raise


def make_state_store(
    backend: str,
    namespace: str,
    model: type[ModelT],
    redis_client: AsyncRedis | None = None,
) -> StateStore[ModelT]:
    if backend == "memory":
        return InMemoryStateStore()
    if backend == "redis":
        if redis_client is None:
            raise ValueError("A Redis client is required for the redis state backend")
        return RedisStateStore(redis_client, namespace, model)
    raise ValueError(f"Unknown state backend '{backend}'")
