import hashlib
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from fastapi import Depends, Header
from pydantic import BaseModel

from ..errors import AuthError, RateLimitedError
from ..infra.state_store import StateStore

MIGRATION_UPLOAD_MAX_ATTEMPTS = 3
MIGRATION_UPLOAD_WINDOW_SECONDS = 60 * 60
MIGRATION_COOLDOWN_SECONDS = 24 * 60 * 60

logger = logging.getLogger("modl.migration.rate_limit")

Clock = Callable[[], float]


class RateLimitEntry(BaseModel):
    server_name: str
    last_attempt: float
    attempt_count: int


class CooldownEntry(BaseModel):
    server_name: str
    last_successful_migration: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    attempt_count: int
    retry_after: int | None = None
    remaining_minutes: int | None = None
    next_attempt_at: str | None = None


@dataclass(frozen=True)
class CooldownStatus:
    on_cooldown: bool
    remaining_time_ms: int | None = None


def _credential_component(api_key: str) -> str:
    if not api_key:
        raise ValueError("api_key is required for migration rate limiting")
    return hashlib.sha256(api_key.encode()).hexdigest()


def rate_limit_key(server_name: str, api_key: str) -> str:
    if not server_name:
        raise ValueError("server_name is required for migration rate limiting")
    return f"{server_name}:{_credential_component(api_key)}"


def _isoformat(timestamp: float) -> str:
    return (
        datetime.fromtimestamp(timestamp, tz=timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


class MigrationUploadRateLimiter:
    """Sliding-window throttle for migration uploads, keyed by tenant and API key.

    The window is measured from the most recent admitted attempt: once it has
    elapsed the count starts again at one.
    """

    def __init__(
        self,
        store: StateStore[RateLimitEntry],
        max_attempts: int = MIGRATION_UPLOAD_MAX_ATTEMPTS,
        window_seconds: int = MIGRATION_UPLOAD_WINDOW_SECONDS,
        clock: Clock = time.time,
    ) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._store = store
        self._clock = clock

    def _now(self, now: float | None) -> float:
        return self._clock() if now is None else now

    async def hit(
        self, server_name: str, api_key: str, now: float | None = None
    ) -> RateLimitDecision:
        current = self._now(now)
        key = rate_limit_key(server_name, api_key)
        entry = await self._store.get(key)

        if entry is None:
            entry = RateLimitEntry(server_name=server_name, last_attempt=current, attempt_count=1)
            await self._store.set(key, entry, ttl_seconds=self.window_seconds)
            return RateLimitDecision(allowed=True, attempt_count=1)

        elapsed = current - entry.last_attempt
        if elapsed < self.window_seconds:
            if entry.attempt_count >= self.max_attempts:
                remaining_minutes = math.ceil((self.window_seconds - elapsed) / 60)
                logger.warning(
                    "[RATE_LIMIT] migration_upload_rejected server=%s attempts=%s retry_after=%s",
                    server_name,
                    entry.attempt_count,
                    remaining_minutes * 60,
                )
                return RateLimitDecision(
                    allowed=False,
                    attempt_count=entry.attempt_count,
                    retry_after=remaining_minutes * 60,
                    remaining_minutes=remaining_minutes,
                    next_attempt_at=_isoformat(entry.last_attempt + self.window_seconds),
                )
            entry = entry.model_copy(
                update={"attempt_count": entry.attempt_count + 1, "last_attempt": current}
            )
        else:
            entry = entry.model_copy(update={"attempt_count": 1, "last_attempt": current})

        await self._store.set(key, entry, ttl_seconds=self.window_seconds)
        return RateLimitDecision(allowed=True, attempt_count=entry.attempt_count)

    async def sweep(self, now: float | None = None) -> int:
        current = self._now(now)
        removed = await self._store.sweep(
            lambda _key, entry: current - entry.last_attempt > self.window_seconds
        )
        if removed:
            logger.debug("[RATE_LIMIT] sweep removed=%s", removed)
        return removed


class MigrationCooldownTracker:
    """Tracks the last successful migration per tenant and per tenant+API key."""

    def __init__(
        self,
        store: StateStore[CooldownEntry],
        cooldown_seconds: int = MIGRATION_COOLDOWN_SECONDS,
        clock: Clock = time.time,
    ) -> None:
        self.cooldown_seconds = cooldown_seconds
        self._store = store
        self._clock = clock

    def _now(self, now: float | None) -> float:
        return self._clock() if now is None else now

    @staticmethod
    def _tenant_key(server_name: str) -> str:
        return f"server:{server_name}"

    @staticmethod
    def _credential_key(server_name: str, api_key: str) -> str:
        return f"key:{rate_limit_key(server_name, api_key)}"

    async def update_migration_cooldown(
        self, server_name: str, api_key: str | None = None, now: float | None = None
    ) -> None:
        entry = CooldownEntry(server_name=server_name, last_successful_migration=self._now(now))
        await self._store.set(
            self._tenant_key(server_name), entry, ttl_seconds=self.cooldown_seconds
        )
        if api_key:
            await self._store.set(
                self._credential_key(server_name, api_key),
                entry,
                ttl_seconds=self.cooldown_seconds,
            )
        logger.info("[MIGRATION] cooldown_started server=%s", server_name)

    def _status(self, entry: CooldownEntry | None, now: float | None) -> CooldownStatus:
        if entry is None:
            return CooldownStatus(on_cooldown=False)
        elapsed = self._now(now) - entry.last_successful_migration
        if elapsed < self.cooldown_seconds:
            return CooldownStatus(
                on_cooldown=True,
                remaining_time_ms=int((self.cooldown_seconds - elapsed) * 1000),
            )
        return CooldownStatus(on_cooldown=False)

    async def check_migration_cooldown(
        self, server_name: str, now: float | None = None
    ) -> CooldownStatus:
        return self._status(await self._store.get(self._tenant_key(server_name)), now)

    async def check_migration_cooldown_by_api_key(
        self, server_name: str, api_key: str, now: float | None = None
    ) -> CooldownStatus:
        entry = await self._store.get(self._credential_key(server_name, api_key))
        return self._status(entry, now)

    async def sweep(self, now: float | None = None) -> int:
        current = self._now(now)
        return await self._store.sweep(
            lambda _key, entry: current - entry.last_successful_migration >= self.cooldown_seconds
        )


def get_upload_rate_limiter() -> MigrationUploadRateLimiter:
    from .state import get_migration_state

    return get_migration_state().upload_limiter


async def migration_upload_rate_limit(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_server_name: str | None = Header(default=None, alias="X-Server-Name"),
    limiter: MigrationUploadRateLimiter = Depends(get_upload_rate_limiter),
) -> RateLimitDecision:
    server_name = (x_server_name or "").strip()
    if not x_api_key or not server_name:
        raise AuthError("Unauthorized")

    decision = await limiter.hit(server_name, x_api_key)
    if not decision.allowed:
        raise RateLimitedError(
            "Too many migration upload attempts. "
            f"Please wait {decision.remaining_minutes} minutes before trying again.",
            details={
                "retryAfter": decision.retry_after,
                "nextAttemptAt": decision.next_attempt_at,
            },
        )
    return decision
