import logging
from dataclasses import dataclass

from redis.asyncio import Redis as AsyncRedis

from ..config import Settings
from ..infra.state_store import make_state_store
from ..services.migration.service import MigrationService
from ..services.migration.state import MigrationRecord
from .migration_rate_limit import (
    CooldownEntry,
    MigrationCooldownTracker,
    MigrationUploadRateLimiter,
    RateLimitEntry,
)

RATE_LIMIT_NAMESPACE = "modl:migration:ratelimit"
COOLDOWN_NAMESPACE = "modl:migration:cooldown"
SESSION_NAMESPACE = "modl:migration:session"

logger = logging.getLogger("modl.state")


@dataclass
class MigrationState:
    upload_limiter: MigrationUploadRateLimiter
    cooldowns: MigrationCooldownTracker
    migrations: MigrationService


def build_migration_state(
    settings: Settings, redis_client: AsyncRedis | None = None
) -> MigrationState:
    backend = settings.state_backend
    cooldowns = MigrationCooldownTracker(
        make_state_store(backend, COOLDOWN_NAMESPACE, CooldownEntry, redis_client),
        cooldown_seconds=settings.migration_cooldown_seconds,
    )
    return MigrationState(
        upload_limiter=MigrationUploadRateLimiter(
            make_state_store(backend, RATE_LIMIT_NAMESPACE, RateLimitEntry, redis_client),
            max_attempts=settings.migration_upload_max_attempts,
            window_seconds=settings.migration_upload_window_seconds,
        ),
        cooldowns=cooldowns,
        migrations=MigrationService(
            make_state_store(backend, SESSION_NAMESPACE, MigrationRecord, redis_client),
            cooldowns,
            history_limit=settings.migration_history_limit,
        ),
    )


_state: MigrationState | None = None


def configure_migration_state(
    settings: Settings, redis_client: AsyncRedis | None = None
) -> MigrationState:
    global _state
    _state = build_migration_state(settings, redis_client)
    logger.info("Migration state configured backend=%s", settings.state_backend)
    return _state


def get_migration_state() -> MigrationState:
    """Return the process-wide migration state, defaulting to in-memory stores."""
    global _state
    if _state is None:
        _state = build_migration_state(Settings())
    return _state


def reset_migration_state() -> None:
    global _state
    _state = None
