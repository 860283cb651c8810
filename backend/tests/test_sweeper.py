import asyncio
import time

import pytest

from app.application.migration_rate_limit import (
    MigrationCooldownTracker,
    MigrationUploadRateLimiter,
)
from app.application.state import MigrationState
from app.background.sweeper import MigrationStateSweeper
from app.infra.state_store import InMemoryStateStore
from app.services.migration.service import MigrationService


def _state() -> MigrationState:
    cooldowns = MigrationCooldownTracker(InMemoryStateStore(), cooldown_seconds=60)
    return MigrationState(
        upload_limiter=MigrationUploadRateLimiter(InMemoryStateStore(), window_seconds=60),
        cooldowns=cooldowns,
        migrations=MigrationService(InMemoryStateStore(), cooldowns),
    )


@pytest.mark.anyio
async def test_run_once_evicts_expired_entries() -> None:
    state = _state()
    stale = time.time() - 120
    await state.upload_limiter.hit("alpha", "key-a", now=stale)
    await state.upload_limiter.hit("beta", "key-b")
    await state.cooldowns.update_migration_cooldown("alpha", "key-a", now=stale)

    sweeper = MigrationStateSweeper(state_provider=lambda: state)
    removed = await sweeper.run_once()

    assert removed == {"rate_limits": 1, "cooldowns": 2}
    assert not (await state.cooldowns.check_migration_cooldown("alpha")).on_cooldown


@pytest.mark.anyio
async def test_run_once_keeps_live_entries() -> None:
    state = _state()
    await state.upload_limiter.hit("alpha", "key-a")
    await state.cooldowns.update_migration_cooldown("alpha")

    removed = await MigrationStateSweeper(state_provider=lambda: state).run_once()

    assert removed == {"rate_limits": 0, "cooldowns": 0}
    assert (await state.cooldowns.check_migration_cooldown("alpha")).on_cooldown


@pytest.mark.anyio
async def test_run_once_survives_store_errors() -> None:
    state = _state()

    async def broken_sweep(now=None):
        raise ConnectionError("redis unavailable")

    state.upload_limiter.sweep = broken_sweep  # type: ignore[method-assign]

    removed = await MigrationStateSweeper(state_provider=lambda: state).run_once()

    assert removed == {"rate_limits": 0, "cooldowns": 0}


@pytest.mark.anyio
async def test_start_and_stop() -> None:
    state = _state()
    sweeper = MigrationStateSweeper(state_provider=lambda: state, interval_seconds=3600)

    await sweeper.start()
    await sweeper.start()
    assert sweeper.running

    await sweeper.stop()
    assert not sweeper.running
    await asyncio.sleep(0)
