from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Callable

from ..application.state import MigrationState, get_migration_state

DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60

logger = logging.getLogger("modl.migration.sweeper")


class MigrationStateSweeper:
    """Periodically evicts expired rate-limit and cooldown entries."""

    def __init__(
        self,
        *,
        state_provider: Callable[[], MigrationState] = get_migration_state,
        interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self._state_provider = state_provider
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._should_stop = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._should_stop = False
        self._task = asyncio.create_task(self._loop())
        logger.info("[SWEEPER] started interval=%ss", self.interval_seconds)

    async def stop(self) -> None:
        self._should_stop = True
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("[SWEEPER] stopped")

    async def run_once(self) -> dict[str, int]:
        state = self._state_provider()
        try:
            rate_limits = await state.upload_limiter.sweep()
            cooldowns = await state.cooldowns.sweep()
        except Exception as exc:  # noqa: BLE001
            logger.error("[SWEEPER] failed reason=execution_error", exc_info=exc)
            return {"rate_limits": 0, "cooldowns": 0}
        if rate_limits or cooldowns:
            logger.info(
                "[SWEEPER] evicted rate_limits=%s cooldowns=%s", rate_limits, cooldowns
            )
        return {"rate_limits": rate_limits, "cooldowns": cooldowns}

    async def _loop(self) -> None:
        while not self._should_stop:
            await asyncio.sleep(self.interval_seconds)
            if self._should_stop:
                break
            await self.run_once()
