import asyncio
import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from ...application.migration_rate_limit import CooldownStatus, MigrationCooldownTracker
from ...errors import ConflictError, NotFoundError, ValidationError
from ...infra.state_store import StateStore
from .state import (
    CANCELLED_BY_USER_ERROR,
    WAITING_FOR_SERVER_MESSAGE,
    MigrationHistoryEntry,
    MigrationProgress,
    MigrationRecord,
    MigrationSession,
    MigrationStatus,
    can_transition,
    is_terminal,
    normalize_migration_type,
)

DEFAULT_HISTORY_LIMIT = 10

logger = logging.getLogger("modl.migration")


class UnsupportedMigrationTypeError(ValidationError):
    code = "UNSUPPORTED_MIGRATION_TYPE"
    message = "Invalid migration type"


class MigrationCooldownError(ConflictError):
    code = "MIGRATION_COOLDOWN"
    message = "Migration is on cooldown"


class MigrationActiveError(ConflictError):
    code = "MIGRATION_ACTIVE"
    message = "A migration is already in progress."


class InvalidMigrationTransition(ConflictError):
    code = "INVALID_MIGRATION_TRANSITION"
    message = "Invalid migration status transition"


class NoActiveMigrationError(NotFoundError):
    code = "NO_ACTIVE_MIGRATION"
    message = "No active migration found"


@dataclass(frozen=True)
class MigrationStatusReport:
    current_migration: MigrationSession | None
    history: list[MigrationHistoryEntry]
    last_migration_timestamp: datetime | None
    cooldown: CooldownStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MigrationService:
    """Per-tenant migration lifecycle: start, progress reports, cancel, status."""

    def __init__(
        self,
        store: StateStore[MigrationRecord],
        cooldowns: MigrationCooldownTracker,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._cooldowns = cooldowns
        self._history_limit = history_limit
        self._clock = clock
        self._lock = asyncio.Lock()

    async def _load(self, server_name: str) -> MigrationRecord:
        record = await self._store.get(server_name)
        return record if record is not None else MigrationRecord()

    async def start(self, server_name: str, migration_type: str) -> MigrationSession:
        """Open a new session in ``idle`` for the tenant.

        Raises:
            UnsupportedMigrationTypeError: If the type is not supported
            MigrationCooldownError: Within the cooldown after a successful migration
            MigrationActiveError: If a non-terminal session already exists
        """
        normalized = normalize_migration_type(migration_type)
        if normalized is None:
            raise UnsupportedMigrationTypeError()

        async with self._lock:
            now = self._clock()
            cooldown = await self._cooldowns.check_migration_cooldown(
                server_name, now=now.timestamp()
            )
            if cooldown.on_cooldown:
                hours_remaining = math.ceil((cooldown.remaining_time_ms or 0) / (60 * 60 * 1000))
                raise MigrationCooldownError(
                    "Migration is on cooldown. Please wait "
                    f"{hours_remaining} hour(s) before starting another migration.",
                    details={"remainingTime": cooldown.remaining_time_ms},
                )

            record = await self._load(server_name)
            if record.current is not None and not is_terminal(record.current.status):
                raise MigrationActiveError()

            session = MigrationSession(
                id=str(uuid.uuid4()),
                server_name=server_name,
                migration_type=normalized,
                status=MigrationStatus.IDLE,
                progress=MigrationProgress(message=WAITING_FOR_SERVER_MESSAGE),
                started_at=now,
            )
            record.current = session
            await self._store.set(server_name, record)

        logger.info(
            "[MIGRATION] started server=%s session_id=%s type=%s",
            server_name,
            session.id,
            normalized,
        )
        return session

    async def advance(
        self,
        server_name: str,
        status: MigrationStatus | str,
        progress: MigrationProgress,
        *,
        session_id: str | None = None,
        error: str | None = None,
        api_key: str | None = None,
    ) -> MigrationSession:
        """Move the tenant's session to ``status`` and record the progress.

        Reaching ``completed`` or ``failed`` archives the session into the
        history and clears it. Only ``completed`` starts the cooldown.
        """
        try:
            new_status = MigrationStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown migration status '{status}'") from None

        async with self._lock:
            record = await self._load(server_name)
            session = record.current
            if session is None or (session_id is not None and session.id != session_id):
                raise NoActiveMigrationError()

            if not can_transition(session.status, new_status):
                raise InvalidMigrationTransition(
                    f"Cannot move migration from '{session.status.value}' to '{new_status.value}'",
                    details={"from": session.status.value, "to": new_status.value},
                )

            session = session.model_copy(
                update={
                    "status": new_status,
                    "progress": progress,
                    "error": error if error is not None else session.error,
                }
            )

            if is_terminal(new_status):
                now = self._clock()
                session = session.model_copy(update={"completed_at": now})
                self._archive(record, session)
                record.current = None
                if new_status is MigrationStatus.COMPLETED:
                    record.last_migration_at = now
                    await self._cooldowns.update_migration_cooldown(
                        server_name, api_key, now=now.timestamp()
                    )
            else:
                record.current = session

            await self._store.set(server_name, record)

        log = logger.warning if new_status is MigrationStatus.FAILED else logger.info
        log(
            "[MIGRATION] status=%s server=%s session_id=%s processed=%s skipped=%s error=%s",
            new_status.value,
            server_name,
            session.id,
            progress.records_processed,
            progress.records_skipped,
            session.error,
        )
        return session

    def _archive(self, record: MigrationRecord, session: MigrationSession) -> None:
        record.history.append(
            MigrationHistoryEntry(
                id=session.id,
                migration_type=session.migration_type,
                started_at=session.started_at,
                completed_at=session.completed_at or self._clock(),
                status=session.status,
                records_processed=session.progress.records_processed,
                records_skipped=session.progress.records_skipped,
                error=session.error,
            )
        )
        if len(record.history) > self._history_limit:
            record.history = record.history[-self._history_limit:]

    async def cancel(self, server_name: str, session_id: str | None = None) -> MigrationSession:
        """Fail the active session on behalf of the user.

        The external exporter is not notified and no cooldown is started.
        """
        current = await self.get_current(server_name)
        if current is None:
            raise NoActiveMigrationError()
        return await self.advance(
            server_name,
            MigrationStatus.FAILED,
            current.progress.model_copy(update={"message": "Migration cancelled"}),
            session_id=session_id,
            error=CANCELLED_BY_USER_ERROR,
        )

    async def get_current(self, server_name: str) -> MigrationSession | None:
        return (await self._load(server_name)).current

    async def get_status(self, server_name: str) -> MigrationStatusReport:
        record = await self._load(server_name)
        cooldown = await self._cooldowns.check_migration_cooldown(
            server_name, now=self._clock().timestamp()
        )
        return MigrationStatusReport(
            current_migration=record.current,
            history=list(reversed(record.history)),
            last_migration_timestamp=record.last_migration_at,
            cooldown=cooldown,
        )

