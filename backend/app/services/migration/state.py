"""Migration session state machine.

A tenant has at most one non-terminal session. Statuses only move forward
along ``idle -> building_json -> uploading_json -> processing_data ->
completed``; repeating the current status is a progress update, and
``failed`` can be reached from any non-terminal status.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Final

from pydantic import BaseModel, Field


class MigrationStatus(str, Enum):
    IDLE = "idle"
    BUILDING_JSON = "building_json"
    UPLOADING_JSON = "uploading_json"
    PROCESSING_DATA = "processing_data"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES: Final[frozenset[MigrationStatus]] = frozenset(
    {MigrationStatus.COMPLETED, MigrationStatus.FAILED}
)

_STATUS_RANK: Final[dict[MigrationStatus, int]] = {
    MigrationStatus.IDLE: 0,
    MigrationStatus.BUILDING_JSON: 1,
    MigrationStatus.UPLOADING_JSON: 2,
    MigrationStatus.PROCESSING_DATA: 3,
    MigrationStatus.COMPLETED: 4,
}

# Percentage reported for a stage when no record counts are known
STAGE_PERCENTAGE: Final[dict[MigrationStatus, int]] = {
    MigrationStatus.IDLE: 5,
    MigrationStatus.BUILDING_JSON: 25,
    MigrationStatus.UPLOADING_JSON: 50,
    MigrationStatus.PROCESSING_DATA: 75,
    MigrationStatus.COMPLETED: 100,
}

SUPPORTED_MIGRATION_TYPES: Final[frozenset[str]] = frozenset({"litebans"})

WAITING_FOR_SERVER_MESSAGE: Final[str] = (
    "Waiting for Minecraft server to start building export..."
)
CANCELLED_BY_USER_ERROR: Final[str] = "Migration cancelled by user"


class MigrationProgress(BaseModel):
    message: str = ""
    records_processed: int = Field(default=0, ge=0)
    records_skipped: int = Field(default=0, ge=0)
    total_records: int | None = Field(default=None, ge=0)


class MigrationSession(BaseModel):
    id: str
    server_name: str
    migration_type: str
    status: MigrationStatus = MigrationStatus.IDLE
    progress: MigrationProgress = Field(default_factory=MigrationProgress)
    error: str | None = None
    started_at: datetime
    completed_at: datetime | None = None


class MigrationHistoryEntry(BaseModel):
    id: str
    migration_type: str
    started_at: datetime
    completed_at: datetime
    status: MigrationStatus
    records_processed: int = 0
    records_skipped: int = 0
    error: str | None = None


class MigrationRecord(BaseModel):
    """Everything kept per tenant: the live session, history and last success."""

    current: MigrationSession | None = None
    history: list[MigrationHistoryEntry] = Field(default_factory=list)
    last_migration_at: datetime | None = None


def is_terminal(status: MigrationStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: MigrationStatus, new: MigrationStatus) -> bool:
    if is_terminal(current):
        return False
    if new is MigrationStatus.FAILED:
        return True
    return _STATUS_RANK[new] >= _STATUS_RANK[current]


def progress_percentage(status: MigrationStatus, progress: MigrationProgress) -> int:
    total = progress.total_records
    if total and total > 0 and progress.records_processed > 0:
        return min(100, round(progress.records_processed / total * 100))
    return STAGE_PERCENTAGE.get(status, 0)


def normalize_migration_type(migration_type: str | None) -> str | None:
    """Return the canonical migration type, or None if it is not supported."""
    if not migration_type:
        return None
    normalized = migration_type.strip().lower()
    return normalized if normalized in SUPPORTED_MIGRATION_TYPES else None
