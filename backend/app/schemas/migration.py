from datetime import datetime

from pydantic import Field

from ..services.migration.state import MigrationStatus
from .role import CamelModel


class MigrationProgressResponse(CamelModel):
    message: str
    records_processed: int
    records_skipped: int
    total_records: int | None = None
    percentage: int


class CurrentMigrationResponse(CamelModel):
    task_id: str
    type: str
    status: MigrationStatus
    progress: MigrationProgressResponse
    error: str | None = None
    started_at: datetime
    completed_at: datetime | None = None


class MigrationHistoryResponse(CamelModel):
    id: str
    type: str
    status: MigrationStatus
    started_at: datetime
    completed_at: datetime
    records_processed: int
    records_skipped: int
    error: str | None = None


class CooldownResponse(CamelModel):
    on_cooldown: bool
    remaining_time: int | None = None


class MigrationStatusResponse(CamelModel):
    current_migration: CurrentMigrationResponse | None
    last_migration_timestamp: datetime | None
    history: list[MigrationHistoryResponse]
    cooldown: CooldownResponse


class MigrationStartRequest(CamelModel):
    migration_type: str = Field(..., min_length=1, max_length=50)


class MigrationStartResponse(CamelModel):
    success: bool = True
    task_id: str
    message: str


class MigrationCancelResponse(CamelModel):
    success: bool = True
    message: str


class MigrationProgressUpdate(CamelModel):
    status: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    records_processed: int | None = Field(None, ge=0)
    records_skipped: int | None = Field(None, ge=0)
    total_records: int | None = Field(None, ge=0)
    error: str | None = None


class MigrationUploadResponse(CamelModel):
    success: bool = True
    message: str
    file_size: int


class MigrationProgressAck(CamelModel):
    success: bool = True
    message: str = "Progress updated"
