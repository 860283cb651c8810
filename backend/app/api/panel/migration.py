"""Panel endpoints for starting, watching and cancelling a data migration.

Restricted to the Super Admin role of the tenant.
"""
from fastapi import APIRouter, Depends

from ...dependencies import get_migration_service, get_server_name, require_super_admin_staff
from ...models.staff import Staff
from ...schemas.migration import (
    CooldownResponse,
    CurrentMigrationResponse,
    MigrationCancelResponse,
    MigrationHistoryResponse,
    MigrationProgressResponse,
    MigrationStartRequest,
    MigrationStartResponse,
    MigrationStatusResponse,
)
from ...services.migration.service import MigrationService
from ...services.migration.state import MigrationSession, progress_percentage

router = APIRouter(prefix="/migration", tags=["panel-migration"])


def serialize_session(session: MigrationSession) -> CurrentMigrationResponse:
    progress = session.progress
    return CurrentMigrationResponse(
        task_id=session.id,
        type=session.migration_type,
        status=session.status,
        progress=MigrationProgressResponse(
            message=progress.message,
            records_processed=progress.records_processed,
            records_skipped=progress.records_skipped,
            total_records=progress.total_records,
            percentage=progress_percentage(session.status, progress),
        ),
        error=session.error,
        started_at=session.started_at,
        completed_at=session.completed_at,
    )


@router.get("/status", response_model=MigrationStatusResponse)
async def get_migration_status(
    server_name: str = Depends(get_server_name),
    current_staff: Staff = Depends(require_super_admin_staff),
    migrations: MigrationService = Depends(get_migration_service),
):
    report = await migrations.get_status(server_name)
    return MigrationStatusResponse(
        current_migration=(
            serialize_session(report.current_migration)
            if report.current_migration is not None
            else None
        ),
        last_migration_timestamp=report.last_migration_timestamp,
        history=[
            MigrationHistoryResponse(
                id=entry.id,
                type=entry.migration_type,
                status=entry.status,
                started_at=entry.started_at,
                completed_at=entry.completed_at,
                records_processed=entry.records_processed,
                records_skipped=entry.records_skipped,
                error=entry.error,
            )
            for entry in report.history
        ],
        cooldown=CooldownResponse(
            on_cooldown=report.cooldown.on_cooldown,
            remaining_time=report.cooldown.remaining_time_ms,
        ),
    )


@router.post("/start", response_model=MigrationStartResponse)
async def start_migration(
    payload: MigrationStartRequest,
    server_name: str = Depends(get_server_name),
    current_staff: Staff = Depends(require_super_admin_staff),
    migrations: MigrationService = Depends(get_migration_service),
):
    session = await migrations.start(server_name, payload.migration_type)
    return MigrationStartResponse(
        task_id=session.id,
        message="Migration task initiated. Waiting for Minecraft server to process.",
    )


@router.post("/cancel", response_model=MigrationCancelResponse)
async def cancel_migration(
    server_name: str = Depends(get_server_name),
    current_staff: Staff = Depends(require_super_admin_staff),
    migrations: MigrationService = Depends(get_migration_service),
):
    await migrations.cancel(server_name)
    return MigrationCancelResponse(message="Migration cancelled successfully")
