import logging
import uuid
from pathlib import Path

from fastapi import APIRouter, Depends, File, Header, UploadFile

from ...application.migration_rate_limit import RateLimitDecision, migration_upload_rate_limit
from ...background import Job, JobRunner, JobStatus
from ...config import settings
from ...dependencies import (
    get_job_runner,
    get_migration_importer,
    get_migration_service,
    get_server_name,
    verify_minecraft_api_key,
)
from ...errors import ConflictError, PayloadTooLargeError, ValidationError
from ...models.api_key import ServerApiKey
from ...schemas.migration import (
    MigrationProgressAck,
    MigrationProgressUpdate,
    MigrationUploadResponse,
)
from ...services.migration.importer import MigrationImporter
from ...services.migration.service import MigrationService, NoActiveMigrationError
from ...services.migration.state import MigrationProgress, MigrationStatus

UPLOAD_CHUNK_SIZE = 1024 * 1024
GIB = 1024 * 1024 * 1024

router = APIRouter(prefix="/migration", tags=["minecraft-migration"])

logger = logging.getLogger("modl.migration.upload")


class _UploadTooLarge(Exception):
    def __init__(self, size: int):
        self.size = size


async def _save_upload(upload: UploadFile, destination: Path, limit: int) -> int:
    size = 0
    with destination.open("wb") as handle:
        while chunk := await upload.read(UPLOAD_CHUNK_SIZE):
            size += len(chunk)
            if size > limit:
                raise _UploadTooLarge(size)
            handle.write(chunk)
    return size


@router.post("/upload", response_model=MigrationUploadResponse)
async def upload_migration_file(
    migration_file: UploadFile | None = File(None, alias="migrationFile"),
    server_name: str = Depends(get_server_name),
    api_key: ServerApiKey = Depends(verify_minecraft_api_key),
    rate_limit: RateLimitDecision = Depends(migration_upload_rate_limit),
    migrations: MigrationService = Depends(get_migration_service),
    importer: MigrationImporter = Depends(get_migration_importer),
    runner: JobRunner = Depends(get_job_runner),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
):
    """Receive the export built by the Minecraft server and queue its import."""
    if migration_file is None:
        raise ValidationError("No file uploaded")

    current = await migrations.get_current(server_name)
    if current is None:
        raise NoActiveMigrationError()

    job_key = f"migration-import:{server_name}:{current.id}"
    if runner.status_for(job_key) in {JobStatus.QUEUED, JobStatus.RUNNING}:
        raise ConflictError("Migration file is already being processed")

    limit = settings.migration_file_size_limit
    temp_dir = Path(settings.migration_temp_dir)
    temp_dir.mkdir(parents=True, exist_ok=True)
    destination = temp_dir / f"migration-{server_name}-{uuid.uuid4().hex}.json"

    try:
        file_size = await _save_upload(migration_file, destination, limit)
    except _UploadTooLarge as exc:
        destination.unlink(missing_ok=True)
        await migrations.advance(
            server_name,
            MigrationStatus.FAILED,
            MigrationProgress(message="Migration file exceeds size limit"),
            session_id=current.id,
            error="File size exceeds the allowed limit. Please contact support.",
        )
        logger.warning(
            "[MIGRATION] upload_rejected server=%s reason=too_large size>%s limit=%s",
            server_name,
            exc.size,
            limit,
        )
        raise PayloadTooLargeError(
            "Migration file exceeds the size limit of "
            f"{limit / GIB:.2f}GB. Please contact support to increase your limit.",
            details={"fileSize": exc.size, "limit": limit},
        ) from None
    except Exception:
        destination.unlink(missing_ok=True)
        raise
    finally:
        await migration_file.close()

    async def run_import() -> None:
        await importer.process_file(
            destination, server_name, session_id=current.id, api_key=x_api_key
        )

    # The importer owns the file once queued
    try:
        await migrations.advance(
            server_name,
            MigrationStatus.UPLOADING_JSON,
            MigrationProgress(
                message="Migration file uploaded successfully. Starting data processing..."
            ),
            session_id=current.id,
        )
        await runner.enqueue(Job(key=job_key, handler=run_import))
    except Exception:
        destination.unlink(missing_ok=True)
        raise
    logger.info(
        "[MIGRATION] upload_accepted server=%s session_id=%s size=%s attempt=%s",
        server_name,
        current.id,
        file_size,
        rate_limit.attempt_count,
    )
    return MigrationUploadResponse(
        message="Migration file uploaded successfully. Processing started.",
        file_size=file_size,
    )


@router.post("/progress", response_model=MigrationProgressAck)
async def report_migration_progress(
    payload: MigrationProgressUpdate,
    server_name: str = Depends(get_server_name),
    api_key: ServerApiKey = Depends(verify_minecraft_api_key),
    migrations: MigrationService = Depends(get_migration_service),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
):
    """Progress reported by the Minecraft server while it builds the export."""
    await migrations.advance(
        server_name,
        payload.status,
        MigrationProgress(
            message=payload.message,
            records_processed=payload.records_processed or 0,
            records_skipped=payload.records_skipped or 0,
            total_records=payload.total_records,
        ),
        error=payload.error,
        api_key=x_api_key,
    )
    return MigrationProgressAck()
