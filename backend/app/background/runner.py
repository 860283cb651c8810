import asyncio
import logging
import uuid
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

JobHandler = Callable[[], Awaitable[None]]

# Finished job statuses kept for status_for lookups
MAX_TRACKED_STATUSES = 500


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class Job:
    key: str
    handler: JobHandler
    max_attempts: int = 1
    backoff_seconds: float = 1.0
    attempts: int = 0


class JobRunner:
    """
    In-process job runner for work that must outlive the request.
    Jobs with the same key are not enqueued twice while queued or running.
    """

    def __init__(self) -> None:
        self._task: asyncio.Task[None] | None = None
        self._jobs: dict[str, Job] = {}
        self._statuses: dict[str, JobStatus] = {}
        self._lock = asyncio.Lock()
        self._logger = logging.getLogger("modl.jobs")
        self._worker_id = str(uuid.uuid4())[:8]

    def status_for(self, key: str) -> JobStatus | None:
        return self._statuses.get(key)

    def _set_status(self, key: str, status: JobStatus) -> None:
        self._statuses.pop(key, None)
        self._statuses[key] = status
        while len(self._statuses) > MAX_TRACKED_STATUSES:
            oldest = next(iter(self._statuses))
            if self._statuses[oldest] in {JobStatus.QUEUED, JobStatus.RUNNING}:
                break
            del self._statuses[oldest]

    async def enqueue(self, job: Job) -> Job:
        async with self._lock:
            current = self._statuses.get(job.key)
            if current in {JobStatus.QUEUED, JobStatus.RUNNING}:
                self._logger.info(
                    "[JOB] enqueue_skipped job_key=%s reason=duplicate status=%s worker_id=%s",
                    job.key,
                    current.value,
                    self._worker_id,
                )
                return job

            self._jobs[job.key] = job
            self._set_status(job.key, JobStatus.QUEUED)
            self._ensure_worker()
            self._logger.info(
                "[JOB] enqueued job_key=%s worker_id=%s", job.key, self._worker_id
            )
        return job

    async def drain(self) -> None:
        """Wait until every queued and running job has finished."""
        while self._task and not self._task.done() and (
            self._jobs
            or any(status is JobStatus.RUNNING for status in self._statuses.values())
        ):
            await asyncio.sleep(0.05)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    def _ensure_worker(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._worker())

    async def _worker(self) -> None:
        try:
            while True:
                if not self._jobs:
                    await asyncio.sleep(0.05)
                    continue
                job_key = next(iter(self._jobs))
                job = self._jobs.pop(job_key)
                await self._run_job(job)
        except asyncio.CancelledError:
            return

    async def _run_job(self, job: Job) -> None:
        self._set_status(job.key, JobStatus.RUNNING)
        self._logger.info("[JOB] started job_key=%s worker_id=%s", job.key, self._worker_id)

        while job.attempts < job.max_attempts:
            try:
                await job.handler()
            except asyncio.CancelledError:
                self._set_status(job.key, JobStatus.FAILED)
                raise
            except Exception as exc:  # noqa: BLE001
                job.attempts += 1
                self._logger.error(
                    "[JOB] failed job_key=%s attempt=%s/%s worker_id=%s",
                    job.key,
                    job.attempts,
                    job.max_attempts,
                    self._worker_id,
                    exc_info=exc,
                )
                if job.attempts >= job.max_attempts:
                    self._set_status(job.key, JobStatus.FAILED)
                    self._logger.error(
                        "[JOB] failed_permanently job_key=%s worker_id=%s",
                        job.key,
                        self._worker_id,
                    )
                    return
                await asyncio.sleep(job.backoff_seconds * job.attempts)
            else:
                self._set_status(job.key, JobStatus.SUCCEEDED)
                self._logger.info(
                    "[JOB] succeeded job_key=%s worker_id=%s", job.key, self._worker_id
                )
                return
