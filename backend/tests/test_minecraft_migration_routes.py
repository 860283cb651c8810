import asyncio
import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.application.state import get_migration_state
from app.background import JobStatus
from app.config import reset_settings
from app.dependencies import get_job_runner, get_migration_importer, verify_minecraft_api_key
from app.main import app
from app.models.api_key import ServerApiKey
from app.services.migration.state import MigrationProgress, MigrationStatus

SERVER = "alpha"
HEADERS = {"X-Server-Name": SERVER, "X-API-Key": "mc-key-1"}
EXPORT = json.dumps({"players": [{"minecraftUuid": "uuid-1"}]}).encode()


class RecordingRunner:
    def __init__(self) -> None:
        self.jobs = []

    async def enqueue(self, job):
        self.jobs.append(job)
        return job

    def status_for(self, key):
        if any(job.key == key for job in self.jobs):
            return JobStatus.QUEUED
        return None


class RecordingImporter:
    def __init__(self) -> None:
        self.calls = []

    async def process_file(self, path, server_name, session_id=None, api_key=None):
        self.calls.append((Path(path), server_name, session_id, api_key))


@pytest.fixture
def minecraft(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.setenv("MIGRATION_TEMP_DIR", str(tmp_path))
    monkeypatch.setenv("MIGRATION_FILE_SIZE_LIMIT", "1024")
    reset_settings()

    runner = RecordingRunner()
    importer = RecordingImporter()
    app.dependency_overrides[verify_minecraft_api_key] = lambda: ServerApiKey(
        server_name=SERVER, key_hash="0" * 64
    )
    app.dependency_overrides[get_job_runner] = lambda: runner
    app.dependency_overrides[get_migration_importer] = lambda: importer
    yield TestClient(app), runner, importer, tmp_path
    app.dependency_overrides.clear()
    reset_settings()


def _start_session() -> str:
    session = asyncio.run(get_migration_state().migrations.start(SERVER, "litebans"))
    return session.id


def _current():
    return asyncio.run(get_migration_state().migrations.get_current(SERVER))


def _upload(client: TestClient, content: bytes = EXPORT):
    return client.post(
        "/api/minecraft/migration/upload",
        files={"migrationFile": ("export.json", content, "application/json")},
        headers=HEADERS,
    )


class TestUpload:
    def test_upload_queues_import(self, minecraft):
        client, runner, importer, tmp_path = minecraft
        session_id = _start_session()

        response = _upload(client)

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Migration file uploaded successfully. Processing started.",
            "fileSize": len(EXPORT),
        }
        assert _current().status == "uploading_json"
        assert [job.key for job in runner.jobs] == [f"migration-import:{SERVER}:{session_id}"]

        asyncio.run(runner.jobs[0].handler())
        path, server_name, called_session, api_key = importer.calls[0]
        assert (server_name, called_session, api_key) == (SERVER, session_id, "mc-key-1")
        assert path.parent == tmp_path
        assert path.read_bytes() == EXPORT

    def test_oversized_upload_fails_session(self, minecraft):
        client, runner, _importer, tmp_path = minecraft
        _start_session()

        response = _upload(client, b"x" * 4096)

        assert response.status_code == 413
        body = response.json()["error"]
        assert body["code"] == "PAYLOAD_TOO_LARGE"
        assert body["details"]["limit"] == 1024
        assert _current() is None
        report = asyncio.run(get_migration_state().migrations.get_status(SERVER))
        assert report.history[0].error == "File size exceeds the allowed limit. Please contact support."
        assert list(tmp_path.iterdir()) == []
        assert runner.jobs == []

    def test_upload_after_processing_started_removes_file(self, minecraft):
        client, runner, _importer, tmp_path = minecraft
        _start_session()
        asyncio.run(
            get_migration_state().migrations.advance(
                SERVER, MigrationStatus.PROCESSING_DATA, MigrationProgress(message="Importing")
            )
        )

        response = _upload(client)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_MIGRATION_TRANSITION"
        assert list(tmp_path.iterdir()) == []
        assert runner.jobs == []

    def test_second_upload_while_import_queued_conflicts(self, minecraft):
        client, runner, _importer, tmp_path = minecraft
        _start_session()
        assert _upload(client).status_code == 200

        response = _upload(client)

        assert response.status_code == 409
        assert len(runner.jobs) == 1
        assert len(list(tmp_path.iterdir())) == 1

    def test_upload_without_session(self, minecraft):
        client, _runner, _importer, _tmp_path = minecraft

        response = _upload(client)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NO_ACTIVE_MIGRATION"

    def test_upload_without_file(self, minecraft):
        client, _runner, _importer, _tmp_path = minecraft
        _start_session()

        response = client.post("/api/minecraft/migration/upload", headers=HEADERS)

        assert response.status_code == 400

    def test_fourth_attempt_in_window_is_rate_limited(self, minecraft):
        client, _runner, _importer, _tmp_path = minecraft

        statuses = [_upload(client).status_code for _ in range(4)]

        assert statuses[:3] == [404, 404, 404]
        assert statuses[3] == 429
        error = _upload(client).json()["error"]
        assert error["code"] == "RATE_LIMITED"
        assert error["details"]["retryAfter"] == 3600

    def test_rate_limit_needs_credentials(self, minecraft):
        client, _runner, _importer, _tmp_path = minecraft

        response = client.post(
            "/api/minecraft/migration/upload",
            files={"migrationFile": ("export.json", EXPORT, "application/json")},
            headers={"X-Server-Name": SERVER},
        )

        assert response.status_code == 401


class TestProgress:
    def test_progress_advances_session(self, minecraft):
        client, _runner, _importer, _tmp_path = minecraft
        _start_session()

        response = client.post(
            "/api/minecraft/migration/progress",
            json={"status": "building_json", "message": "Exporting", "recordsProcessed": 10},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Progress updated"}
        current = _current()
        assert current.status == "building_json"
        assert current.progress.records_processed == 10

    def test_completed_report_starts_key_cooldown(self, minecraft):
        client, _runner, _importer, _tmp_path = minecraft
        _start_session()

        client.post(
            "/api/minecraft/migration/progress",
            json={"status": "completed", "message": "Done"},
            headers=HEADERS,
        )

        cooldowns = get_migration_state().cooldowns
        by_key = asyncio.run(cooldowns.check_migration_cooldown_by_api_key(SERVER, "mc-key-1"))
        assert by_key.on_cooldown

    def test_backwards_transition_conflicts(self, minecraft):
        client, _runner, _importer, _tmp_path = minecraft
        _start_session()
        client.post(
            "/api/minecraft/migration/progress",
            json={"status": "uploading_json", "message": "Uploading"},
            headers=HEADERS,
        )

        response = client.post(
            "/api/minecraft/migration/progress",
            json={"status": "building_json", "message": "Again"},
            headers=HEADERS,
        )

        assert response.status_code == 409

    def test_unknown_status_rejected(self, minecraft):
        client, _runner, _importer, _tmp_path = minecraft
        _start_session()

        response = client.post(
            "/api/minecraft/migration/progress",
            json={"status": "exploded", "message": "?"},
            headers=HEADERS,
        )

        assert response.status_code == 400
