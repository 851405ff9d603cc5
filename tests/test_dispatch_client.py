from __future__ import annotations

import os
import subprocess
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

import beamshare.db.session as db_session_module
from beamshare.core.config import get_settings
from beamshare.db.init_db import initialize_database
from beamshare.dispatch.client import HttpJobControl, JobDispatchError, WorkerUnavailableError
from beamshare.worker import build_worker_runtime
from beamshare.worker.app import create_worker_app

WORKER_URL = "http://worker.test"


def fake_ffmpeg(command: list[str], **_kwargs: object) -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(command, 1, stdout="", stderr="no ffmpeg in tests")


def make_worker_client(tmp_path: Path, *, autostart: bool = True) -> TestClient:
    os.environ["BEAMSHARE_STORAGE_ROOT"] = (tmp_path / "data").as_posix()
    os.environ["BEAMSHARE_WORKER_AUTOSTART"] = "true" if autostart else "false"
    os.environ["BEAMSHARE_WORKER_CONCURRENCY"] = "2"
    os.environ["BEAMSHARE_CRON_ENABLED"] = "false"
    os.environ["BEAMSHARE_LOG_LEVEL"] = "INFO"

    get_settings.cache_clear()
    db_session_module.reset_engine()
    initialize_database()
    runtime = build_worker_runtime(get_settings(), db_session_module.get_session_factory(), command_runner=fake_ffmpeg)
    return TestClient(create_worker_app(runtime), base_url=WORKER_URL)


def test_enqueue_thumbnail_returns_job_id(tmp_path: Path) -> None:
    with make_worker_client(tmp_path) as worker:
        control = HttpJobControl(WORKER_URL, timeout_seconds=5, client=worker)
        result = control.enqueue_thumbnail("file-1", "Abc12345.png", "image/png", original_name="cat.png")
        assert result.job_id
        assert result.message == "Thumbnail generation queued for cat.png"

        job = worker.get(f"/jobs/{result.job_id}").json()
        assert job["kind"] == "thumbnail_generation"
        assert job["payload"]["file_id"] == "file-1"


def test_enqueue_rejections_carry_prefixed_worker_message(tmp_path: Path) -> None:
    with make_worker_client(tmp_path) as worker:
        control = HttpJobControl(WORKER_URL, timeout_seconds=5, client=worker)
        with pytest.raises(JobDispatchError) as excinfo:
            control.enqueue_thumbnail("file-1", "doc.pdf", "application/pdf")

    assert str(excinfo.value) == "background-jobs: Unsupported file type"
    assert excinfo.value.status_code == 400
    assert excinfo.value.is_client_error


def test_enqueue_disk_cleanup_counts_paths(tmp_path: Path) -> None:
    with make_worker_client(tmp_path) as worker:
        control = HttpJobControl(WORKER_URL, timeout_seconds=5, client=worker)
        uploads_root = get_settings().uploads_root
        result = control.enqueue_disk_cleanup(
            [(uploads_root / "a.bin").as_posix(), (uploads_root / "b.bin").as_posix()],
            description="rejected upload",
        )
    assert result.count == 2


def test_control_actions_round_trip(tmp_path: Path) -> None:
    with make_worker_client(tmp_path, autostart=False) as worker:
        control = HttpJobControl(WORKER_URL, timeout_seconds=5, client=worker)
        assert control.health()["state"] == "stopped"

        with pytest.raises(JobDispatchError, match="Worker is not running") as excinfo:
            control.stop()
        assert excinfo.value.status_code == 409

        with pytest.raises(JobDispatchError):
            control.enqueue_disk_cleanup([(get_settings().uploads_root / "a.bin").as_posix()])

        assert control.start().message == "Worker started"
        health = control.health()
        assert health["state"] == "running"
        assert health["accepting"] is True
        assert health["queueDepth"] == 0

        assert control.reload_settings().message == "Settings reloaded"


def test_job_listing_and_maintenance_routes(tmp_path: Path) -> None:
    with make_worker_client(tmp_path) as worker:
        control = HttpJobControl(WORKER_URL, timeout_seconds=5, client=worker)
        queued = control.enqueue_thumbnail("file-1", "Abc12345.png", "image/png")
        worker.app.state.worker.runner.wait_idle(timeout=10)

        listing = worker.get("/jobs", params={"limit": 10, "sortBy": "submittedAt", "sortDir": "asc"}).json()
        assert listing["success"] is True
        assert listing["total"] == 1
        assert listing["data"][0]["id"] == queued.job_id
        assert listing["data"][0]["status"] == "failed"
        assert listing["data"][0]["errorCode"] == "SOURCE_MISSING"

        deleted = worker.post("/jobs/bulk-delete", json={"jobIds": [queued.job_id]}).json()
        assert deleted["deletedIds"] == [queued.job_id]

        missing = worker.get(f"/jobs/{queued.job_id}")
        assert missing.status_code == 404
        assert missing.json()["success"] is False

        cleanup = worker.post("/jobs/cleanup", json={"olderThanDays": 0})
        assert cleanup.status_code == 400


def test_unreachable_worker_raises_unavailable() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.Client(transport=httpx.MockTransport(refuse))
    control = HttpJobControl(WORKER_URL, timeout_seconds=1, client=client)
    with pytest.raises(WorkerUnavailableError) as excinfo:
        control.health()
    assert str(excinfo.value) == "background-jobs: worker unreachable (ConnectError)"
    assert not excinfo.value.is_client_error


def test_worker_server_errors_are_unavailable() -> None:
    def broken(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="Bad Gateway", request=request)

    control = HttpJobControl(WORKER_URL, timeout_seconds=1, client=httpx.Client(transport=httpx.MockTransport(broken)))
    with pytest.raises(WorkerUnavailableError, match="502"):
        control.start()


def test_unsuccessful_body_is_an_error() -> None:
    def unsuccessful(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "error": "queue full"}, request=request)

    control = HttpJobControl(WORKER_URL, timeout_seconds=1, client=httpx.Client(transport=httpx.MockTransport(unsuccessful)))
    with pytest.raises(JobDispatchError, match="background-jobs: queue full"):
        control.enqueue_disk_cleanup(["/data/uploads/a.bin"])
