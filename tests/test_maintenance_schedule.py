from __future__ import annotations

import os
import time
from pathlib import Path

import beamshare.db.session as db_session_module
from beamshare.core.config import DEFAULT_TEMP_CLEANUP_SCHEDULE, get_settings
from beamshare.db.init_db import initialize_database
from beamshare.jobs.kinds import DiskCleanup, JobSpec
from beamshare.jobs.service import JobService
from beamshare.jobs.types import JobSnapshot
from beamshare.worker.schedule import COMPLETED_JOBS_CLEANUP, TEMP_CLEANUP, MaintenanceScheduler


def setup_scheduler(tmp_path: Path, *, temp_schedule: str = "*/30 * * * *") -> tuple[MaintenanceScheduler, list[JobSpec]]:
    os.environ["BEAMSHARE_STORAGE_ROOT"] = (tmp_path / "data").as_posix()
    os.environ["BEAMSHARE_CRON_ENABLED"] = "true"
    os.environ["BEAMSHARE_TEMP_CLEANUP_SCHEDULE"] = temp_schedule
    os.environ["BEAMSHARE_TEMP_FILE_MAX_AGE_SECONDS"] = "3600"

    get_settings.cache_clear()
    db_session_module.reset_engine()
    initialize_database()
    settings = get_settings()
    service = JobService(settings, db_session_module.get_session_factory())
    submitted: list[JobSpec] = []

    def submit(spec: JobSpec) -> JobSnapshot:
        submitted.append(spec)
        return service.create_job(spec)

    return MaintenanceScheduler(settings, job_service=service, submit=submit), submitted


def test_start_registers_both_tasks_with_next_run(tmp_path: Path) -> None:
    scheduler, _submitted = setup_scheduler(tmp_path)
    scheduler.start()
    try:
        status = {task.id: task for task in scheduler.status()}
        assert set(status) == {COMPLETED_JOBS_CLEANUP, TEMP_CLEANUP}
        assert status[TEMP_CLEANUP].schedule == "*/30 * * * *"
    finally:
        scheduler.shutdown()


def test_invalid_schedule_falls_back_to_default(tmp_path: Path) -> None:
    scheduler, _submitted = setup_scheduler(tmp_path, temp_schedule="every now and then")
    scheduler.start()
    try:
        status = {task.id: task for task in scheduler.status()}
        assert status[TEMP_CLEANUP].schedule == DEFAULT_TEMP_CLEANUP_SCHEDULE
    finally:
        scheduler.shutdown()


def test_disabling_cron_removes_tasks(tmp_path: Path) -> None:
    scheduler, _submitted = setup_scheduler(tmp_path)
    scheduler.start()
    try:
        os.environ["BEAMSHARE_CRON_ENABLED"] = "false"
        get_settings.cache_clear()
        scheduler.apply(get_settings())
        assert scheduler.status() == []
    finally:
        scheduler.shutdown()


def test_temp_cleanup_queues_only_stale_entries(tmp_path: Path) -> None:
    scheduler, submitted = setup_scheduler(tmp_path)
    temp_root = get_settings().temp_root
    stale = temp_root / "abandoned01"
    stale.mkdir()
    fresh = temp_root / "inflight001"
    fresh.mkdir()
    past = time.time() - 7200
    os.utime(stale, (past, past))

    assert scheduler.run_temp_cleanup() == 1
    assert len(submitted) == 1
    job = submitted[0]
    assert isinstance(job, DiskCleanup)
    assert job.file_paths == (stale.as_posix(),)
    assert job.description == "orphaned upload temporaries"


def test_temp_cleanup_is_quiet_when_nothing_is_stale(tmp_path: Path) -> None:
    scheduler, submitted = setup_scheduler(tmp_path)
    assert scheduler.run_temp_cleanup() == 0
    assert submitted == []
