from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from beamshare.core.config import (
    DEFAULT_COMPLETED_JOBS_CLEANUP_SCHEDULE,
    DEFAULT_TEMP_CLEANUP_SCHEDULE,
    Settings,
)
from beamshare.jobs.kinds import DiskCleanup, JobSpec
from beamshare.jobs.service import JobService
from beamshare.jobs.types import JobSnapshot
from beamshare.uploads.storage import ChunkStore

logger = logging.getLogger(__name__)

COMPLETED_JOBS_CLEANUP = "completed-jobs-cleanup"
TEMP_CLEANUP = "temp-cleanup"


@dataclass(frozen=True)
class ScheduledTaskStatus:
    id: str
    schedule: str
    next_run_at: datetime | None


class MaintenanceScheduler:
    def __init__(
        self,
        settings: Settings,
        *,
        job_service: JobService,
        submit: Callable[[JobSpec], JobSnapshot],
        scheduler: BackgroundScheduler | None = None,
    ):
        self._settings = settings
        self._job_service = job_service
        self._submit = submit
        self._scheduler = scheduler or BackgroundScheduler(timezone=settings.cron_timezone)
        self._schedules: dict[str, str] = {}

    def _trigger(self, expression: str, fallback: str, task_id: str) -> tuple[CronTrigger, str]:
        try:
            return CronTrigger.from_crontab(expression, timezone=self._settings.cron_timezone), expression
        except (ValueError, KeyError) as exc:
            logger.warning("Invalid schedule %r for %s (%s); using %r", expression, task_id, exc, fallback)
            return CronTrigger.from_crontab(fallback, timezone="UTC"), fallback

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start(paused=True)
            self.apply(self._settings)

    def apply(self, settings: Settings) -> None:
        self._settings = settings
        if not self._scheduler.running:
            return
        if not settings.cron_enabled:
            for task_id in list(self._schedules):
                if self._scheduler.get_job(task_id) is not None:
                    self._scheduler.remove_job(task_id)
            self._schedules.clear()
            logger.info("Scheduled maintenance disabled")
            return

        tasks = (
            (
                COMPLETED_JOBS_CLEANUP,
                settings.completed_jobs_cleanup_schedule,
                DEFAULT_COMPLETED_JOBS_CLEANUP_SCHEDULE,
                self.run_completed_jobs_cleanup,
            ),
            (
                TEMP_CLEANUP,
                settings.temp_cleanup_schedule,
                DEFAULT_TEMP_CLEANUP_SCHEDULE,
                self.run_temp_cleanup,
            ),
        )
        for task_id, expression, fallback, func in tasks:
            trigger, effective = self._trigger(expression, fallback, task_id)
            self._scheduler.add_job(
                func,
                trigger,
                id=task_id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            self._schedules[task_id] = effective

    def pause(self) -> None:
        if self._scheduler.running:
            self._scheduler.pause()

    def resume(self) -> None:
        if self._scheduler.running:
            self._scheduler.resume()

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def status(self) -> list[ScheduledTaskStatus]:
        entries: list[ScheduledTaskStatus] = []
        for task_id, expression in sorted(self._schedules.items()):
            job = self._scheduler.get_job(task_id)
            next_run_at = getattr(job, "next_run_time", None) if job is not None else None
            entries.append(ScheduledTaskStatus(id=task_id, schedule=expression, next_run_at=next_run_at))
        return entries

    def run_completed_jobs_cleanup(self) -> int:
        removed = self._job_service.cleanup(self._settings.completed_job_retention_days)
        logger.info("Removed %d finished job record(s)", removed)
        return removed

    def run_temp_cleanup(self) -> int:
        stale = ChunkStore(self._settings.temp_root).stale_entries(self._settings.temp_file_max_age_seconds)
        if not stale:
            return 0
        spec = DiskCleanup(
            file_paths=tuple(path.as_posix() for path in stale),
            description="orphaned upload temporaries",
        )
        try:
            self._submit(spec)
        except RuntimeError as exc:
            logger.warning("Temp cleanup was not queued: %s", exc)
            return 0
        logger.info("Queued cleanup of %d orphaned temporary entries", len(stale))
        return len(stale)
