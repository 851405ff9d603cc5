from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session, sessionmaker

from beamshare.core.config import Settings, load_settings
from beamshare.jobs.kinds import JobContext
from beamshare.jobs.runner import JobRunner
from beamshare.jobs.service import JobService
from beamshare.thumbs.generator import CommandRunner, ThumbnailGenerator
from beamshare.thumbs.metadata import FileMetadataStore
from beamshare.worker.control import WorkerControl
from beamshare.worker.schedule import MaintenanceScheduler


@dataclass(frozen=True)
class WorkerRuntime:
    job_service: JobService
    runner: JobRunner
    scheduler: MaintenanceScheduler
    control: WorkerControl


def build_worker_runtime(
    settings: Settings,
    session_factory: sessionmaker[Session],
    *,
    command_runner: CommandRunner = subprocess.run,
    settings_loader: Callable[[], Settings] = load_settings,
) -> WorkerRuntime:
    metadata = FileMetadataStore(session_factory)

    def context_factory(current: Settings) -> JobContext:
        return JobContext(
            settings=current,
            thumbnails=ThumbnailGenerator(current, runner=command_runner),
            metadata=metadata,
        )

    job_service = JobService(settings, session_factory)
    runner = JobRunner(job_service, context_factory(settings), concurrency=settings.worker_concurrency)
    scheduler = MaintenanceScheduler(settings, job_service=job_service, submit=lambda spec: control.submit(spec))
    control = WorkerControl(
        settings,
        runner=runner,
        scheduler=scheduler,
        context_factory=context_factory,
        settings_loader=settings_loader,
    )
    return WorkerRuntime(job_service=job_service, runner=runner, scheduler=scheduler, control=control)
