from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI

from beamshare.api.routes.health import router as health_router
from beamshare.api.routes.upload import router as upload_router
from beamshare.api.routes.worker_admin import router as worker_admin_router
from beamshare.core.config import get_settings
from beamshare.core.logging import configure_logging
from beamshare.db.init_db import initialize_database
from beamshare.db.session import get_session_factory
from beamshare.dispatch.client import HttpJobControl, JobControl
from beamshare.uploads.registry import UploadSessionRegistry
from beamshare.uploads.service import UploadService, build_upload_service

logger = logging.getLogger(__name__)

REAP_JOB_ID = "reap-abandoned-uploads"


def _start_reaper(service: UploadService, interval_seconds: int) -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        service.reap_abandoned_sessions,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id=REAP_JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    initialize_database()
    reaper = _start_reaper(app.state.upload_service, settings.upload_reap_interval_seconds)
    logger.info("Upload reaper scheduled every %ss", settings.upload_reap_interval_seconds)
    try:
        yield
    finally:
        reaper.shutdown(wait=False)
        owned_control = app.state.owned_job_control
        if owned_control is not None:
            owned_control.close()


def create_app(*, job_control: JobControl | None = None, registry: UploadSessionRegistry | None = None) -> FastAPI:
    settings = get_settings()
    owned_control: HttpJobControl | None = None
    if job_control is None:
        owned_control = HttpJobControl(settings.worker_base_url, timeout_seconds=settings.worker_timeout_seconds)
        job_control = owned_control

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.job_control = job_control
    app.state.owned_job_control = owned_control
    app.state.upload_service = build_upload_service(settings, get_session_factory(), job_control, registry)
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(upload_router, prefix="/api/v1")
    app.include_router(worker_admin_router, prefix="/api/v1")
    return app
