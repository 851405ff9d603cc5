from __future__ import annotations

from datetime import datetime

from pydantic import Field

from beamshare.core.schemas import CamelModel


class EnqueueThumbnailRequest(CamelModel):
    file_id: str = Field(min_length=1, max_length=64)
    actual_filename: str = Field(min_length=1, max_length=255)
    mime_type: str = Field(min_length=1, max_length=255)
    original_name: str | None = Field(default=None, max_length=255)


class EnqueueDiskCleanupRequest(CamelModel):
    file_paths: list[str] = Field(min_length=1)
    description: str | None = Field(default=None, max_length=255)


class EnqueueThumbnailResponse(CamelModel):
    success: bool
    job_id: str
    message: str


class EnqueueDiskCleanupResponse(CamelModel):
    success: bool
    job_id: str
    count: int
    message: str


class ControlResponse(CamelModel):
    success: bool
    message: str
    timestamp: datetime


class ScheduledTaskResponse(CamelModel):
    id: str
    schedule: str
    next_run_at: datetime | None


class WorkerHealthResponse(CamelModel):
    status: str
    state: str
    accepting: bool
    queue_depth: int
    queued: int
    running: int
    settings_pending: bool
    scheduled_tasks: list[ScheduledTaskResponse]
    timestamp: datetime
