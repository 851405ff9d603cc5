from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from beamshare.core.schemas import CamelModel


class JobResponse(CamelModel):
    id: str
    kind: str
    status: str
    payload: dict[str, Any]
    resource_key: str | None
    error_code: str | None
    error_message: str | None
    submitted_at: datetime
    updated_at: datetime
    started_at: datetime | None
    finished_at: datetime | None


class JobListResponse(CamelModel):
    success: bool
    data: list[JobResponse]
    total: int
    offset: int
    limit: int
    has_next_page: bool
    has_previous_page: bool


class BulkDeleteJobsRequest(CamelModel):
    job_ids: list[str] = Field(min_length=1)


class BulkDeleteJobsResponse(CamelModel):
    success: bool
    count: int
    deleted_ids: list[str]


class CleanupJobsRequest(CamelModel):
    older_than_days: int = Field(default=7, ge=1)


class CleanupJobsResponse(CamelModel):
    success: bool
    count: int
