from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from beamshare.db.models import JobKind, JobStatus
from beamshare.jobs.service import JobNotFoundError, JobService, snapshot_to_dict
from beamshare.jobs.types import JobSortField, SortDirection
from beamshare.worker.schemas.jobs import (
    BulkDeleteJobsRequest,
    BulkDeleteJobsResponse,
    CleanupJobsRequest,
    CleanupJobsResponse,
    JobListResponse,
    JobResponse,
)

router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_job_service(request: Request) -> JobService:
    return request.app.state.worker.job_service


@router.get("", response_model=JobListResponse)
def list_jobs(
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    sort_by: JobSortField = Query(default=JobSortField.SUBMITTED_AT, alias="sortBy"),
    sort_dir: SortDirection = Query(default=SortDirection.DESC, alias="sortDir"),
    job_status: JobStatus | None = Query(default=None, alias="status"),
    kind: JobKind | None = None,
    service: JobService = Depends(get_job_service),
) -> JobListResponse:
    page = service.list_jobs(
        offset=offset,
        limit=limit,
        sort_by=sort_by,
        sort_dir=sort_dir,
        status=job_status,
        kind=kind,
    )
    return JobListResponse(
        success=True,
        data=[JobResponse.model_validate(snapshot_to_dict(item)) for item in page.items],
        total=page.total,
        offset=page.offset,
        limit=page.limit,
        has_next_page=page.has_next_page,
        has_previous_page=page.has_previous_page,
    )


@router.get("/{job_id}", response_model=JobResponse)
def get_job(job_id: str, service: JobService = Depends(get_job_service)) -> JobResponse:
    try:
        job = service.get_job(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return JobResponse.model_validate(snapshot_to_dict(job))


@router.post("/bulk-delete", response_model=BulkDeleteJobsResponse)
def bulk_delete_jobs(request: BulkDeleteJobsRequest, service: JobService = Depends(get_job_service)) -> BulkDeleteJobsResponse:
    deleted = service.bulk_delete(request.job_ids)
    return BulkDeleteJobsResponse(success=True, count=len(deleted), deleted_ids=deleted)


@router.post("/cleanup", response_model=CleanupJobsResponse)
def cleanup_jobs(request: CleanupJobsRequest, service: JobService = Depends(get_job_service)) -> CleanupJobsResponse:
    removed = service.cleanup(request.older_than_days)
    return CleanupJobsResponse(success=True, count=removed)
