from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Request, status

from beamshare.jobs.kinds import DEFAULT_CLEANUP_DESCRIPTION, DiskCleanup, ThumbnailGeneration
from beamshare.worker.control import WorkerControl, WorkerNotAcceptingError, WorkerStateError
from beamshare.worker.schemas.control import (
    ControlResponse,
    EnqueueDiskCleanupRequest,
    EnqueueDiskCleanupResponse,
    EnqueueThumbnailRequest,
    EnqueueThumbnailResponse,
    ScheduledTaskResponse,
    WorkerHealthResponse,
)

router = APIRouter(tags=["control"])


def get_worker_control(request: Request) -> WorkerControl:
    return request.app.state.worker.control


def _ack(message: str) -> ControlResponse:
    return ControlResponse(success=True, message=message, timestamp=datetime.now(tz=timezone.utc))


@router.get("/health", response_model=WorkerHealthResponse)
def get_health(control: WorkerControl = Depends(get_worker_control)) -> WorkerHealthResponse:
    health = control.health()
    return WorkerHealthResponse(
        status="ok",
        state=health.state.value,
        accepting=health.accepting,
        queue_depth=health.queue_depth,
        queued=health.queued,
        running=health.running,
        settings_pending=health.settings_pending,
        scheduled_tasks=[
            ScheduledTaskResponse(id=task.id, schedule=task.schedule, next_run_at=task.next_run_at)
            for task in health.scheduled_tasks
        ],
        timestamp=health.timestamp,
    )


@router.post("/start", response_model=ControlResponse)
def start_worker(control: WorkerControl = Depends(get_worker_control)) -> ControlResponse:
    try:
        message = control.start()
    except WorkerStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _ack(message)


@router.post("/stop", response_model=ControlResponse)
def stop_worker(control: WorkerControl = Depends(get_worker_control)) -> ControlResponse:
    try:
        message = control.stop()
    except WorkerStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _ack(message)


@router.post("/restart", response_model=ControlResponse)
def restart_worker(control: WorkerControl = Depends(get_worker_control)) -> ControlResponse:
    try:
        message = control.restart()
    except WorkerStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _ack(message)


@router.post("/reload-settings", response_model=ControlResponse)
def reload_settings(control: WorkerControl = Depends(get_worker_control)) -> ControlResponse:
    try:
        message = control.reload_settings()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid settings: {exc}") from exc
    return _ack(message)


@router.post("/enqueue/thumbnail", response_model=EnqueueThumbnailResponse)
def enqueue_thumbnail(
    request: EnqueueThumbnailRequest,
    control: WorkerControl = Depends(get_worker_control),
) -> EnqueueThumbnailResponse:
    try:
        spec = ThumbnailGeneration(
            file_id=request.file_id,
            actual_filename=request.actual_filename,
            mime_type=request.mime_type,
            original_name=request.original_name,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    try:
        job = control.submit(spec)
    except WorkerNotAcceptingError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return EnqueueThumbnailResponse(
        success=True,
        job_id=job.id,
        message=f"Thumbnail generation queued for {request.original_name or request.actual_filename}",
    )


@router.post("/enqueue/disk-cleanup", response_model=EnqueueDiskCleanupResponse)
def enqueue_disk_cleanup(
    request: EnqueueDiskCleanupRequest,
    control: WorkerControl = Depends(get_worker_control),
) -> EnqueueDiskCleanupResponse:
    description = request.description or DEFAULT_CLEANUP_DESCRIPTION
    try:
        spec = DiskCleanup(file_paths=tuple(request.file_paths), description=description)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    try:
        job = control.submit(spec)
    except WorkerNotAcceptingError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    names = ", ".join(Path(path).name for path in request.file_paths[:3])
    return EnqueueDiskCleanupResponse(
        success=True,
        job_id=job.id,
        count=len(request.file_paths),
        message=f"Disk cleanup queued for {len(request.file_paths)} path(s) ({description}): {names}",
    )
