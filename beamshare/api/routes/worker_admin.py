from __future__ import annotations

import logging
from typing import Callable, NoReturn

from fastapi import APIRouter, Depends, HTTPException, status

from beamshare.api.deps import get_job_control, require_admin
from beamshare.api.schemas.worker_admin import WorkerActionResponse, WorkerHealthProxyResponse
from beamshare.dispatch.client import ControlAck, JobControl, JobDispatchError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/worker", tags=["admin"], dependencies=[Depends(require_admin)])

UNAVAILABLE_MESSAGE = "Job system unavailable"


def _raise_dispatch_error(exc: JobDispatchError) -> NoReturn:
    if exc.is_client_error:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    logger.warning("Worker control request failed: %s", exc)
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=UNAVAILABLE_MESSAGE) from exc


def _run_action(action: Callable[[], ControlAck]) -> WorkerActionResponse:
    try:
        ack = action()
    except JobDispatchError as exc:
        _raise_dispatch_error(exc)
    return WorkerActionResponse(success=True, message=ack.message)


@router.get("/health", response_model=WorkerHealthProxyResponse)
def worker_health(job_control: JobControl = Depends(get_job_control)) -> WorkerHealthProxyResponse:
    try:
        body = job_control.health()
    except JobDispatchError as exc:
        _raise_dispatch_error(exc)
    return WorkerHealthProxyResponse(success=True, worker=body)


@router.post("/start", response_model=WorkerActionResponse)
def start_worker(job_control: JobControl = Depends(get_job_control)) -> WorkerActionResponse:
    return _run_action(job_control.start)


@router.post("/stop", response_model=WorkerActionResponse)
def stop_worker(job_control: JobControl = Depends(get_job_control)) -> WorkerActionResponse:
    return _run_action(job_control.stop)


@router.post("/restart", response_model=WorkerActionResponse)
def restart_worker(job_control: JobControl = Depends(get_job_control)) -> WorkerActionResponse:
    return _run_action(job_control.restart)


@router.post("/reload-settings", response_model=WorkerActionResponse)
def reload_worker_settings(job_control: JobControl = Depends(get_job_control)) -> WorkerActionResponse:
    return _run_action(job_control.reload_settings)
