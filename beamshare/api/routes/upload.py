from __future__ import annotations

import logging
from typing import Any, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from beamshare.api.deps import get_current_user, get_upload_service
from beamshare.api.schemas.upload import (
    CancelUploadResponse,
    ChunkUploadResponse,
    InitUploadRequest,
    InitUploadResponse,
    UploadedFileResponse,
    UploadStatusResponse,
)
from beamshare.core.path_safety import PathSafetyError
from beamshare.uploads.assembler import MissingChunkError, SizeMismatchError
from beamshare.uploads.ingest import InvalidChunkSizeError
from beamshare.uploads.records import AccountNotFoundError
from beamshare.uploads.registry import InvalidChunkIndexError, UploadSessionFinishedError, UploadSessionNotFoundError
from beamshare.uploads.service import UploadAccessError, UploadQuotaError, UploadService, UploadValidationError
from beamshare.uploads.storage import UploadStorageError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/upload", tags=["upload"])


def _policy_detail(exc: UploadValidationError | UploadQuotaError) -> dict[str, Any]:
    return {"error": str(exc), "code": exc.code, **exc.details}


def _raise_upload_error(exc: Exception) -> NoReturn:
    if isinstance(exc, UploadSessionFinishedError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Upload already completed") from exc
    if isinstance(exc, (UploadSessionNotFoundError, PathSafetyError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Upload session not found") from exc
    if isinstance(exc, UploadAccessError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(exc, AccountNotFoundError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user") from exc
    if isinstance(exc, UploadQuotaError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=_policy_detail(exc)) from exc
    if isinstance(exc, UploadValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_policy_detail(exc)) from exc
    if isinstance(exc, InvalidChunkSizeError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": str(exc), "expectedSize": exc.expected, "receivedSize": exc.received},
        ) from exc
    if isinstance(exc, InvalidChunkIndexError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, (UploadStorageError, MissingChunkError, SizeMismatchError)):
        logger.error("Upload storage failure: %s", exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    raise exc


_HANDLED_ERRORS = (
    UploadSessionNotFoundError,
    PathSafetyError,
    UploadAccessError,
    AccountNotFoundError,
    UploadQuotaError,
    UploadValidationError,
    InvalidChunkSizeError,
    InvalidChunkIndexError,
    UploadStorageError,
    MissingChunkError,
    SizeMismatchError,
)


@router.post("/init", response_model=InitUploadResponse)
def init_upload(
    request: InitUploadRequest,
    user_id: str = Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
) -> InitUploadResponse:
    try:
        result = service.init_upload(user_id, request.filename, request.size)
    except _HANDLED_ERRORS as exc:
        _raise_upload_error(exc)
    return InitUploadResponse(
        id=result.id,
        chunk_size=result.chunk_size,
        total_chunks=result.total_chunks,
        message="Upload session created",
    )


@router.post("/chunk/{session_id}/{chunk_index}", response_model=ChunkUploadResponse)
async def upload_chunk(
    session_id: str,
    chunk_index: int,
    request: Request,
    user_id: str = Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
) -> ChunkUploadResponse:
    data = await request.body()
    try:
        result = await run_in_threadpool(service.upload_chunk, user_id, session_id, chunk_index, data)
    except _HANDLED_ERRORS as exc:
        _raise_upload_error(exc)

    ack = result.ack
    file_response = None
    if result.completion is not None:
        stored = result.completion.file
        file_response = UploadedFileResponse(
            file_id=stored.id,
            file_key=stored.key,
            actual_filename=stored.stored_name,
            original_name=stored.original_name,
            size=stored.size,
            mime_type=stored.mime_type,
            thumbnail_queued=result.completion.thumbnail_queued,
        )
    return ChunkUploadResponse(
        status="completed" if ack.is_complete else "received",
        chunk_index=ack.chunk_index,
        received_chunks=ack.received_chunks,
        total_chunks=ack.total_chunks,
        progress=ack.progress,
        is_complete=ack.is_complete,
        file=file_response,
    )


@router.get("/status/{session_id}", response_model=UploadStatusResponse)
def get_upload_status(
    session_id: str,
    user_id: str = Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
) -> UploadStatusResponse:
    try:
        upload = service.status(user_id, session_id)
    except _HANDLED_ERRORS as exc:
        _raise_upload_error(exc)
    session = upload.session
    return UploadStatusResponse(
        id=session.id,
        filename=session.filename,
        size=session.size,
        chunk_size=session.chunk_size,
        total_chunks=session.total_chunks,
        uploaded_chunks=sorted(session.received_chunks),
        missing_chunks=session.missing_chunks(),
        progress=upload.progress,
        status=upload.state,
        can_resume=not session.finished,
    )


@router.delete("/cancel/{session_id}", response_model=CancelUploadResponse)
def cancel_upload(
    session_id: str,
    user_id: str = Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
) -> CancelUploadResponse:
    try:
        service.cancel(user_id, session_id)
    except _HANDLED_ERRORS as exc:
        _raise_upload_error(exc)
    return CancelUploadResponse(success=True, message="Upload cancelled")
