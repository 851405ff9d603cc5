from __future__ import annotations

from pydantic import Field

from beamshare.core.schemas import CamelModel


class InitUploadRequest(CamelModel):
    filename: str = Field(min_length=1, max_length=255)
    size: int


class InitUploadResponse(CamelModel):
    id: str
    chunk_size: int
    total_chunks: int
    message: str


class UploadedFileResponse(CamelModel):
    file_id: str
    file_key: str
    actual_filename: str
    original_name: str
    size: int
    mime_type: str
    thumbnail_queued: bool


class ChunkUploadResponse(CamelModel):
    status: str
    chunk_index: int
    received_chunks: int
    total_chunks: int
    progress: float
    is_complete: bool
    file: UploadedFileResponse | None = None


class UploadStatusResponse(CamelModel):
    id: str
    filename: str
    size: int
    chunk_size: int
    total_chunks: int
    uploaded_chunks: list[int]
    missing_chunks: list[int]
    progress: float
    status: str
    can_resume: bool


class CancelUploadResponse(CamelModel):
    success: bool
    message: str
