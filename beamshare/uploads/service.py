from __future__ import annotations

import logging
import mimetypes
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from beamshare.core.config import Settings
from beamshare.dispatch.client import JobControl, JobDispatchError
from beamshare.thumbs.media import is_supported_media_type
from beamshare.uploads.assembler import Assembler
from beamshare.uploads.ingest import ChunkIngestor
from beamshare.uploads.policy import UploadPolicy, admit
from beamshare.uploads.records import FileRecordStore
from beamshare.uploads.registry import InMemoryUploadSessionRegistry, UploadSessionRegistry
from beamshare.uploads.storage import ChunkStore, UploadStorageError
from beamshare.uploads.types import (
    AssembledArtifact,
    Rejected,
    UploadChunkResult,
    UploadCompletion,
    UploadInitResult,
    UploadSessionSnapshot,
    UploadStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


class UploadValidationError(ValueError):
    def __init__(self, message: str, *, code: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


class UploadQuotaError(RuntimeError):
    def __init__(self, message: str, *, code: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


class UploadAccessError(RuntimeError):
    pass


def _rejection_error(rejection: Rejected) -> UploadValidationError | UploadQuotaError:
    if rejection.is_quota:
        return UploadQuotaError(rejection.reason, code=rejection.code.value, details=rejection.details)
    return UploadValidationError(rejection.reason, code=rejection.code.value, details=rejection.details)


def detect_mime_type(filename: str) -> str:
    guessed, _encoding = mimetypes.guess_type(filename, strict=False)
    return guessed or DEFAULT_MIME_TYPE


class UploadService:
    def __init__(
        self,
        settings: Settings,
        *,
        registry: UploadSessionRegistry,
        chunk_store: ChunkStore,
        ingestor: ChunkIngestor,
        records: FileRecordStore,
        job_control: JobControl,
    ):
        self._settings = settings
        self._policy = UploadPolicy.from_settings(settings)
        self._registry = registry
        self._chunk_store = chunk_store
        self._ingestor = ingestor
        self._records = records
        self._job_control = job_control

    def active_sessions(self) -> int:
        return self._registry.count()

    def init_upload(self, owner_id: str, filename: str, size: int) -> UploadInitResult:
        account = self._records.get_account(owner_id)
        admission = admit(filename, size, account.quota, account.used_quota, policy=self._policy)
        if isinstance(admission, Rejected):
            raise _rejection_error(admission)

        session = self._registry.create(
            filename=filename,
            size=size,
            owner_id=owner_id,
            chunk_size=self._settings.chunk_size,
        )
        logger.info("Upload session %s opened by %s (%d bytes, %d chunks)", session.id, owner_id, size, session.total_chunks)
        return UploadInitResult(id=session.id, chunk_size=session.chunk_size, total_chunks=session.total_chunks)

    def _owned_session(self, owner_id: str, session_id: str) -> UploadSessionSnapshot:
        session = self._registry.get(session_id)
        if session.owner_id != owner_id:
            raise UploadAccessError(f"Upload session {session_id} belongs to another user")
        return session

    def upload_chunk(self, owner_id: str, session_id: str, chunk_index: int, data: bytes) -> UploadChunkResult:
        self._owned_session(owner_id, session_id)
        ack = self._ingestor.ingest(session_id, chunk_index, data)
        if ack.artifact is None:
            return UploadChunkResult(ack=ack)
        return UploadChunkResult(ack=ack, completion=self._finalize(ack.artifact))

    def status(self, owner_id: str, session_id: str) -> UploadStatus:
        session = self._owned_session(owner_id, session_id)
        received = len(session.received_chunks)
        if session.finished:
            state = "completed"
        elif received == 0:
            state = "initialized"
        elif received == session.total_chunks:
            state = "ready-to-finish"
        else:
            state = "in-progress"
        return UploadStatus(session=session, state=state)

    def cancel(self, owner_id: str, session_id: str) -> UploadSessionSnapshot:
        session = self._owned_session(owner_id, session_id)
        removed = self._registry.remove(session_id) or session
        self._chunk_store.discard(session_id)
        logger.info("Upload session %s cancelled by %s", session_id, owner_id)
        return removed

    def reap_abandoned_sessions(self) -> int:
        reaped = self._registry.reap_idle(self._settings.upload_session_idle_seconds)
        for session in reaped:
            try:
                self._chunk_store.discard(session.id)
            except UploadStorageError:
                logger.warning("Temporary data of abandoned upload %s left for scheduled cleanup", session.id)
        if reaped:
            logger.info("Reaped %d abandoned upload session(s)", len(reaped))
        return len(reaped)

    def _discard_artifact(self, artifact: AssembledArtifact, reason: str) -> None:
        try:
            self._job_control.enqueue_disk_cleanup([artifact.final_path.as_posix()], description=reason)
        except JobDispatchError as exc:
            logger.warning("Cleanup enqueue for %s failed, removing inline: %s", artifact.stored_name, exc)
            artifact.final_path.unlink(missing_ok=True)

    def _finalize(self, artifact: AssembledArtifact) -> UploadCompletion:
        session = artifact.session
        account = self._records.get_account(session.owner_id)
        admission = admit(session.filename, session.size, account.quota, account.used_quota, policy=self._policy)
        if isinstance(admission, Rejected):
            self._discard_artifact(artifact, f"rejected upload {session.id}")
            raise _rejection_error(admission)

        mime_type = detect_mime_type(session.filename)
        try:
            stored = self._records.record_upload(
                owner_id=session.owner_id,
                file_key=artifact.file_key,
                original_name=session.filename,
                stored_name=artifact.stored_name,
                size=session.size,
                mime_type=mime_type,
            )
        except SQLAlchemyError:
            self._discard_artifact(artifact, f"unrecorded upload {session.id}")
            raise

        thumbnail_queued = False
        if is_supported_media_type(mime_type):
            try:
                self._job_control.enqueue_thumbnail(
                    stored.id,
                    stored.stored_name,
                    mime_type,
                    original_name=stored.original_name,
                )
                thumbnail_queued = True
            except JobDispatchError as exc:
                logger.warning("Thumbnail enqueue for file %s failed: %s", stored.id, exc)

        logger.info("Stored upload %s as file %s (%s)", session.id, stored.id, mime_type)
        return UploadCompletion(file=stored, thumbnail_queued=thumbnail_queued)


def build_upload_service(
    settings: Settings,
    session_factory: sessionmaker[Session],
    job_control: JobControl,
    registry: UploadSessionRegistry | None = None,
) -> UploadService:
    registry = registry if registry is not None else InMemoryUploadSessionRegistry()
    chunk_store = ChunkStore(settings.temp_root)
    assembler = Assembler(registry, chunk_store, settings.uploads_root)
    return UploadService(
        settings,
        registry=registry,
        chunk_store=chunk_store,
        ingestor=ChunkIngestor(registry, chunk_store, assembler),
        records=FileRecordStore(session_factory),
        job_control=job_control,
    )
