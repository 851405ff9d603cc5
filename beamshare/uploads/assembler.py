from __future__ import annotations

import logging
import secrets
import shutil
from pathlib import Path

from beamshare.uploads.policy import file_extension
from beamshare.uploads.registry import UploadSessionRegistry
from beamshare.uploads.storage import ChunkStore, UploadStorageError
from beamshare.uploads.types import AssembledArtifact, UploadSessionSnapshot

logger = logging.getLogger(__name__)

FILE_KEY_BYTES = 8
COPY_BUFFER_BYTES = 1024 * 1024


class MissingChunkError(RuntimeError):
    pass


class SizeMismatchError(RuntimeError):
    pass


class Assembler:
    def __init__(self, registry: UploadSessionRegistry, chunk_store: ChunkStore, uploads_root: Path):
        self._registry = registry
        self._chunk_store = chunk_store
        self._uploads_root = uploads_root

    def _allocate_name(self, extension: str) -> tuple[str, str]:
        while True:
            file_key = secrets.token_urlsafe(FILE_KEY_BYTES)
            stored_name = f"{file_key}{extension}"
            if not (self._uploads_root / stored_name).exists():
                return file_key, stored_name

    def _write_partial(self, session: UploadSessionSnapshot) -> Path:
        partial = self._chunk_store.partial_path(session.id)
        try:
            with partial.open("wb") as output:
                for chunk_index in range(session.total_chunks):
                    chunk_path = self._chunk_store.chunk_path(session.id, chunk_index)
                    if not chunk_path.is_file():
                        raise MissingChunkError(f"Chunk {chunk_index} of upload {session.id} is missing")
                    with chunk_path.open("rb") as source:
                        shutil.copyfileobj(source, output, COPY_BUFFER_BYTES)
        except OSError as exc:
            raise UploadStorageError(f"Failed to assemble upload {session.id}: {exc.strerror or exc}") from exc

        assembled_size = partial.stat().st_size
        if assembled_size != session.size:
            raise SizeMismatchError(
                f"Assembled size {assembled_size} does not match declared size {session.size} for upload {session.id}"
            )
        return partial

    def assemble(self, session_id: str) -> AssembledArtifact:
        session = self._registry.get(session_id)
        try:
            partial = self._write_partial(session)
            file_key, stored_name = self._allocate_name(file_extension(session.filename))
            final_path = self._uploads_root / stored_name
            try:
                shutil.move(partial, final_path)
            except OSError as exc:
                raise UploadStorageError(f"Failed to publish upload {session.id}: {exc.strerror or exc}") from exc
        except (MissingChunkError, SizeMismatchError, UploadStorageError):
            self._registry.remove(session_id)
            logger.warning("Assembly of upload %s failed; temporary data kept for inspection", session_id)
            raise

        finished = self._registry.mark_finished(session_id)
        self._registry.remove(session_id)
        try:
            self._chunk_store.discard(session_id)
        except UploadStorageError:
            logger.warning("Could not remove chunk temporaries of upload %s", session_id)

        logger.info("Assembled upload %s into %s (%d bytes)", session_id, stored_name, session.size)
        return AssembledArtifact(
            session=finished,
            final_path=final_path,
            stored_name=stored_name,
            file_key=file_key,
        )
