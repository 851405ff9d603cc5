from __future__ import annotations

from beamshare.uploads.assembler import Assembler
from beamshare.uploads.registry import InvalidChunkIndexError, UploadSessionFinishedError, UploadSessionRegistry
from beamshare.uploads.storage import ChunkStore
from beamshare.uploads.types import ChunkAck


class InvalidChunkSizeError(ValueError):
    def __init__(self, message: str, *, expected: int, received: int):
        super().__init__(message)
        self.expected = expected
        self.received = received


class ChunkIngestor:
    def __init__(self, registry: UploadSessionRegistry, chunk_store: ChunkStore, assembler: Assembler):
        self._registry = registry
        self._chunk_store = chunk_store
        self._assembler = assembler

    def ingest(self, session_id: str, chunk_index: int, data: bytes) -> ChunkAck:
        session = self._registry.get(session_id)
        if session.finished:
            raise UploadSessionFinishedError(f"Upload already completed: {session_id}")
        if chunk_index < 0 or chunk_index >= session.total_chunks:
            raise InvalidChunkIndexError(f"Chunk index {chunk_index} is outside [0, {session.total_chunks})")

        expected = session.expected_chunk_length(chunk_index)
        if len(data) != expected:
            raise InvalidChunkSizeError(
                f"Chunk {chunk_index} must be {expected} bytes, received {len(data)}",
                expected=expected,
                received=len(data),
            )

        self._chunk_store.write_chunk(session_id, chunk_index, data)
        result = self._registry.record_chunk(session_id, chunk_index)
        if not result.is_complete:
            return ChunkAck(
                session_id=session_id,
                chunk_index=chunk_index,
                received_chunks=result.received_chunks,
                total_chunks=result.total_chunks,
            )

        artifact = self._assembler.assemble(session_id)
        return ChunkAck(
            session_id=session_id,
            chunk_index=chunk_index,
            received_chunks=result.received_chunks,
            total_chunks=result.total_chunks,
            artifact=artifact,
        )
