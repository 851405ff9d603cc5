from __future__ import annotations

import math
import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from beamshare.uploads.types import ChunkProgress, ChunkRecordResult, UploadSessionSnapshot

SESSION_ID_BYTES = 18


class UploadSessionNotFoundError(RuntimeError):
    pass


class UploadSessionFinishedError(UploadSessionNotFoundError):
    pass


class InvalidChunkIndexError(ValueError):
    pass


class UploadSessionRegistry(Protocol):
    def create(self, *, filename: str, size: int, owner_id: str, chunk_size: int) -> UploadSessionSnapshot: ...

    def get(self, session_id: str) -> UploadSessionSnapshot: ...

    def record_chunk(self, session_id: str, chunk_index: int) -> ChunkRecordResult: ...

    def mark_finished(self, session_id: str) -> UploadSessionSnapshot: ...

    def remove(self, session_id: str) -> UploadSessionSnapshot | None: ...

    def reap_idle(self, idle_seconds: int) -> list[UploadSessionSnapshot]: ...

    def count(self) -> int: ...


@dataclass(slots=True)
class _SessionEntry:
    id: str
    filename: str
    size: int
    chunk_size: int
    total_chunks: int
    owner_id: str
    created_at: datetime
    last_activity_at: datetime
    received: set[int] = field(default_factory=set)
    finished: bool = False
    completion_claimed: bool = False
    removed: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)

    def snapshot(self) -> UploadSessionSnapshot:
        return UploadSessionSnapshot(
            id=self.id,
            filename=self.filename,
            size=self.size,
            chunk_size=self.chunk_size,
            total_chunks=self.total_chunks,
            received_chunks=frozenset(self.received),
            finished=self.finished,
            owner_id=self.owner_id,
            created_at=self.created_at,
            last_activity_at=self.last_activity_at,
        )


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class InMemoryUploadSessionRegistry:
    def __init__(self, clock: Callable[[], datetime] = _utc_now):
        self._clock = clock
        self._table_lock = threading.Lock()
        self._entries: dict[str, _SessionEntry] = {}

    def _new_session_id(self) -> str:
        while True:
            candidate = secrets.token_urlsafe(SESSION_ID_BYTES)
            if candidate not in self._entries:
                return candidate

    def _lookup(self, session_id: str) -> _SessionEntry:
        with self._table_lock:
            entry = self._entries.get(session_id)
        if entry is None:
            raise UploadSessionNotFoundError(f"Upload session not found: {session_id}")
        return entry

    def create(self, *, filename: str, size: int, owner_id: str, chunk_size: int) -> UploadSessionSnapshot:
        if size <= 0:
            raise ValueError("size must be > 0")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        now = self._clock()
        with self._table_lock:
            entry = _SessionEntry(
                id=self._new_session_id(),
                filename=filename,
                size=size,
                chunk_size=chunk_size,
                total_chunks=math.ceil(size / chunk_size),
                owner_id=owner_id,
                created_at=now,
                last_activity_at=now,
            )
            self._entries[entry.id] = entry
        return entry.snapshot()

    def get(self, session_id: str) -> UploadSessionSnapshot:
        entry = self._lookup(session_id)
        with entry.lock:
            if entry.removed:
                raise UploadSessionNotFoundError(f"Upload session not found: {session_id}")
            return entry.snapshot()

    def record_chunk(self, session_id: str, chunk_index: int) -> ChunkRecordResult:
        entry = self._lookup(session_id)
        with entry.lock:
            if entry.removed:
                raise UploadSessionNotFoundError(f"Upload session not found: {session_id}")
            if entry.finished or entry.completion_claimed:
                raise UploadSessionFinishedError(f"Upload already completed: {session_id}")
            if chunk_index < 0 or chunk_index >= entry.total_chunks:
                raise InvalidChunkIndexError(
                    f"Chunk index {chunk_index} is outside [0, {entry.total_chunks})"
                )
            entry.received.add(chunk_index)
            entry.last_activity_at = self._clock()
            if len(entry.received) == entry.total_chunks:
                entry.completion_claimed = True
                progress = ChunkProgress.COMPLETE
            else:
                progress = ChunkProgress.PENDING
            return ChunkRecordResult(
                progress=progress,
                received_chunks=len(entry.received),
                total_chunks=entry.total_chunks,
            )

    def mark_finished(self, session_id: str) -> UploadSessionSnapshot:
        entry = self._lookup(session_id)
        with entry.lock:
            if entry.removed:
                raise UploadSessionNotFoundError(f"Upload session not found: {session_id}")
            entry.finished = True
            return entry.snapshot()

    def remove(self, session_id: str) -> UploadSessionSnapshot | None:
        with self._table_lock:
            entry = self._entries.pop(session_id, None)
        if entry is None:
            return None
        with entry.lock:
            entry.removed = True
            return entry.snapshot()

    def reap_idle(self, idle_seconds: int) -> list[UploadSessionSnapshot]:
        cutoff = self._clock() - timedelta(seconds=idle_seconds)
        with self._table_lock:
            candidates = list(self._entries.values())

        reaped: list[UploadSessionSnapshot] = []
        for entry in candidates:
            with entry.lock:
                if entry.removed or entry.completion_claimed or entry.last_activity_at >= cutoff:
                    continue
                entry.removed = True
                snapshot = entry.snapshot()
            with self._table_lock:
                self._entries.pop(entry.id, None)
            reaped.append(snapshot)
        return reaped

    def count(self) -> int:
        with self._table_lock:
            return len(self._entries)
