from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any


class RejectionCode(str, Enum):
    INVALID_SIZE = "invalid_size"
    BLACKLISTED_EXTENSION = "blacklisted_extension"
    FILE_TOO_LARGE = "file_too_large"
    QUOTA_EXCEEDED = "quota_exceeded"
    QUOTA_WOULD_EXCEED = "quota_would_exceed"


QUOTA_REJECTIONS = frozenset({RejectionCode.QUOTA_EXCEEDED, RejectionCode.QUOTA_WOULD_EXCEED})


@dataclass(frozen=True)
class Accepted:
    pass


@dataclass(frozen=True)
class Rejected:
    code: RejectionCode
    reason: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_quota(self) -> bool:
        return self.code in QUOTA_REJECTIONS


Admission = Accepted | Rejected


class ChunkProgress(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ChunkRecordResult:
    progress: ChunkProgress
    received_chunks: int
    total_chunks: int

    @property
    def is_complete(self) -> bool:
        return self.progress == ChunkProgress.COMPLETE


@dataclass(frozen=True)
class UploadSessionSnapshot:
    id: str
    filename: str
    size: int
    chunk_size: int
    total_chunks: int
    received_chunks: frozenset[int]
    finished: bool
    owner_id: str
    created_at: datetime
    last_activity_at: datetime

    def expected_chunk_length(self, chunk_index: int) -> int:
        if chunk_index == self.total_chunks - 1:
            return self.size - self.chunk_size * (self.total_chunks - 1)
        return self.chunk_size

    def missing_chunks(self) -> list[int]:
        return [index for index in range(self.total_chunks) if index not in self.received_chunks]


@dataclass(frozen=True)
class AssembledArtifact:
    session: UploadSessionSnapshot
    final_path: Path
    stored_name: str
    file_key: str


@dataclass(frozen=True)
class StoredFileSnapshot:
    id: str
    key: str
    original_name: str
    stored_name: str
    owner_id: str
    size: int
    mime_type: str
    created_at: datetime


@dataclass(frozen=True)
class AccountSnapshot:
    id: str
    quota: int
    used_quota: int


@dataclass(frozen=True)
class ChunkAck:
    session_id: str
    chunk_index: int
    received_chunks: int
    total_chunks: int
    artifact: AssembledArtifact | None = None

    @property
    def is_complete(self) -> bool:
        return self.artifact is not None

    @property
    def progress(self) -> float:
        if self.total_chunks <= 0:
            return 0.0
        return round(self.received_chunks / self.total_chunks * 100, 2)


@dataclass(frozen=True)
class UploadInitResult:
    id: str
    chunk_size: int
    total_chunks: int


@dataclass(frozen=True)
class UploadCompletion:
    file: StoredFileSnapshot
    thumbnail_queued: bool


@dataclass(frozen=True)
class UploadChunkResult:
    ack: ChunkAck
    completion: UploadCompletion | None = None


@dataclass(frozen=True)
class UploadStatus:
    session: UploadSessionSnapshot
    state: str

    @property
    def progress(self) -> float:
        if self.session.total_chunks <= 0:
            return 0.0
        return round(len(self.session.received_chunks) / self.session.total_chunks * 100, 2)
