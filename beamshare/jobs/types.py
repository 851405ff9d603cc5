from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from beamshare.db.models import JobKind, JobStatus


class JobSortField(str, Enum):
    SUBMITTED_AT = "submittedAt"
    FINISHED_AT = "finishedAt"
    STATUS = "status"
    KIND = "kind"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(slots=True)
class JobSnapshot:
    id: str
    kind: JobKind
    status: JobStatus
    payload: dict[str, Any]
    resource_key: str | None
    error_code: str | None
    error_message: str | None
    submitted_at: datetime
    updated_at: datetime
    started_at: datetime | None
    finished_at: datetime | None


@dataclass(frozen=True)
class JobPage:
    items: list[JobSnapshot]
    total: int
    offset: int
    limit: int

    @property
    def has_next_page(self) -> bool:
        return self.offset + self.limit < self.total

    @property
    def has_previous_page(self) -> bool:
        return self.offset > 0


@dataclass(frozen=True)
class RunnerDepth:
    queued: int
    running: int
