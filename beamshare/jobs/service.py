from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Sequence
from uuid import uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from beamshare.core.config import Settings
from beamshare.db.models import TERMINAL_JOB_STATUSES, Job, JobKind, JobStatus
from beamshare.jobs.kinds import JobSpec
from beamshare.jobs.types import JobPage, JobSnapshot, JobSortField, SortDirection


class JobNotFoundError(RuntimeError):
    pass


class InvalidJobStateError(RuntimeError):
    pass


ALLOWED_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.QUEUED: {JobStatus.RUNNING},
    JobStatus.RUNNING: {JobStatus.SUCCEEDED, JobStatus.FAILED},
    JobStatus.SUCCEEDED: set(),
    JobStatus.FAILED: set(),
}

_SORT_COLUMNS = {
    JobSortField.SUBMITTED_AT: Job.submitted_at,
    JobSortField.FINISHED_AT: Job.finished_at,
    JobSortField.STATUS: Job.status,
    JobSortField.KIND: Job.kind,
}


class JobService:
    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]):
        self._settings = settings
        self._session_factory = session_factory

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def _coerce_utc(self, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def _enforce_transition(self, from_status: JobStatus, to_status: JobStatus) -> None:
        if to_status not in ALLOWED_TRANSITIONS[from_status]:
            raise InvalidJobStateError(f"Illegal transition: {from_status.value} -> {to_status.value}")

    def create_job(self, spec: JobSpec) -> JobSnapshot:
        now = self._now()
        with self._session_factory() as session:
            job = Job(
                id=str(uuid4()),
                kind=spec.kind,
                status=JobStatus.QUEUED,
                payload=spec.to_payload(),
                resource_key=spec.resource_key,
                submitted_at=now,
                updated_at=now,
            )
            session.add(job)
            session.commit()
            session.refresh(job)
            return self._to_snapshot(job)

    def get_job(self, job_id: str) -> JobSnapshot:
        with self._session_factory() as session:
            job = session.get(Job, job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            return self._to_snapshot(job)

    def list_jobs(
        self,
        *,
        offset: int = 0,
        limit: int | None = None,
        sort_by: JobSortField = JobSortField.SUBMITTED_AT,
        sort_dir: SortDirection = SortDirection.DESC,
        status: JobStatus | None = None,
        kind: JobKind | None = None,
    ) -> JobPage:
        if offset < 0:
            raise ValueError("offset must be >= 0")
        requested = self._settings.default_page_size if limit is None else limit
        bounded_limit = max(1, min(requested, self._settings.max_page_size))

        filters = []
        if status is not None:
            filters.append(Job.status == status)
        if kind is not None:
            filters.append(Job.kind == kind)

        column = _SORT_COLUMNS[sort_by]
        ordering = column.asc() if sort_dir == SortDirection.ASC else column.desc()
        tiebreak = Job.id.asc() if sort_dir == SortDirection.ASC else Job.id.desc()

        with self._session_factory() as session:
            total = session.scalar(select(func.count()).select_from(Job).where(*filters)) or 0
            rows = session.scalars(
                select(Job).where(*filters).order_by(ordering, tiebreak).offset(offset).limit(bounded_limit)
            ).all()
            return JobPage(
                items=[self._to_snapshot(row) for row in rows],
                total=total,
                offset=offset,
                limit=bounded_limit,
            )

    def list_queued(self) -> list[JobSnapshot]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(Job).where(Job.status == JobStatus.QUEUED).order_by(Job.submitted_at.asc(), Job.id.asc())
            ).all()
            return [self._to_snapshot(row) for row in rows]

    def mark_running(self, job_id: str) -> JobSnapshot:
        with self._session_factory() as session:
            job = session.get(Job, job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            self._enforce_transition(job.status, JobStatus.RUNNING)
            now = self._now()
            job.status = JobStatus.RUNNING
            job.started_at = now
            job.updated_at = now
            session.commit()
            session.refresh(job)
            return self._to_snapshot(job)

    def finish_job(
        self,
        job_id: str,
        *,
        success: bool,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> JobSnapshot:
        with self._session_factory() as session:
            job = session.get(Job, job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            next_status = JobStatus.SUCCEEDED if success else JobStatus.FAILED
            self._enforce_transition(job.status, next_status)
            now = self._now()
            started_at = self._coerce_utc(job.started_at)
            job.status = next_status
            job.error_code = None if success else (error_code or "EXECUTION_FAILED")
            job.error_message = None if success else error_message
            job.finished_at = max(now, started_at) if started_at is not None else now
            job.updated_at = now
            session.commit()
            session.refresh(job)
            return self._to_snapshot(job)

    def fail_interrupted(self) -> int:
        with self._session_factory() as session:
            now = self._now()
            stale_jobs = list(session.scalars(select(Job).where(Job.status == JobStatus.RUNNING)).all())
            for job in stale_jobs:
                self._enforce_transition(job.status, JobStatus.FAILED)
                job.status = JobStatus.FAILED
                job.error_code = "INTERRUPTED"
                job.error_message = "Worker stopped before the job finished"
                job.finished_at = now
                job.updated_at = now
            if stale_jobs:
                session.commit()
            return len(stale_jobs)

    def bulk_delete(self, job_ids: Sequence[str]) -> list[str]:
        if not job_ids:
            raise ValueError("job_ids must contain at least one id")
        with self._session_factory() as session:
            deletable = list(
                session.scalars(
                    select(Job.id).where(Job.id.in_(list(job_ids)), Job.status.in_(list(TERMINAL_JOB_STATUSES)))
                ).all()
            )
            if deletable:
                session.execute(delete(Job).where(Job.id.in_(deletable)))
                session.commit()
            return deletable

    def cleanup(self, older_than_days: int) -> int:
        if older_than_days < 1:
            raise ValueError("older_than_days must be >= 1")
        cutoff = self._now() - timedelta(days=older_than_days)
        with self._session_factory() as session:
            result = session.execute(
                delete(Job).where(
                    Job.status.in_(list(TERMINAL_JOB_STATUSES)),
                    Job.finished_at.is_not(None),
                    Job.finished_at < cutoff,
                )
            )
            session.commit()
            return result.rowcount or 0

    def _to_snapshot(self, job: Job) -> JobSnapshot:
        return JobSnapshot(
            id=job.id,
            kind=job.kind,
            status=job.status,
            payload=job.payload,
            resource_key=job.resource_key,
            error_code=job.error_code,
            error_message=job.error_message,
            submitted_at=self._coerce_utc(job.submitted_at),
            updated_at=self._coerce_utc(job.updated_at),
            started_at=self._coerce_utc(job.started_at),
            finished_at=self._coerce_utc(job.finished_at),
        )


def snapshot_to_dict(snapshot: JobSnapshot) -> dict[str, Any]:
    return {
        "id": snapshot.id,
        "kind": snapshot.kind.value,
        "status": snapshot.status.value,
        "payload": snapshot.payload,
        "resource_key": snapshot.resource_key,
        "error_code": snapshot.error_code,
        "error_message": snapshot.error_message,
        "submitted_at": snapshot.submitted_at,
        "updated_at": snapshot.updated_at,
        "started_at": snapshot.started_at,
        "finished_at": snapshot.finished_at,
    }
