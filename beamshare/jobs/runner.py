from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Iterator

from beamshare.jobs.kinds import JobContext, JobSpec, job_spec_from_payload
from beamshare.jobs.service import InvalidJobStateError, JobNotFoundError, JobService
from beamshare.jobs.types import JobSnapshot, RunnerDepth

logger = logging.getLogger(__name__)


class RunnerNotStartedError(RuntimeError):
    pass


class JobRunner:
    def __init__(self, service: JobService, context: JobContext, *, concurrency: int):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._service = service
        self._context = context
        self._concurrency = concurrency
        self._lifecycle_lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._state = threading.Condition()
        self._queued = 0
        self._running = 0
        self._resource_locks: dict[str, tuple[threading.Lock, int]] = {}

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def update_context(self, context: JobContext) -> None:
        self._context = context

    def configure(self, *, concurrency: int) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._concurrency = concurrency

    def start(self) -> int:
        with self._lifecycle_lock:
            if self._executor is not None:
                return 0
            interrupted = self._service.fail_interrupted()
            if interrupted:
                logger.warning("Marked %d interrupted job(s) as failed", interrupted)
            self._executor = ThreadPoolExecutor(max_workers=self._concurrency, thread_name_prefix="beamshare-job")
            pending = self._service.list_queued()
            for job in pending:
                self._dispatch(job)
        if pending:
            logger.info("Resumed %d queued job(s)", len(pending))
        return len(pending)

    def shutdown(self, *, wait: bool = True) -> None:
        with self._lifecycle_lock:
            executor = self._executor
            self._executor = None
        if executor is not None:
            executor.shutdown(wait=wait)

    def submit(self, spec: JobSpec) -> JobSnapshot:
        with self._lifecycle_lock:
            if self._executor is None:
                raise RunnerNotStartedError("Job runner is not started")
            job = self._service.create_job(spec)
            self._dispatch(job)
        logger.info("Queued %s job %s", job.kind.value, job.id)
        return job

    def depth(self) -> RunnerDepth:
        with self._state:
            return RunnerDepth(queued=self._queued, running=self._running)

    def wait_idle(self, timeout: float | None = None) -> bool:
        with self._state:
            return self._state.wait_for(lambda: self._queued == 0 and self._running == 0, timeout=timeout)

    def _dispatch(self, job: JobSnapshot) -> None:
        executor = self._executor
        if executor is None:
            raise RunnerNotStartedError("Job runner is not started")
        with self._state:
            self._queued += 1
        executor.submit(self._run, job.id, job.resource_key)

    @contextmanager
    def _resource_guard(self, resource_key: str | None) -> Iterator[None]:
        if resource_key is None:
            yield
            return
        with self._state:
            lock, users = self._resource_locks.get(resource_key, (threading.Lock(), 0))
            self._resource_locks[resource_key] = (lock, users + 1)
        try:
            with lock:
                yield
        finally:
            with self._state:
                lock, users = self._resource_locks[resource_key]
                if users <= 1:
                    del self._resource_locks[resource_key]
                else:
                    self._resource_locks[resource_key] = (lock, users - 1)

    def _run(self, job_id: str, resource_key: str | None) -> None:
        started = False
        try:
            with self._resource_guard(resource_key):
                with self._state:
                    self._queued -= 1
                    self._running += 1
                started = True
                self._execute(job_id)
        except Exception:
            logger.exception("Job %s could not be processed", job_id)
        finally:
            with self._state:
                if started:
                    self._running -= 1
                else:
                    self._queued -= 1
                self._state.notify_all()

    def _execute(self, job_id: str) -> None:
        try:
            job = self._service.mark_running(job_id)
        except (JobNotFoundError, InvalidJobStateError) as exc:
            logger.info("Skipping job %s: %s", job_id, exc)
            return

        try:
            spec = job_spec_from_payload(job.kind, job.payload)
            spec.execute(self._context)
        except Exception as exc:
            logger.warning("Job %s (%s) failed: %s", job.id, job.kind.value, exc)
            error_code = getattr(exc, "code", None)
            self._service.finish_job(
                job.id,
                success=False,
                error_code=error_code if isinstance(error_code, str) else None,
                error_message=str(exc) or exc.__class__.__name__,
            )
            return

        self._service.finish_job(job.id, success=True)
        logger.info("Job %s (%s) succeeded", job.id, job.kind.value)
