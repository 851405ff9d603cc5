from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from beamshare.core.config import Settings, load_settings
from beamshare.core.logging import configure_logging
from beamshare.jobs.kinds import JobContext, JobSpec
from beamshare.jobs.runner import JobRunner
from beamshare.jobs.types import JobSnapshot
from beamshare.worker.schedule import MaintenanceScheduler, ScheduledTaskStatus

logger = logging.getLogger(__name__)


class WorkerState(str, Enum):
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class WorkerStateError(RuntimeError):
    pass


class WorkerNotAcceptingError(RuntimeError):
    pass


@dataclass(frozen=True)
class WorkerHealth:
    state: WorkerState
    accepting: bool
    queued: int
    running: int
    settings_pending: bool
    scheduled_tasks: list[ScheduledTaskStatus]
    timestamp: datetime

    @property
    def queue_depth(self) -> int:
        return self.queued + self.running


class WorkerControl:
    def __init__(
        self,
        settings: Settings,
        *,
        runner: JobRunner,
        scheduler: MaintenanceScheduler,
        context_factory: Callable[[Settings], JobContext],
        settings_loader: Callable[[], Settings] = load_settings,
    ):
        self._settings = settings
        self._runner = runner
        self._scheduler = scheduler
        self._context_factory = context_factory
        self._settings_loader = settings_loader
        self._pending_settings: Settings | None = None
        self._state = WorkerState.STOPPED
        self._transition_lock = threading.Lock()
        self._cond = threading.Condition()

    @property
    def state(self) -> WorkerState:
        with self._cond:
            return self._state

    @property
    def settings(self) -> Settings:
        with self._cond:
            return self._settings

    def _set_state(self, state: WorkerState) -> None:
        with self._cond:
            logger.info("Worker state %s -> %s", self._state.value, state.value)
            self._state = state
            self._cond.notify_all()

    def _apply_settings(self, settings: Settings) -> None:
        with self._cond:
            self._settings = settings
        configure_logging(settings.log_level)
        self._runner.update_context(self._context_factory(settings))
        self._runner.configure(concurrency=settings.worker_concurrency)
        self._scheduler.apply(settings)

    def _activate(self) -> None:
        with self._cond:
            pending = self._pending_settings
        if pending is not None:
            self._apply_settings(pending)
            with self._cond:
                self._pending_settings = None
        self._runner.start()
        self._scheduler.start()
        self._scheduler.resume()
        self._set_state(WorkerState.RUNNING)

    def start(self) -> str:
        with self._transition_lock:
            if self._state == WorkerState.RUNNING:
                raise WorkerStateError("Worker is already running")
            if self._state == WorkerState.DRAINING:
                raise WorkerStateError("Worker is draining; try again once it has stopped")
            self._activate()
        return "Worker started"

    def _drain(self, restart: bool) -> None:
        try:
            self._runner.shutdown(wait=True)
        finally:
            with self._transition_lock:
                if not restart:
                    self._set_state(WorkerState.STOPPED)
                    return
                try:
                    self._activate()
                except Exception:
                    logger.exception("Worker failed to come back after restart")
                    self._set_state(WorkerState.STOPPED)

    def _begin_drain(self, restart: bool) -> None:
        self._set_state(WorkerState.DRAINING)
        self._scheduler.pause()
        threading.Thread(target=self._drain, args=(restart,), name="beamshare-drain", daemon=True).start()

    def stop(self, *, wait: bool = False, timeout: float | None = None) -> str:
        with self._transition_lock:
            if self._state != WorkerState.RUNNING:
                raise WorkerStateError("Worker is not running")
            self._begin_drain(restart=False)
        if wait and self.wait_for_state(WorkerState.STOPPED, timeout=timeout):
            return "Worker stopped"
        return "Worker is draining; it stops once running jobs finish"

    def restart(self, *, wait: bool = False, timeout: float | None = None) -> str:
        with self._transition_lock:
            if self._state == WorkerState.DRAINING:
                raise WorkerStateError("Worker is draining; try again once it has stopped")
            if self._state == WorkerState.STOPPED:
                self._activate()
                return "Worker started"
            self._begin_drain(restart=True)
        if wait and self.wait_for_state(WorkerState.RUNNING, timeout=timeout):
            return "Worker restarted"
        return "Worker is restarting; it resumes once running jobs finish"

    def reload_settings(self) -> str:
        settings = self._settings_loader()
        with self._transition_lock:
            if self._state == WorkerState.STOPPED:
                with self._cond:
                    self._pending_settings = settings
                return "Settings reloaded; they apply on next start"
            self._apply_settings(settings)
        return "Settings reloaded"

    def submit(self, spec: JobSpec) -> JobSnapshot:
        with self._transition_lock:
            if self._state != WorkerState.RUNNING:
                raise WorkerNotAcceptingError(f"Worker is {self._state.value}; new jobs are not accepted")
            return self._runner.submit(spec)

    def health(self) -> WorkerHealth:
        with self._cond:
            state = self._state
            settings_pending = self._pending_settings is not None
        depth = self._runner.depth()
        return WorkerHealth(
            state=state,
            accepting=state == WorkerState.RUNNING,
            queued=depth.queued,
            running=depth.running,
            settings_pending=settings_pending,
            scheduled_tasks=self._scheduler.status(),
            timestamp=datetime.now(tz=timezone.utc),
        )

    def wait_for_state(self, state: WorkerState, timeout: float | None = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._state == state, timeout=timeout)

    def close(self, timeout: float | None = None) -> None:
        state = self.state
        if state == WorkerState.RUNNING:
            self.stop(wait=True, timeout=timeout)
        elif state == WorkerState.DRAINING:
            self.wait_for_state(WorkerState.STOPPED, timeout=timeout)
        self._scheduler.shutdown()
