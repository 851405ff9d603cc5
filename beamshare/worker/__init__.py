from beamshare.worker.control import WorkerControl, WorkerNotAcceptingError, WorkerState, WorkerStateError
from beamshare.worker.runtime import WorkerRuntime, build_worker_runtime

__all__ = [
    "WorkerControl",
    "WorkerNotAcceptingError",
    "WorkerRuntime",
    "WorkerState",
    "WorkerStateError",
    "build_worker_runtime",
]
