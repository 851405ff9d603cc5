from beamshare.dispatch.client import (
    ControlAck,
    EnqueueDiskCleanupResult,
    EnqueueThumbnailResult,
    HttpJobControl,
    JobControl,
    JobDispatchError,
    WorkerUnavailableError,
)

__all__ = [
    "ControlAck",
    "EnqueueDiskCleanupResult",
    "EnqueueThumbnailResult",
    "HttpJobControl",
    "JobControl",
    "JobDispatchError",
    "WorkerUnavailableError",
]
