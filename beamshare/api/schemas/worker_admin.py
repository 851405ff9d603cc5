from __future__ import annotations

from typing import Any

from beamshare.core.schemas import CamelModel


class WorkerActionResponse(CamelModel):
    success: bool
    message: str


class WorkerHealthProxyResponse(CamelModel):
    success: bool
    worker: dict[str, Any]
