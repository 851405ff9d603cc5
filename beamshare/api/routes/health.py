from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from beamshare.api.deps import get_upload_service
from beamshare.core.config import Settings, get_settings
from beamshare.core.schemas import CamelModel
from beamshare.uploads.service import UploadService

router = APIRouter(tags=["health"])


class HealthResponse(CamelModel):
    status: str
    service: str
    environment: str
    active_uploads: int
    timestamp: datetime


@router.get("/health", response_model=HealthResponse)
def health(
    settings: Settings = Depends(get_settings),
    service: UploadService = Depends(get_upload_service),
) -> HealthResponse:
    return HealthResponse(
        status="ok",
        service=settings.app_name,
        environment=settings.environment,
        active_uploads=service.active_sessions(),
        timestamp=datetime.now(timezone.utc),
    )
