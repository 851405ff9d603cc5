from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from beamshare.core.config import Settings, get_settings
from beamshare.dispatch.client import JobControl
from beamshare.uploads.service import UploadService


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.upload_service


def get_job_control(request: Request) -> JobControl:
    return request.app.state.job_control


def get_current_user(request: Request, settings: Settings = Depends(get_settings)) -> str:
    user_id = (request.headers.get(settings.user_header) or "").strip()
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return user_id


def require_admin(user_id: str = Depends(get_current_user), settings: Settings = Depends(get_settings)) -> str:
    if user_id not in settings.admin_users:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator access required")
    return user_id
