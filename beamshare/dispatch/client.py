from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

import httpx

logger = logging.getLogger(__name__)

ERROR_PREFIX = "background-jobs"
MAX_ERROR_BODY_CHARS = 500


class JobDispatchError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(f"{ERROR_PREFIX}: {message}")
        self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500


class WorkerUnavailableError(JobDispatchError):
    pass


@dataclass(frozen=True)
class EnqueueThumbnailResult:
    job_id: str
    message: str | None = None


@dataclass(frozen=True)
class EnqueueDiskCleanupResult:
    count: int
    message: str | None = None


@dataclass(frozen=True)
class ControlAck:
    message: str


class JobControl(Protocol):
    def enqueue_thumbnail(
        self,
        file_id: str,
        actual_filename: str,
        mime_type: str,
        original_name: str | None = None,
    ) -> EnqueueThumbnailResult: ...

    def enqueue_disk_cleanup(self, file_paths: Sequence[str], description: str | None = None) -> EnqueueDiskCleanupResult: ...

    def health(self) -> dict[str, Any]: ...

    def start(self) -> ControlAck: ...

    def stop(self) -> ControlAck: ...

    def restart(self) -> ControlAck: ...

    def reload_settings(self) -> ControlAck: ...


def _truncate(value: str, max_len: int = MAX_ERROR_BODY_CHARS) -> str:
    if len(value) <= max_len:
        return value
    return f"{value[:max_len]}..."


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("error", "detail", "message"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    reason = response.reason_phrase or ""
    text = _truncate(response.text or "").strip()
    return " ".join(part for part in (str(response.status_code), reason, text) if part)


class HttpJobControl:
    def __init__(self, base_url: str, *, timeout_seconds: float, client: httpx.Client | None = None):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=timeout_seconds)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            response = self._client.request(method, url, json=payload, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            raise WorkerUnavailableError(f"request to {path} timed out after {self._timeout}s") from exc
        except httpx.RequestError as exc:
            raise WorkerUnavailableError(f"worker unreachable ({exc.__class__.__name__})") from exc

        if response.status_code >= 400:
            error = _error_text(response)
            if response.status_code >= 500:
                raise WorkerUnavailableError(error, status_code=response.status_code)
            raise JobDispatchError(error, status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as exc:
            raise JobDispatchError("worker returned invalid JSON", status_code=response.status_code) from exc
        if not isinstance(body, dict):
            raise JobDispatchError("worker returned an unexpected payload shape", status_code=response.status_code)
        if body.get("success") is False:
            raise JobDispatchError(str(body.get("error") or "request was not successful"), status_code=response.status_code)
        return body

    def enqueue_thumbnail(
        self,
        file_id: str,
        actual_filename: str,
        mime_type: str,
        original_name: str | None = None,
    ) -> EnqueueThumbnailResult:
        payload: dict[str, Any] = {
            "fileId": file_id,
            "actualFilename": actual_filename,
            "mimeType": mime_type,
        }
        if original_name is not None:
            payload["originalName"] = original_name
        body = self._request("POST", "/enqueue/thumbnail", payload)
        job_id = body.get("jobId")
        if not isinstance(job_id, str):
            raise JobDispatchError("worker response is missing jobId")
        return EnqueueThumbnailResult(job_id=job_id, message=body.get("message"))

    def enqueue_disk_cleanup(self, file_paths: Sequence[str], description: str | None = None) -> EnqueueDiskCleanupResult:
        payload: dict[str, Any] = {"filePaths": list(file_paths)}
        if description is not None:
            payload["description"] = description
        body = self._request("POST", "/enqueue/disk-cleanup", payload)
        return EnqueueDiskCleanupResult(count=int(body.get("count", len(file_paths))), message=body.get("message"))

    def health(self) -> dict[str, Any]:
        return self._request("GET", "/health")

    def _control(self, path: str) -> ControlAck:
        body = self._request("POST", path)
        return ControlAck(message=str(body.get("message") or ""))

    def start(self) -> ControlAck:
        return self._control("/start")

    def stop(self) -> ControlAck:
        return self._control("/stop")

    def restart(self) -> ControlAck:
        return self._control("/restart")

    def reload_settings(self) -> ControlAck:
        return self._control("/reload-settings")
