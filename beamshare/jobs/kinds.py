from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar

from beamshare.core.config import Settings
from beamshare.core.path_safety import PathSafetyError, is_within_roots, resolve_under_root, validate_stored_name
from beamshare.db.models import JobKind
from beamshare.thumbs.generator import ThumbnailGenerator
from beamshare.thumbs.media import is_supported_media_type
from beamshare.thumbs.metadata import MetadataSink

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_DESCRIPTION = "manual cleanup"


class JobExecutionError(RuntimeError):
    def __init__(self, message: str, *, code: str = "EXECUTION_FAILED"):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class JobContext:
    settings: Settings
    thumbnails: ThumbnailGenerator
    metadata: MetadataSink

    @property
    def cleanup_roots(self) -> tuple[Path, ...]:
        return self.settings.cleanup_roots


@dataclass(frozen=True)
class ThumbnailGeneration:
    kind: ClassVar[JobKind] = JobKind.THUMBNAIL_GENERATION

    file_id: str
    actual_filename: str
    mime_type: str
    original_name: str | None = None

    def __post_init__(self) -> None:
        if not self.file_id.strip():
            raise ValueError("file_id cannot be blank")
        validate_stored_name(self.actual_filename)
        if not is_supported_media_type(self.mime_type):
            raise ValueError("Unsupported file type")

    @property
    def resource_key(self) -> str | None:
        return f"file:{self.file_id}"

    def to_payload(self) -> dict[str, Any]:
        return {
            "file_id": self.file_id,
            "actual_filename": self.actual_filename,
            "mime_type": self.mime_type,
            "original_name": self.original_name,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ThumbnailGeneration":
        return cls(
            file_id=str(payload["file_id"]),
            actual_filename=str(payload["actual_filename"]),
            mime_type=str(payload["mime_type"]),
            original_name=payload.get("original_name"),
        )

    def execute(self, context: JobContext) -> None:
        try:
            source = resolve_under_root(context.settings.uploads_root, self.actual_filename)
        except PathSafetyError as exc:
            raise JobExecutionError(str(exc), code="INVALID_PATH") from exc
        if not source.is_file():
            raise JobExecutionError(f"Source file not found: {self.actual_filename}", code="SOURCE_MISSING")

        media = context.thumbnails.generate(source, self.mime_type)
        context.metadata.update_file_metadata(self.file_id, media.to_metadata())
        logger.info("Generated %s thumbnail for file %s", media.type, self.file_id)


@dataclass(frozen=True)
class DiskCleanup:
    kind: ClassVar[JobKind] = JobKind.DISK_CLEANUP

    file_paths: tuple[str, ...]
    description: str = DEFAULT_CLEANUP_DESCRIPTION

    def __post_init__(self) -> None:
        if not self.file_paths:
            raise ValueError("file_paths must contain at least one path")
        for raw_path in self.file_paths:
            if not Path(raw_path).is_absolute():
                raise ValueError("Cleanup paths must be absolute")

    @property
    def resource_key(self) -> str | None:
        return None

    def to_payload(self) -> dict[str, Any]:
        return {"file_paths": list(self.file_paths), "description": self.description}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "DiskCleanup":
        return cls(
            file_paths=tuple(str(path) for path in payload.get("file_paths", [])),
            description=payload.get("description") or DEFAULT_CLEANUP_DESCRIPTION,
        )

    def _delete(self, path: Path) -> None:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)

    def execute(self, context: JobContext) -> None:
        failures: list[str] = []
        deleted = 0
        for raw_path in self.file_paths:
            path = Path(raw_path)
            if not os.path.lexists(path):
                deleted += 1
                continue
            if not is_within_roots(path, context.cleanup_roots):
                failures.append(f"{path.name} (outside storage roots)")
                continue
            try:
                self._delete(path)
                deleted += 1
            except FileNotFoundError:
                deleted += 1
            except OSError as exc:
                logger.warning("Cleanup of %s failed: %s", path.name, exc)
                failures.append(f"{path.name} ({exc.strerror or exc.__class__.__name__})")

        logger.info("Disk cleanup '%s' removed %d of %d path(s)", self.description, deleted, len(self.file_paths))
        if failures:
            raise JobExecutionError(
                f"Failed to delete {len(failures)} of {len(self.file_paths)} path(s): {', '.join(failures)}",
                code="CLEANUP_INCOMPLETE",
            )


JobSpec = ThumbnailGeneration | DiskCleanup

JOB_SPEC_TYPES: dict[JobKind, type[ThumbnailGeneration] | type[DiskCleanup]] = {
    JobKind.THUMBNAIL_GENERATION: ThumbnailGeneration,
    JobKind.DISK_CLEANUP: DiskCleanup,
}


def job_spec_from_payload(kind: JobKind, payload: dict[str, Any]) -> JobSpec:
    spec_type = JOB_SPEC_TYPES.get(kind)
    if spec_type is None:
        raise ValueError(f"Unsupported job kind: {kind}")
    return spec_type.from_payload(payload)
