from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath

from beamshare.core.config import Settings
from beamshare.uploads.types import Accepted, Admission, Rejected, RejectionCode

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")


@dataclass(frozen=True)
class UploadPolicy:
    max_file_size: int
    blacklisted_extensions: frozenset[str]

    @classmethod
    def from_settings(cls, settings: Settings) -> "UploadPolicy":
        return cls(
            max_file_size=settings.max_file_size,
            blacklisted_extensions=frozenset(settings.blacklisted_extensions),
        )


def format_file_size(size_bytes: int) -> str:
    if size_bytes <= 0:
        return "0 Bytes"
    value = float(size_bytes)
    unit_index = 0
    while value >= 1024 and unit_index < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit_index += 1
    rendered = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{rendered} {_SIZE_UNITS[unit_index]}"


def file_extension(filename: str) -> str:
    name = PurePosixPath(filename.replace("\\", "/")).name
    if "." not in name.lstrip("."):
        return ""
    return "." + name.rsplit(".", 1)[1].lower()


def admit(
    filename: str,
    declared_size: int,
    owner_quota: int,
    owner_used_quota: int,
    *,
    policy: UploadPolicy,
) -> Admission:
    if declared_size <= 0:
        return Rejected(RejectionCode.INVALID_SIZE, "File size must be greater than zero")

    extension = file_extension(filename)
    if extension and extension in policy.blacklisted_extensions:
        return Rejected(
            RejectionCode.BLACKLISTED_EXTENSION,
            f"File extension '{extension}' is not allowed",
            {"extension": extension},
        )

    if declared_size > policy.max_file_size:
        return Rejected(
            RejectionCode.FILE_TOO_LARGE,
            f"File size exceeds {format_file_size(policy.max_file_size)} limit",
            {"fileSize": declared_size, "maxFileSize": policy.max_file_size},
        )

    if owner_quota == 0:
        return Accepted()

    remaining = owner_quota - owner_used_quota
    if remaining <= 0:
        return Rejected(
            RejectionCode.QUOTA_EXCEEDED,
            "Storage quota exceeded",
            {
                "fileSize": declared_size,
                "remainingQuota": remaining,
                "usedQuota": owner_used_quota,
                "totalQuota": owner_quota,
            },
        )
    if declared_size > remaining:
        return Rejected(
            RejectionCode.QUOTA_WOULD_EXCEED,
            "File size exceeds remaining quota",
            {
                "fileSize": declared_size,
                "remainingQuota": remaining,
                "usedQuota": owner_used_quota,
                "totalQuota": owner_quota,
            },
        )
    return Accepted()
