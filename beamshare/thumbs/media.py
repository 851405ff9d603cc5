from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath

THUMBNAIL_SUFFIX = "_thumb.webp"
PREVIEW_SUFFIX = "_preview.webm"


class MediaCategory(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


SUPPORTED_IMAGE_TYPES = frozenset(
    {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/webp",
        "image/tiff",
        "image/bmp",
        "image/svg+xml",
    }
)
SUPPORTED_VIDEO_TYPES = frozenset(
    {
        "video/mp4",
        "video/webm",
        "video/avi",
        "video/x-msvideo",
        "video/mov",
        "video/quicktime",
        "video/mkv",
        "video/x-matroska",
        "video/flv",
        "video/x-flv",
        "video/wmv",
        "video/x-ms-wmv",
        "video/m4v",
        "video/x-m4v",
        "video/3gp",
        "video/3gpp",
    }
)
SUPPORTED_AUDIO_TYPES = frozenset(
    {
        "audio/mp3",
        "audio/mpeg",
        "audio/wav",
        "audio/x-wav",
        "audio/flac",
        "audio/x-flac",
        "audio/aac",
        "audio/ogg",
        "audio/m4a",
        "audio/mp4",
        "audio/x-m4a",
        "audio/wma",
        "audio/x-ms-wma",
        "audio/opus",
    }
)


@dataclass(frozen=True)
class OutputNames:
    thumbnail: str
    preview: str


def media_category(mime_type: str) -> MediaCategory | None:
    normalized = mime_type.split(";", 1)[0].strip().lower()
    if normalized in SUPPORTED_IMAGE_TYPES:
        return MediaCategory.IMAGE
    if normalized in SUPPORTED_VIDEO_TYPES:
        return MediaCategory.VIDEO
    if normalized in SUPPORTED_AUDIO_TYPES:
        return MediaCategory.AUDIO
    return None


def is_supported_media_type(mime_type: str) -> bool:
    return media_category(mime_type) is not None


def output_names(stored_name: str) -> OutputNames:
    base = PurePosixPath(stored_name).stem
    return OutputNames(thumbnail=f"{base}{THUMBNAIL_SUFFIX}", preview=f"{base}{PREVIEW_SUFFIX}")
