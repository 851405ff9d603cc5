from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, PositiveInt, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_COMPLETED_JOBS_CLEANUP_SCHEDULE = "0 2 * * *"
DEFAULT_TEMP_CLEANUP_SCHEDULE = "*/30 * * * *"
SUPPORTED_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _absolute_path(value: str | Path | None) -> Path | None:
    if value is None or value == "":
        return None
    raw = str(value)
    if "~" in raw:
        raise ValueError("Home expansion syntax is not allowed in paths")
    if "$" in raw:
        raise ValueError("Environment variable syntax is not allowed in paths")
    path = Path(raw)
    if not path.is_absolute():
        raise ValueError("Path settings must be absolute")
    return path


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BEAMSHARE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Beamshare"
    environment: str = "production"
    api_host: str = "0.0.0.0"
    api_port: int = 3333
    worker_host: str = "127.0.0.1"
    worker_port: int = 3335
    log_level: str = "INFO"

    storage_root: Path = Field(default=Path("/data"))
    uploads_root: Path | None = None
    temp_root: Path | None = None
    state_root: Path | None = None
    database_url: str | None = None

    chunk_size: PositiveInt = 8 * 1024 * 1024
    max_file_size: PositiveInt = 2 * 1024 * 1024 * 1024
    blacklisted_extensions: list[str] = Field(default_factory=lambda: [".exe", ".bat", ".cmd", ".scr"])
    upload_session_idle_seconds: PositiveInt = 24 * 60 * 60
    upload_reap_interval_seconds: PositiveInt = 10 * 60
    user_header: str = "X-User-Id"
    admin_users: list[str] = Field(default_factory=list)

    worker_base_url: str = "http://127.0.0.1:3335"
    worker_timeout_seconds: float = 5.0
    worker_concurrency: PositiveInt = 2
    worker_autostart: bool = True

    thumbnail_width: PositiveInt = 300
    thumbnail_height: PositiveInt = 300
    thumbnail_quality: int = Field(default=50, ge=1, le=100)
    preview_width: PositiveInt = 320
    preview_height: PositiveInt = 180
    preview_fps: PositiveInt = 10
    preview_clip_count: PositiveInt = 4
    preview_clip_seconds: PositiveInt = 1
    video_thumbnail_offset_seconds: int = Field(default=3, ge=0)
    ffmpeg_bin: str = "ffmpeg"
    ffmpeg_timeout_seconds: PositiveInt = 120

    cron_enabled: bool = True
    cron_timezone: str = "UTC"
    completed_jobs_cleanup_schedule: str = DEFAULT_COMPLETED_JOBS_CLEANUP_SCHEDULE
    temp_cleanup_schedule: str = DEFAULT_TEMP_CLEANUP_SCHEDULE
    completed_job_retention_days: PositiveInt = 7
    temp_file_max_age_seconds: PositiveInt = 24 * 60 * 60
    cleanup_allowed_roots: list[Path] = Field(default_factory=list)

    default_page_size: PositiveInt = 20
    max_page_size: PositiveInt = 100

    @field_validator("storage_root", "uploads_root", "temp_root", "state_root", mode="before")
    @classmethod
    def _normalize_path(cls, value: str | Path | None) -> Path | None:
        return _absolute_path(value)

    @field_validator("cleanup_allowed_roots", mode="before")
    @classmethod
    def _normalize_cleanup_roots(cls, value: list[str | Path] | None) -> list[Path]:
        if not value:
            return []
        return [path for path in (_absolute_path(raw) for raw in value) if path is not None]

    @field_validator("blacklisted_extensions")
    @classmethod
    def _normalize_extensions(cls, value: list[str]) -> list[str]:
        normalized: list[str] = []
        for raw in value:
            extension = raw.strip().lower()
            if not extension:
                continue
            if not extension.startswith("."):
                extension = f".{extension}"
            if extension not in normalized:
                normalized.append(extension)
        return normalized

    @model_validator(mode="after")
    def _validate_runtime_constraints(self) -> "Settings":
        self.storage_root = self.storage_root.resolve(strict=False)
        self.uploads_root = (self.uploads_root or self.storage_root / "uploads").resolve(strict=False)
        self.temp_root = (self.temp_root or self.uploads_root / "tmp").resolve(strict=False)
        self.state_root = (self.state_root or self.storage_root / "state").resolve(strict=False)
        self.cleanup_allowed_roots = [root.resolve(strict=False) for root in self.cleanup_allowed_roots]

        if self.temp_root == self.uploads_root:
            raise ValueError("temp_root must differ from uploads_root")

        for root in (self.uploads_root, self.temp_root, self.state_root):
            root.mkdir(parents=True, exist_ok=True)

        if self.max_page_size < self.default_page_size:
            raise ValueError("max_page_size must be greater than or equal to default_page_size")

        if self.worker_timeout_seconds <= 0:
            raise ValueError("worker_timeout_seconds must be positive")
        self.worker_base_url = self.worker_base_url.rstrip("/")

        normalized_level = self.log_level.upper().strip()
        if normalized_level not in SUPPORTED_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(SUPPORTED_LOG_LEVELS)}")
        self.log_level = normalized_level

        return self

    @property
    def cleanup_roots(self) -> tuple[Path, ...]:
        roots = [self.uploads_root, self.temp_root]
        roots.extend(root for root in self.cleanup_allowed_roots if root not in roots)
        return tuple(roots)

    @property
    def effective_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        db_path = self.state_root / "beamshare.sqlite3"
        return f"sqlite:///{db_path.as_posix()}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def load_settings() -> Settings:
    get_settings.cache_clear()
    return get_settings()
