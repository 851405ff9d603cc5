from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from PIL import Image, ImageOps, UnidentifiedImageError

from beamshare.core.config import Settings
from beamshare.thumbs.media import MediaCategory, media_category, output_names

logger = logging.getLogger(__name__)

_DURATION_PATTERN = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
WAVEFORM_COLOR = "#1e40af"
MAX_STDERR_TAIL = 400

CommandRunner = Callable[..., "subprocess.CompletedProcess[str]"]


class ThumbnailGenerationError(RuntimeError):
    pass


@dataclass(frozen=True)
class GeneratedMedia:
    thumbnail: str
    preview: str | None
    type: str

    def to_metadata(self) -> dict[str, Any]:
        return {"thumbnail": self.thumbnail, "preview": self.preview, "type": self.type}


def parse_duration(ffmpeg_stderr: str) -> float | None:
    match = _DURATION_PATTERN.search(ffmpeg_stderr)
    if match is None:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def preview_timestamps(duration: float | None, clip_count: int, clip_seconds: float) -> list[float]:
    if duration is None or duration <= clip_seconds * clip_count:
        return [0.0]
    spacing = duration / clip_count
    return [round(index * spacing + (spacing - clip_seconds) / 2, 2) for index in range(clip_count)]


def _stderr_tail(stderr: str | None) -> str:
    text = (stderr or "").strip()
    if not text:
        return "no diagnostic output"
    return text.splitlines()[-1][:MAX_STDERR_TAIL]


class ThumbnailGenerator:
    def __init__(self, settings: Settings, runner: CommandRunner = subprocess.run):
        self._settings = settings
        self._runner = runner

    def _box(self) -> tuple[int, int]:
        return self._settings.thumbnail_width, self._settings.thumbnail_height

    def _fit_filter(self, width: int, height: int) -> str:
        return (
            f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2"
        )

    def _run_ffmpeg(self, args: list[str]) -> "subprocess.CompletedProcess[str]":
        command = [self._settings.ffmpeg_bin, "-hide_banner", "-nostdin", *args]
        try:
            return self._runner(
                command,
                capture_output=True,
                text=True,
                timeout=self._settings.ffmpeg_timeout_seconds,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ThumbnailGenerationError(f"ffmpeg binary not found: {self._settings.ffmpeg_bin}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ThumbnailGenerationError(
                f"ffmpeg timed out after {self._settings.ffmpeg_timeout_seconds}s"
            ) from exc

    def _require_output(self, result: "subprocess.CompletedProcess[str]", target: Path, step: str) -> None:
        if result.returncode != 0:
            raise ThumbnailGenerationError(f"{step} failed (exit {result.returncode}): {_stderr_tail(result.stderr)}")
        if not target.is_file() or target.stat().st_size == 0:
            raise ThumbnailGenerationError(f"{step} produced no output")

    def _remove_outputs(self, *targets: Path) -> None:
        for target in targets:
            try:
                target.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Could not remove generated file %s: %s", target.name, exc)

    def _render_image(self, source: Path, target: Path) -> None:
        width, height = self._box()
        try:
            with Image.open(source) as opened:
                image = ImageOps.exif_transpose(opened)
                image.thumbnail((width, height), Image.Resampling.LANCZOS)
                canvas = Image.new("RGBA", (width, height), (0, 0, 0, 0))
                offset = ((width - image.width) // 2, (height - image.height) // 2)
                canvas.paste(image.convert("RGBA"), offset)
                canvas.save(target, format="WEBP", quality=self._settings.thumbnail_quality)
        except UnidentifiedImageError:
            self._render_frame(source, target, step="image thumbnail")
        except OSError as exc:
            raise ThumbnailGenerationError(f"image thumbnail failed: {exc}") from exc

    def _render_frame(self, source: Path, target: Path, *, step: str, offset_seconds: float | None = None) -> None:
        width, height = self._box()
        args: list[str] = []
        if offset_seconds:
            args.extend(["-ss", f"{offset_seconds:.2f}"])
        args.extend(
            [
                "-i",
                str(source),
                "-frames:v",
                "1",
                "-vf",
                self._fit_filter(width, height),
                "-f",
                "webp",
                "-quality",
                str(self._settings.thumbnail_quality),
                "-y",
                str(target),
            ]
        )
        self._require_output(self._run_ffmpeg(args), target, step)

    def _probe_duration(self, source: Path) -> float | None:
        result = self._run_ffmpeg(["-i", str(source)])
        return parse_duration(result.stderr or "")

    def _render_preview(self, source: Path, target: Path, duration: float | None) -> None:
        settings = self._settings
        clip_seconds = float(settings.preview_clip_seconds)
        timestamps = preview_timestamps(duration, settings.preview_clip_count, clip_seconds)
        fit = self._fit_filter(settings.preview_width, settings.preview_height)
        parts = [
            f"[0:v]trim=start={start:.2f}:duration={clip_seconds:g},setpts=PTS-STARTPTS,{fit}[clip{index}]"
            for index, start in enumerate(timestamps)
        ]
        labels = "".join(f"[clip{index}]" for index in range(len(timestamps)))
        parts.append(f"{labels}concat=n={len(timestamps)}:v=1:a=0[out]")
        args = [
            "-i",
            str(source),
            "-filter_complex",
            ";".join(parts),
            "-map",
            "[out]",
            "-c:v",
            "libvpx-vp9",
            "-crf",
            "40",
            "-b:v",
            "200k",
            "-deadline",
            "realtime",
            "-an",
            "-r",
            str(settings.preview_fps),
            "-f",
            "webm",
            "-y",
            str(target),
        ]
        self._require_output(self._run_ffmpeg(args), target, "video preview")

    def _render_video(self, source: Path, thumbnail: Path, preview: Path) -> None:
        duration = self._probe_duration(source)
        offset = float(self._settings.video_thumbnail_offset_seconds)
        if duration is not None and offset >= duration:
            offset = duration / 2
        self._render_frame(source, thumbnail, step="video thumbnail", offset_seconds=offset)
        self._render_preview(source, preview, duration)

    def _render_audio(self, source: Path, thumbnail: Path) -> str:
        width, height = self._box()
        cover = self._run_ffmpeg(
            [
                "-i",
                str(source),
                "-an",
                "-frames:v",
                "1",
                "-vf",
                self._fit_filter(width, height),
                "-f",
                "webp",
                "-quality",
                str(self._settings.thumbnail_quality),
                "-y",
                str(thumbnail),
            ]
        )
        if cover.returncode == 0 and thumbnail.is_file() and thumbnail.stat().st_size > 0:
            return "album_cover"

        logger.debug("No album cover in %s, rendering waveform", source.name)
        self._remove_outputs(thumbnail)
        waveform = self._run_ffmpeg(
            [
                "-i",
                str(source),
                "-filter_complex",
                f"[0:a]aformat=channel_layouts=mono,compand,showwavespic=s={width}x{height}:colors={WAVEFORM_COLOR}[v]",
                "-map",
                "[v]",
                "-frames:v",
                "1",
                "-f",
                "webp",
                "-quality",
                str(self._settings.thumbnail_quality),
                "-y",
                str(thumbnail),
            ]
        )
        self._require_output(waveform, thumbnail, "audio waveform")
        return "waveform"

    def generate(self, source: Path, mime_type: str) -> GeneratedMedia:
        category = media_category(mime_type)
        if category is None:
            raise ThumbnailGenerationError(f"Unsupported file type: {mime_type}")
        if not source.is_file():
            raise ThumbnailGenerationError(f"Source file not found: {source.name}")

        names = output_names(source.name)
        thumbnail = source.with_name(names.thumbnail)
        preview = source.with_name(names.preview)
        self._remove_outputs(thumbnail, preview)

        try:
            if category == MediaCategory.IMAGE:
                self._render_image(source, thumbnail)
                return GeneratedMedia(thumbnail=names.thumbnail, preview=None, type="image")
            if category == MediaCategory.VIDEO:
                self._render_video(source, thumbnail, preview)
                return GeneratedMedia(thumbnail=names.thumbnail, preview=names.preview, type="video")
            media_type = self._render_audio(source, thumbnail)
            return GeneratedMedia(thumbnail=names.thumbnail, preview=None, type=media_type)
        except ThumbnailGenerationError:
            self._remove_outputs(thumbnail, preview)
            raise

