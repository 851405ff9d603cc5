from __future__ import annotations

import os
import subprocess
from pathlib import Path

import pytest
from PIL import Image

from beamshare.core.config import Settings, get_settings
from beamshare.thumbs.generator import ThumbnailGenerationError, ThumbnailGenerator, parse_duration, preview_timestamps
from beamshare.thumbs.media import MediaCategory, is_supported_media_type, media_category, output_names


class FakeFfmpeg:
    def __init__(self, *, duration: str = "00:00:20.00", fail_steps: tuple[str, ...] = ()) -> None:
        self.duration = duration
        self.fail_steps = fail_steps
        self.commands: list[list[str]] = []

    def __call__(self, command: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        assert kwargs["check"] is False
        self.commands.append(list(command))
        if "-y" not in command:
            return subprocess.CompletedProcess(command, 1, stdout="", stderr=f"Duration: {self.duration}, start: 0.0")
        if any(step in command for step in self.fail_steps):
            return subprocess.CompletedProcess(command, 1, stdout="", stderr="Stream map matches no streams")
        Path(command[-1]).write_bytes(b"generated")
        return subprocess.CompletedProcess(command, 0, stdout="", stderr="")


def make_settings(tmp_path: Path) -> Settings:
    os.environ["BEAMSHARE_STORAGE_ROOT"] = (tmp_path / "data").as_posix()
    get_settings.cache_clear()
    return get_settings()


@pytest.mark.parametrize(
    ("mime_type", "category"),
    [
        ("image/png", MediaCategory.IMAGE),
        ("IMAGE/JPEG", MediaCategory.IMAGE),
        ("video/quicktime", MediaCategory.VIDEO),
        ("audio/mpeg; charset=binary", MediaCategory.AUDIO),
        ("application/pdf", None),
    ],
)
def test_media_category(mime_type: str, category: MediaCategory | None) -> None:
    assert media_category(mime_type) == category
    assert is_supported_media_type(mime_type) is (category is not None)


def test_output_names_derive_from_stored_stem() -> None:
    names = output_names("Abc12345.mp4")
    assert names.thumbnail == "Abc12345_thumb.webp"
    assert names.preview == "Abc12345_preview.webm"


def test_parse_duration() -> None:
    assert parse_duration("  Duration: 01:02:03.50, start: 0.000000") == pytest.approx(3723.5)
    assert parse_duration("Duration: N/A") is None


def test_preview_timestamps_are_spread_evenly() -> None:
    assert preview_timestamps(40.0, 4, 1.0) == [4.5, 14.5, 24.5, 34.5]
    assert preview_timestamps(3.0, 4, 1.0) == [0.0]
    assert preview_timestamps(None, 4, 1.0) == [0.0]


def test_image_thumbnail_is_padded_webp(tmp_path: Path) -> None:
    settings = make_settings(tmp_path)
    source = settings.uploads_root / "Tall0001.jpg"
    Image.new("RGB", (100, 400), (10, 120, 10)).save(source)

    media = ThumbnailGenerator(settings, runner=FakeFfmpeg()).generate(source, "image/jpeg")

    assert media.to_metadata() == {"thumbnail": "Tall0001_thumb.webp", "preview": None, "type": "image"}
    with Image.open(settings.uploads_root / "Tall0001_thumb.webp") as thumb:
        assert thumb.size == (300, 300)
        assert thumb.getpixel((0, 0))[3] == 0


def test_undecodable_image_falls_back_to_ffmpeg(tmp_path: Path) -> None:
    settings = make_settings(tmp_path)
    source = settings.uploads_root / "Heic0001.tiff"
    source.write_bytes(b"not really an image")
    ffmpeg = FakeFfmpeg()

    media = ThumbnailGenerator(settings, runner=ffmpeg).generate(source, "image/tiff")

    assert media.type == "image"
    assert len(ffmpeg.commands) == 1
    assert ffmpeg.commands[0][-1].endswith("Heic0001_thumb.webp")


def test_video_generates_frame_and_clip_preview(tmp_path: Path) -> None:
    settings = make_settings(tmp_path)
    source = settings.uploads_root / "Vid00001.mp4"
    source.write_bytes(b"\x00" * 32)
    ffmpeg = FakeFfmpeg(duration="00:00:40.00")

    media = ThumbnailGenerator(settings, runner=ffmpeg).generate(source, "video/mp4")

    assert media.to_metadata() == {
        "thumbnail": "Vid00001_thumb.webp",
        "preview": "Vid00001_preview.webm",
        "type": "video",
    }
    probe, frame, preview = ffmpeg.commands
    assert "-y" not in probe
    assert frame[frame.index("-ss") + 1] == "3.00"
    graph = preview[preview.index("-filter_complex") + 1]
    assert graph.count("trim=") == 4
    assert "concat=n=4" in graph
    assert "libvpx-vp9" in preview


def test_audio_without_cover_renders_waveform(tmp_path: Path) -> None:
    settings = make_settings(tmp_path)
    source = settings.uploads_root / "Song0001.mp3"
    source.write_bytes(b"ID3")
    ffmpeg = FakeFfmpeg(fail_steps=("-an",))

    media = ThumbnailGenerator(settings, runner=ffmpeg).generate(source, "audio/mpeg")

    assert media.type == "waveform"
    assert media.preview is None
    assert "showwavespic" in " ".join(ffmpeg.commands[-1])


def test_audio_with_cover_uses_album_art(tmp_path: Path) -> None:
    settings = make_settings(tmp_path)
    source = settings.uploads_root / "Song0002.flac"
    source.write_bytes(b"fLaC")

    media = ThumbnailGenerator(settings, runner=FakeFfmpeg()).generate(source, "audio/flac")

    assert media.type == "album_cover"


def test_failed_generation_removes_partial_outputs(tmp_path: Path) -> None:
    settings = make_settings(tmp_path)
    source = settings.uploads_root / "Vid00002.mp4"
    source.write_bytes(b"\x00" * 32)
    ffmpeg = FakeFfmpeg(fail_steps=("libvpx-vp9",))

    with pytest.raises(ThumbnailGenerationError, match="video preview failed"):
        ThumbnailGenerator(settings, runner=ffmpeg).generate(source, "video/mp4")

    assert not (settings.uploads_root / "Vid00002_thumb.webp").exists()
    assert not (settings.uploads_root / "Vid00002_preview.webm").exists()


def test_missing_ffmpeg_binary_is_reported(tmp_path: Path) -> None:
    settings = make_settings(tmp_path)
    source = settings.uploads_root / "Vid00003.mp4"
    source.write_bytes(b"\x00")

    def missing(command: list[str], **_kwargs: object) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError(command[0])

    with pytest.raises(ThumbnailGenerationError, match="ffmpeg binary not found"):
        ThumbnailGenerator(settings, runner=missing).generate(source, "video/mp4")
