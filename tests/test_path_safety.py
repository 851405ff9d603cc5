from __future__ import annotations

from pathlib import Path

import pytest

from beamshare.core.path_safety import (
    PathSafetyError,
    is_within_roots,
    resolve_under_root,
    validate_stored_name,
    validate_token,
)


@pytest.mark.parametrize(
    "raw_name",
    [
        "",
        "..",
        "../evil.bin",
        "nested/file.bin",
        "nested\\file.bin",
        "~private.bin",
        "$HOME.bin",
    ],
)
def test_validate_stored_name_rejects_unsafe_input(raw_name: str) -> None:
    with pytest.raises(PathSafetyError):
        validate_stored_name(raw_name)


def test_resolve_under_root_accepts_plain_name(tmp_path: Path) -> None:
    resolved = resolve_under_root(tmp_path, "Ab12Cd34.png")
    assert resolved == tmp_path.resolve() / "Ab12Cd34.png"


@pytest.mark.parametrize("raw_token", ["short", "../../etc/passwd", "has space in it", "a" * 65])
def test_validate_token_rejects_unexpected_identifiers(raw_token: str) -> None:
    with pytest.raises(PathSafetyError):
        validate_token(raw_token)


def test_validate_token_accepts_urlsafe_ids() -> None:
    assert validate_token("abcDEF12_-xyz") == "abcDEF12_-xyz"


def test_is_within_roots_rejects_escape_attempts(tmp_path: Path) -> None:
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    assert is_within_roots(uploads / "file.bin", [uploads])
    assert is_within_roots(uploads / "tmp" / "session" / "0.part", [uploads])
    assert not is_within_roots(uploads / ".." / "outside.bin", [uploads])
    assert not is_within_roots(uploads, [uploads])
    assert not is_within_roots(Path("/etc/passwd"), [uploads])
