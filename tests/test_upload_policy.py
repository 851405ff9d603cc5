from __future__ import annotations

import pytest

from beamshare.uploads.policy import UploadPolicy, admit, file_extension, format_file_size
from beamshare.uploads.types import Accepted, Rejected, RejectionCode

GIB = 1024 * 1024 * 1024


def make_policy() -> UploadPolicy:
    return UploadPolicy(max_file_size=2 * GIB, blacklisted_extensions=frozenset({".exe", ".bat", ".cmd", ".scr"}))


def test_admit_rejects_blacklisted_extension_before_size_checks() -> None:
    decision = admit("setup.EXE", 3 * GIB, 100, 100, policy=make_policy())
    assert isinstance(decision, Rejected)
    assert decision.code == RejectionCode.BLACKLISTED_EXTENSION
    assert decision.reason == "File extension '.exe' is not allowed"
    assert not decision.is_quota


def test_admit_rejects_oversized_file_with_readable_limit() -> None:
    decision = admit("movie.mp4", 2 * GIB + 1, 0, 0, policy=make_policy())
    assert isinstance(decision, Rejected)
    assert decision.code == RejectionCode.FILE_TOO_LARGE
    assert decision.reason == "File size exceeds 2 GB limit"


def test_admit_reports_quota_details_when_file_does_not_fit() -> None:
    decision = admit("a.bin", 600, 1000, 500, policy=make_policy())
    assert isinstance(decision, Rejected)
    assert decision.code == RejectionCode.QUOTA_WOULD_EXCEED
    assert decision.is_quota
    assert decision.reason == "File size exceeds remaining quota"
    assert decision.details == {
        "fileSize": 600,
        "remainingQuota": 500,
        "usedQuota": 500,
        "totalQuota": 1000,
    }


def test_admit_rejects_exhausted_quota() -> None:
    decision = admit("a.bin", 1, 1000, 1000, policy=make_policy())
    assert isinstance(decision, Rejected)
    assert decision.code == RejectionCode.QUOTA_EXCEEDED
    assert decision.reason == "Storage quota exceeded"
    assert decision.details == {"fileSize": 1, "remainingQuota": 0, "usedQuota": 1000, "totalQuota": 1000}


def test_admit_reports_negative_remaining_quota_when_over_the_limit() -> None:
    decision = admit("a.txt", 10, 1000, 1200, policy=make_policy())
    assert isinstance(decision, Rejected)
    assert decision.code == RejectionCode.QUOTA_EXCEEDED
    assert decision.is_quota
    assert decision.details["remainingQuota"] == -200
    assert decision.details["fileSize"] == 10


def test_admit_accepts_exact_fit_and_unlimited_quota() -> None:
    policy = make_policy()
    assert isinstance(admit("a.bin", 500, 1000, 500, policy=policy), Accepted)
    assert isinstance(admit("a.bin", GIB, 0, 10 * GIB, policy=policy), Accepted)
    assert isinstance(admit("README", 10, 0, 0, policy=policy), Accepted)


@pytest.mark.parametrize("size", [0, -5])
def test_admit_rejects_non_positive_sizes(size: int) -> None:
    decision = admit("a.bin", size, 0, 0, policy=make_policy())
    assert isinstance(decision, Rejected)
    assert decision.code == RejectionCode.INVALID_SIZE


def test_admit_is_deterministic() -> None:
    policy = make_policy()
    first = admit("a.bin", 600, 1000, 500, policy=policy)
    second = admit("a.bin", 600, 1000, 500, policy=policy)
    assert first == second


def test_file_extension_normalizes_case_and_ignores_dotfiles() -> None:
    assert file_extension("Photo.JPG") == ".jpg"
    assert file_extension("archive.tar.gz") == ".gz"
    assert file_extension(".bashrc") == ""
    assert file_extension("no_extension") == ""


@pytest.mark.parametrize(
    ("size", "rendered"),
    [
        (0, "0 Bytes"),
        (512, "512 Bytes"),
        (1536, "1.5 KB"),
        (2 * GIB, "2 GB"),
        (5 * 1024 * 1024 + 1024 * 256, "5.25 MB"),
    ],
)
def test_format_file_size(size: int, rendered: str) -> None:
    assert format_file_size(size) == rendered
