from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable

_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{8,64}$")


class PathSafetyError(ValueError):
    pass


def validate_token(value: str) -> str:
    if not _TOKEN_PATTERN.fullmatch(value):
        raise PathSafetyError("Identifier contains unsupported characters")
    return value


def validate_stored_name(raw_name: str) -> str:
    if not raw_name or raw_name in {".", ".."}:
        raise PathSafetyError("Stored name cannot be empty")
    if "/" in raw_name or "\\" in raw_name:
        raise PathSafetyError("Stored name must not contain path separators")
    if "~" in raw_name:
        raise PathSafetyError("Home expansion is not allowed")
    if "$" in raw_name:
        raise PathSafetyError("Environment variable expansion is not allowed")
    return raw_name


def resolve_under_root(root: Path, raw_name: str) -> Path:
    name = validate_stored_name(raw_name)
    resolved_root = root.resolve(strict=False)
    candidate = (resolved_root / name).resolve(strict=False)
    if resolved_root in candidate.parents:
        return candidate
    raise PathSafetyError("Path escapes storage root")


def is_within_roots(path: Path, roots: Iterable[Path]) -> bool:
    candidate = path.resolve(strict=False)
    for root in roots:
        resolved_root = root.resolve(strict=False)
        if resolved_root in candidate.parents:
            return True
    return False
