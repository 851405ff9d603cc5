from __future__ import annotations

import os
import shutil
import tempfile
import time
from pathlib import Path

from beamshare.core.path_safety import validate_token

CHUNK_SUFFIX = ".part"
PARTIAL_SUFFIX = ".partial"


class UploadStorageError(RuntimeError):
    pass


class ChunkStore:
    def __init__(self, temp_root: Path):
        self._temp_root = temp_root

    def session_dir(self, session_id: str) -> Path:
        return self._temp_root / validate_token(session_id)

    def chunk_path(self, session_id: str, chunk_index: int) -> Path:
        if chunk_index < 0:
            raise ValueError("chunk_index must be >= 0")
        return self.session_dir(session_id) / f"{chunk_index}{CHUNK_SUFFIX}"

    def partial_path(self, session_id: str) -> Path:
        return self.session_dir(session_id) / f"assembled{PARTIAL_SUFFIX}"

    def write_chunk(self, session_id: str, chunk_index: int, data: bytes) -> Path:
        target = self.chunk_path(session_id, chunk_index)
        tmp_name: str | None = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="wb",
                dir=target.parent,
                prefix=f".{chunk_index}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, target)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise UploadStorageError(
                f"Failed to store chunk {chunk_index} of upload {session_id}: {exc.strerror or exc}"
            ) from exc
        return target

    def has_chunk(self, session_id: str, chunk_index: int) -> bool:
        return self.chunk_path(session_id, chunk_index).is_file()

    def discard(self, session_id: str) -> None:
        directory = self.session_dir(session_id)
        try:
            shutil.rmtree(directory)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise UploadStorageError(f"Failed to remove temporary data of upload {session_id}") from exc

    def stale_entries(self, max_age_seconds: int, *, now: float | None = None) -> list[Path]:
        if not self._temp_root.is_dir():
            return []
        cutoff = (time.time() if now is None else now) - max_age_seconds
        stale: list[Path] = []
        for entry in sorted(self._temp_root.iterdir()):
            try:
                modified = entry.stat().st_mtime
            except FileNotFoundError:
                continue
            if modified < cutoff:
                stale.append(entry)
        return stale
