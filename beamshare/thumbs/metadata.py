from __future__ import annotations

from typing import Any, Protocol

from sqlalchemy.orm import Session, sessionmaker

from beamshare.db.models import StoredFile


class StoredFileNotFoundError(RuntimeError):
    pass


class MetadataSink(Protocol):
    def update_file_metadata(self, file_id: str, metadata: dict[str, Any]) -> None: ...


class FileMetadataStore:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def update_file_metadata(self, file_id: str, metadata: dict[str, Any]) -> None:
        with self._session_factory() as session:
            row = session.get(StoredFile, file_id)
            if row is None:
                raise StoredFileNotFoundError(f"File not found: {file_id}")
            merged = dict(row.media_metadata or {})
            merged.update(metadata)
            row.media_metadata = merged
            session.commit()

    def get_file_metadata(self, file_id: str) -> dict[str, Any] | None:
        with self._session_factory() as session:
            row = session.get(StoredFile, file_id)
            if row is None:
                raise StoredFileNotFoundError(f"File not found: {file_id}")
            return row.media_metadata
