from __future__ import annotations

from uuid import uuid4

from sqlalchemy.orm import Session, sessionmaker

from beamshare.db.models import Account, StoredFile
from beamshare.uploads.types import AccountSnapshot, StoredFileSnapshot


class AccountNotFoundError(RuntimeError):
    pass


class FileRecordStore:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def get_account(self, account_id: str) -> AccountSnapshot:
        with self._session_factory() as session:
            account = session.get(Account, account_id)
            if account is None:
                raise AccountNotFoundError(f"Account not found: {account_id}")
            return AccountSnapshot(id=account.id, quota=account.quota, used_quota=account.used_quota)

    def record_upload(
        self,
        *,
        owner_id: str,
        file_key: str,
        original_name: str,
        stored_name: str,
        size: int,
        mime_type: str,
    ) -> StoredFileSnapshot:
        with self._session_factory() as session:
            account = session.get(Account, owner_id)
            if account is None:
                raise AccountNotFoundError(f"Account not found: {owner_id}")
            row = StoredFile(
                id=str(uuid4()),
                key=file_key,
                original_name=original_name,
                stored_name=stored_name,
                owner_id=owner_id,
                size=size,
                mime_type=mime_type,
            )
            session.add(row)
            account.used_quota = Account.used_quota + size
            session.commit()
            session.refresh(row)
            return StoredFileSnapshot(
                id=row.id,
                key=row.key,
                original_name=row.original_name,
                stored_name=row.stored_name,
                owner_id=row.owner_id,
                size=row.size,
                mime_type=row.mime_type,
                created_at=row.created_at,
            )
