"""Upload store metadata using SQLAlchemy with SQLite.

This module provides:
- Upload session bookkeeping (offsets, expiry)
- Committed file metadata (size, revision)
"""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import Session

from worldbackup.server.models import Base, StoredFile, UploadSession

if TYPE_CHECKING:
    from sqlalchemy import Engine


def new_rev() -> str:
    """Opaque revision identifier of a stored file."""
    return secrets.token_hex(8)


class Database:
    """SQLAlchemy database for store metadata.

    Uses SQLite with WAL mode for better concurrency with multiple readers.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )

        with self._engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")

        Base.metadata.create_all(self._engine)

    @property
    def path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def _session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine, expire_on_commit=False)

    # === Upload sessions ===

    def create_session(self, upload_id: str, offset: int) -> UploadSession:
        with self._session() as session:
            record = UploadSession(upload_id=upload_id, offset=offset)
            session.add(record)
            session.commit()
            return record

    def get_session(self, upload_id: str) -> UploadSession | None:
        with self._session() as session:
            return session.get(UploadSession, upload_id)

    def set_session_offset(self, upload_id: str, offset: int) -> None:
        with self._session() as session:
            record = session.get(UploadSession, upload_id)
            if record is None:
                raise ValueError(f"Unknown upload session: {upload_id}")
            record.offset = offset
            session.commit()

    def mark_session_committed(self, upload_id: str, path: str) -> None:
        with self._session() as session:
            record = session.get(UploadSession, upload_id)
            if record is None:
                raise ValueError(f"Unknown upload session: {upload_id}")
            record.committed_path = path
            session.commit()

    def expire_sessions(self, older_than: datetime) -> list[str]:
        """Delete sessions created before older_than.

        Returns:
            Upload ids of the deleted sessions.
        """
        with self._session() as session:
            expired = list(
                session.scalars(
                    select(UploadSession.upload_id).where(UploadSession.created_at < older_than)
                )
            )
            if expired:
                session.execute(
                    delete(UploadSession).where(UploadSession.upload_id.in_(expired))
                )
                session.commit()
            return expired

    # === Files ===

    def get_file(self, path: str) -> StoredFile | None:
        with self._session() as session:
            return session.scalar(select(StoredFile).where(StoredFile.path == path))

    def save_file(self, path: str, size: int) -> StoredFile:
        """Record a committed file, giving it a new revision."""
        with self._session() as session:
            record = session.scalar(select(StoredFile).where(StoredFile.path == path))
            if record is None:
                record = StoredFile(path=path, size=size, rev=new_rev())
                session.add(record)
            else:
                record.size = size
                record.rev = new_rev()
                record.modified = datetime.now(UTC)
            session.commit()
            return record
