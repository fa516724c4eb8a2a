"""Chunked upload store logic, independent of HTTP.

This module provides:
- SessionNotFoundError, OffsetMismatchError: session failures
- UploadStore: sessions, commits, direct writes and metadata
"""

from __future__ import annotations

import logging
import posixpath
import threading
import uuid
from datetime import UTC, datetime, timedelta

from worldbackup.server.database import Database
from worldbackup.server.models import StoredFile
from worldbackup.server.storage import LocalFSStorage, normalize_remote_path

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL = timedelta(hours=48)


class SessionNotFoundError(Exception):
    """Unknown or expired upload id."""


class OffsetMismatchError(Exception):
    """The client's offset differs from the session's."""

    def __init__(self, upload_id: str, offset: int) -> None:
        super().__init__(f"Session {upload_id} is at offset {offset}")
        self.upload_id = upload_id
        self.offset = offset


def conflict_path(path: str, attempt: int) -> str:
    """'dir/name.ext' -> 'dir/name (attempt).ext'."""
    directory, name = posixpath.split(path)
    stem, ext = posixpath.splitext(name)
    return posixpath.join(directory, f"{stem} ({attempt}){ext}")


class UploadStore:
    """The object store behind the HTTP API.

    All operations are serialized by one lock; sessions older than the TTL
    are expired whenever a session is opened or looked up.
    """

    def __init__(
        self,
        db: Database,
        storage: LocalFSStorage,
        session_ttl: timedelta = DEFAULT_SESSION_TTL,
    ) -> None:
        self.db = db
        self.storage = storage
        self._session_ttl = session_ttl
        self._lock = threading.Lock()

    def close(self) -> None:
        self.db.close()

    # === Sessions ===

    def start_session(self, data: bytes) -> tuple[str, int]:
        """Open a session holding data.

        Returns:
            (upload_id, offset)
        """
        upload_id = uuid.uuid4().hex
        with self._lock:
            self._expire_sessions()
            offset = self.storage.append_session(upload_id, data)
            self.db.create_session(upload_id, offset)
        logger.debug("Opened session %s with %d bytes", upload_id, offset)
        return upload_id, offset

    def append(self, upload_id: str, offset: int, data: bytes) -> int:
        """Append data at offset.

        Returns:
            The new offset.

        Raises:
            SessionNotFoundError: Unknown or expired upload id.
            OffsetMismatchError: offset is not the session's offset.
        """
        with self._lock:
            self._expire_sessions()
            record = self.db.get_session(upload_id)
            if record is None or record.committed_path is not None:
                raise SessionNotFoundError(upload_id)
            if offset != record.offset:
                raise OffsetMismatchError(upload_id, record.offset)
            new_offset = self.storage.append_session(upload_id, data)
            self.db.set_session_offset(upload_id, new_offset)
        return new_offset

    def commit(
        self,
        upload_id: str,
        path: str,
        overwrite: bool = False,
        parent_rev: str | None = None,
    ) -> StoredFile:
        """Turn a session into a file.

        Committing is idempotent per upload id: until the session expires, a
        repeated commit returns the file of the first one.

        Raises:
            SessionNotFoundError: Unknown or expired upload id.
            InvalidPathError: path escapes the store.
        """
        path = normalize_remote_path(path)
        with self._lock:
            self._expire_sessions()
            record = self.db.get_session(upload_id)
            if record is None:
                raise SessionNotFoundError(upload_id)
            if record.committed_path is not None:
                committed = self.db.get_file(record.committed_path)
                if committed is None:
                    raise SessionNotFoundError(upload_id)
                logger.info("Session %s already committed to %s", upload_id, committed.path)
                return committed
            target = self._target_path(path, overwrite, parent_rev)
            size = self.storage.commit_session(upload_id, target)
            self.db.mark_session_committed(upload_id, target)
            stored = self.db.save_file(target, size)
        logger.info("Committed %s (%d bytes) from session %s", target, size, upload_id)
        return stored

    # === Files ===

    def put(
        self,
        path: str,
        data: bytes,
        overwrite: bool = False,
        parent_rev: str | None = None,
    ) -> StoredFile:
        """Write a whole file."""
        path = normalize_remote_path(path)
        with self._lock:
            target = self._target_path(path, overwrite, parent_rev)
            size = self.storage.write_file(target, data)
            stored = self.db.save_file(target, size)
        logger.info("Stored %s (%d bytes)", target, size)
        return stored

    def metadata(self, path: str) -> StoredFile | None:
        return self.db.get_file(normalize_remote_path(path))

    def is_dir(self, path: str) -> bool:
        return self.storage.is_dir(path)

    def _target_path(self, path: str, overwrite: bool, parent_rev: str | None) -> str:
        existing = self.db.get_file(path)
        if existing is None:
            return path
        if parent_rev is not None:
            if existing.rev == parent_rev:
                return path
        elif overwrite:
            return path
        attempt = 1
        while self.db.get_file(conflict_path(path, attempt)) is not None:
            attempt += 1
        return conflict_path(path, attempt)

    def _expire_sessions(self) -> None:
        cutoff = datetime.now(UTC) - self._session_ttl
        for upload_id in self.db.expire_sessions(cutoff):
            self.storage.discard_session(upload_id)
            logger.info("Expired upload session %s", upload_id)
