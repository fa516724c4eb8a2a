"""Local filesystem storage of upload sessions and committed files.

This module provides:
- InvalidPathError: a client path escapes the storage root
- LocalFSStorage: session data files and committed files under one directory
"""

from __future__ import annotations

import os
import posixpath
from pathlib import Path


class InvalidPathError(ValueError):
    """Raised when a client path is empty or escapes the storage root."""


def normalize_remote_path(path: str) -> str:
    """Normalize a client path to "a/b/c" form.

    Raises:
        InvalidPathError: If the path is empty or has ".." components.
    """
    parts = [p for p in path.replace("\\", "/").split("/") if p and p != "."]
    if not parts or ".." in parts:
        raise InvalidPathError(f"Invalid path: {path!r}")
    return posixpath.join(*parts)


class LocalFSStorage:
    """Local filesystem storage for the reference store.

    Session bytes go to <base>/sessions/<upload_id>, committed files to
    <base>/files/<path>.
    """

    def __init__(self, base_path: Path | str) -> None:
        """Initialize local storage.

        Args:
            base_path: Base directory of the store.
        """
        self._base_path = Path(base_path).resolve()
        self._sessions = self._base_path / "sessions"
        self._files = self._base_path / "files"
        self._sessions.mkdir(parents=True, exist_ok=True)
        self._files.mkdir(parents=True, exist_ok=True)

    @property
    def location(self) -> str:
        """Return the local storage path."""
        return f"Local filesystem: {self._base_path}"

    def _session_path(self, upload_id: str) -> Path:
        if not upload_id.isalnum():
            raise InvalidPathError(f"Invalid upload id: {upload_id!r}")
        return self._sessions / upload_id

    def file_path(self, path: str) -> Path:
        """Absolute location of a committed file."""
        return self._files / normalize_remote_path(path)

    # === Sessions ===

    def append_session(self, upload_id: str, data: bytes) -> int:
        """Append to a session's data and return its new size."""
        session_path = self._session_path(upload_id)
        with open(session_path, "ab") as f:
            f.write(data)
        return session_path.stat().st_size

    def session_size(self, upload_id: str) -> int:
        session_path = self._session_path(upload_id)
        return session_path.stat().st_size if session_path.exists() else 0

    def discard_session(self, upload_id: str) -> None:
        self._session_path(upload_id).unlink(missing_ok=True)

    def commit_session(self, upload_id: str, path: str) -> int:
        """Move a session's data to a committed path and return its size."""
        destination = self.file_path(path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        session_path = self._session_path(upload_id)
        if not session_path.exists():
            session_path.touch()
        os.replace(session_path, destination)
        return destination.stat().st_size

    # === Files ===

    def write_file(self, path: str, data: bytes) -> int:
        destination = self.file_path(path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(data)
        return len(data)

    def read_file(self, path: str) -> bytes:
        return self.file_path(path).read_bytes()

    def is_dir(self, path: str) -> bool:
        return self.file_path(path).is_dir()
