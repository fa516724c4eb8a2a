"""Direct push of a tree to an FTP server.

This module provides:
- FTPTransport: mirror a tree file by file, or upload it as one zip archive

Each file is streamed with its own STOR; a file that fails is recorded and
the rest of the tree is still sent.
"""

from __future__ import annotations

import ftplib
import logging
import os
import posixpath
import tempfile
from collections.abc import Callable
from pathlib import Path

from worldbackup.backup.archive import ArchiveWriter
from worldbackup.core.exclusion import ExclusionSet
from worldbackup.core.streams import COPY_BUFFER_SIZE, open_source_file
from worldbackup.core.types import RunSummary
from worldbackup.core.walker import TreeWalker, WalkEntry

logger = logging.getLogger(__name__)


def remote_join(base: str, relative: str) -> str:
    """Join a local relative path onto a remote POSIX directory."""
    relative = relative.replace(os.sep, "/")
    return posixpath.join(base, relative) if base else relative


class FTPTransport:
    """Upload transport over FTP.

    Usage:
        with FTPTransport("ftp.example.org", username="backup", password="x") as ftp:
            summary = ftp.upload_tree(world_dir, "/backups/2024-01-01_00-00-00/world")
    """

    def __init__(
        self,
        host: str,
        port: int = 21,
        username: str = "anonymous",
        password: str = "",
        timeout: float = 30.0,
        ftp_factory: Callable[[], ftplib.FTP] = ftplib.FTP,
        cancel_check: Callable[[], bool] | None = None,
    ) -> None:
        """Initialize the transport. No connection is made yet.

        Args:
            host: FTP host.
            port: FTP port.
            username: Login user.
            password: Login password.
            timeout: Socket timeout in seconds.
            ftp_factory: Creates the unconnected ftplib.FTP instance.
            cancel_check: Polled between files.
        """
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._timeout = timeout
        self._ftp_factory = ftp_factory
        self._cancel_check = cancel_check
        self._ftp: ftplib.FTP | None = None
        self._created_dirs: set[str] = set()

    def connect(self) -> None:
        """Connect and log in."""
        if self._ftp is not None:
            return
        ftp = self._ftp_factory()
        ftp.connect(self._host, self._port, timeout=self._timeout)
        ftp.login(self._username, self._password)
        self._ftp = ftp
        self._created_dirs.clear()
        logger.debug(f"Connected to ftp://{self._host}:{self._port}")

    def close(self) -> None:
        """Log out and close the connection."""
        if self._ftp is None:
            return
        ftp, self._ftp = self._ftp, None
        try:
            ftp.quit()
        except (ftplib.Error, OSError, EOFError) as e:
            logger.debug(f"QUIT failed, closing anyway: {e}")
            ftp.close()

    def __enter__(self) -> FTPTransport:
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def ftp(self) -> ftplib.FTP:
        if self._ftp is None:
            raise RuntimeError("FTP transport is not connected")
        return self._ftp

    def upload_tree(
        self,
        root: Path,
        remote_dir: str,
        exclusions: ExclusionSet | None = None,
    ) -> RunSummary:
        """Mirror root under remote_dir, one STOR per file.

        Returns:
            Summary of sent, skipped and failed files.
        """
        self._ensure_remote_dir(remote_dir)

        def make_dir(relative: str, _source: Path) -> None:
            self._ensure_remote_dir(remote_join(remote_dir, relative))

        def send_file(entry: WalkEntry) -> None:
            with open_source_file(entry.path) as src:
                self.ftp.storbinary(
                    f"STOR {remote_join(remote_dir, entry.relative)}",
                    src,
                    blocksize=COPY_BUFFER_SIZE,
                )

        summary = TreeWalker(root, exclusions, self._cancel_check).walk(send_file, make_dir)
        logger.info(f"Pushed {root} to ftp://{self._host}{remote_dir}: {summary}")
        return summary

    def upload_archive(
        self,
        root: Path,
        remote_dir: str,
        exclusions: ExclusionSet | None = None,
    ) -> RunSummary:
        """Zip root into a temporary file and send it with a single STOR.

        The archive is named "<root name>.zip" under remote_dir.
        """
        self._ensure_remote_dir(remote_dir)
        writer = ArchiveWriter(exclusions, cancel_check=self._cancel_check)
        with tempfile.TemporaryDirectory(prefix="worldbackup-") as tmp:
            archive_path = Path(tmp) / f"{Path(root).name}.zip"
            summary = writer.write_archive(Path(root), archive_path)
            with open(archive_path, "rb") as f:
                self.ftp.storbinary(
                    f"STOR {remote_join(remote_dir, archive_path.name)}",
                    f,
                    blocksize=COPY_BUFFER_SIZE,
                )
        return summary

    def _ensure_remote_dir(self, remote_dir: str) -> None:
        """Create remote_dir and its parents, once per connection."""
        if not remote_dir or remote_dir in self._created_dirs:
            return
        parent = posixpath.dirname(remote_dir.rstrip("/"))
        if parent and parent not in ("/", remote_dir):
            self._ensure_remote_dir(parent)
        try:
            self.ftp.mkd(remote_dir)
        except ftplib.error_perm as e:
            # 550: already exists, or not allowed; a following STOR will tell
            logger.debug(f"MKD {remote_dir}: {e}")
        self._created_dirs.add(remote_dir)
