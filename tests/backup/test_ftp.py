"""Tests for FTPTransport."""

import ftplib
import io
import zipfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from worldbackup.backup.ftp import FTPTransport, remote_join
from worldbackup.core.exclusion import ExclusionSet
from worldbackup.core.types import ItemStatus


@pytest.fixture
def world(tmp_path: Path) -> Path:
    """Tree with a nested folder, an excluded folder and a lock file."""
    root = tmp_path / "world"
    (root / "region").mkdir(parents=True)
    (root / "cache").mkdir()
    (root / "level.dat").write_bytes(b"level")
    (root / "region" / "r.0.0.mca").write_bytes(b"region")
    (root / "cache" / "junk").write_bytes(b"junk")
    (root / "session.lck").write_bytes(b"")
    return root


@pytest.fixture
def ftp() -> MagicMock:
    """Mock ftplib.FTP recording stored files by remote path."""
    mock = MagicMock(spec=ftplib.FTP)
    mock.stored = {}

    def storbinary(cmd: str, fp, blocksize: int = 8192) -> str:  # type: ignore[no-untyped-def]
        assert cmd.startswith("STOR ")
        mock.stored[cmd[5:]] = fp.read()
        return "226 Transfer complete"

    mock.storbinary.side_effect = storbinary
    return mock


def make_transport(ftp: MagicMock) -> FTPTransport:
    return FTPTransport("ftp.example", 2121, "mc", "pw", ftp_factory=lambda: ftp)


class TestRemoteJoin:
    """Tests for remote_join."""

    def test_join(self) -> None:
        """Relative paths are appended with '/'."""
        assert remote_join("/backups", "world/level.dat") == "/backups/world/level.dat"

    def test_empty_base(self) -> None:
        """An empty base gives the relative path."""
        assert remote_join("", "level.dat") == "level.dat"


class TestConnection:
    """Tests for connect and close."""

    def test_connect_and_login(self, ftp: MagicMock) -> None:
        """The context manager connects, logs in and quits."""
        with make_transport(ftp) as transport:
            assert transport.ftp is ftp

        ftp.connect.assert_called_once_with("ftp.example", 2121, timeout=30.0)
        ftp.login.assert_called_once_with("mc", "pw")
        ftp.quit.assert_called_once()

    def test_quit_failure_closes(self, ftp: MagicMock) -> None:
        """A failing QUIT still closes the socket."""
        ftp.quit.side_effect = EOFError()
        transport = make_transport(ftp)
        transport.connect()
        transport.close()
        ftp.close.assert_called_once()

    def test_not_connected(self) -> None:
        """Using the transport before connect() is an error."""
        with pytest.raises(RuntimeError):
            _ = FTPTransport("ftp.example").ftp


class TestUploadTree:
    """Tests for the file-by-file push."""

    def test_one_stor_per_file(self, world: Path, ftp: MagicMock) -> None:
        """Every non-excluded file is stored under the remote directory."""
        with make_transport(ftp) as transport:
            summary = transport.upload_tree(world, "/backups/run/world", ExclusionSet(["cache"]))

        assert ftp.stored == {
            "/backups/run/world/level.dat": b"level",
            "/backups/run/world/region/r.0.0.mca": b"region",
        }
        assert summary.succeeded_count == 2
        assert summary.paths(ItemStatus.SKIPPED) == {"cache", "session.lck"}

    def test_creates_remote_dirs_with_parents(self, world: Path, ftp: MagicMock) -> None:
        """Remote folders and their parents are created once."""
        with make_transport(ftp) as transport:
            transport.upload_tree(world, "/backups/run/world", ExclusionSet(["cache"]))

        created = [c.args[0] for c in ftp.mkd.call_args_list]
        assert created == [
            "/backups",
            "/backups/run",
            "/backups/run/world",
            "/backups/run/world/region",
        ]

    def test_existing_dirs_tolerated(self, world: Path, ftp: MagicMock) -> None:
        """550 on MKD does not stop the push."""
        ftp.mkd.side_effect = ftplib.error_perm("550 File exists")
        with make_transport(ftp) as transport:
            summary = transport.upload_tree(world, "/backups", ExclusionSet(["cache"]))
        assert summary.ok

    def test_failed_stor_recorded(self, world: Path, ftp: MagicMock) -> None:
        """A failed STOR is recorded and the other files are still sent."""
        stored = ftp.storbinary.side_effect

        def flaky(cmd: str, fp, blocksize: int = 8192) -> str:  # type: ignore[no-untyped-def]
            if cmd.endswith("level.dat"):
                raise ftplib.error_perm("553 Not allowed")
            return stored(cmd, fp, blocksize)

        ftp.storbinary.side_effect = flaky
        with make_transport(ftp) as transport:
            summary = transport.upload_tree(world, "/b", ExclusionSet(["cache"]))

        assert summary.paths(ItemStatus.FAILED) == {"level.dat"}
        assert list(ftp.stored) == ["/b/region/r.0.0.mca"]


class TestUploadArchive:
    """Tests for the archived push."""

    def test_single_zip_stor(self, world: Path, ftp: MagicMock) -> None:
        """The tree is sent as one zip named after the root."""
        with make_transport(ftp) as transport:
            summary = transport.upload_archive(world, "/backups/run", ExclusionSet(["cache"]))

        assert list(ftp.stored) == ["/backups/run/world.zip"]
        with zipfile.ZipFile(io.BytesIO(ftp.stored["/backups/run/world.zip"])) as zf:
            assert sorted(zf.namelist()) == ["world/level.dat", "world/region/r.0.0.mca"]
        assert summary.succeeded_count == 2
