"""Tests for the archive writer and local mirror."""

import io
import os
import zipfile
from pathlib import Path
from unittest.mock import patch

import pytest

from worldbackup.backup.archive import ArchiveWriter, archive_entry_name, mirror_tree
from worldbackup.core.exclusion import ExclusionSet
from worldbackup.core.types import ItemStatus


class NonSeekableStream(io.RawIOBase):
    """Write-only stream that can't seek or tell, like an upload."""

    def __init__(self) -> None:
        self.buffer = bytearray()

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:  # type: ignore[no-untyped-def]
        self.buffer.extend(b)
        return len(b)


@pytest.fixture
def world(tmp_path: Path) -> Path:
    """Tree with a file, an excluded folder and a lock file."""
    root = tmp_path / "world"
    (root / "b").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"0123456789")
    (root / "b" / "c.txt").write_bytes(b"excluded")
    (root / "a.txt.lck").write_bytes(b"lock")
    return root


class TestArchiveEntryName:
    """Tests for entry naming."""

    def test_prefixed_with_root_name(self, tmp_path: Path) -> None:
        """Entries start with the root folder name."""
        name = archive_entry_name(tmp_path / "world", os.path.join("region", "r.mca"))
        assert name == os.path.join("world", "region", "r.mca")


class TestArchiveWriter:
    """Tests for ArchiveWriter."""

    def test_archive_contents(self, world: Path, tmp_path: Path) -> None:
        """Only non-excluded, non-lock files are archived under the root name."""
        archive_path = tmp_path / "out" / "world.zip"

        summary = ArchiveWriter(ExclusionSet(["b"])).write_archive(world, archive_path)

        with zipfile.ZipFile(archive_path) as zf:
            assert zf.namelist() == ["world/a.txt"]
            assert zf.read("world/a.txt") == b"0123456789"
        assert summary.succeeded_count == 1
        assert summary.bytes_processed == 10
        assert summary.paths(ItemStatus.SKIPPED) == {"b", "a.txt.lck"}

    def test_nested_entries_use_slashes(self, world: Path) -> None:
        """Nested entries are stored with '/' separators."""
        out = io.BytesIO()
        ArchiveWriter().stream_to_archive(world, out)

        with zipfile.ZipFile(io.BytesIO(out.getvalue())) as zf:
            assert sorted(zf.namelist()) == ["world/a.txt", "world/b/c.txt"]

    def test_non_seekable_destination(self, world: Path) -> None:
        """The archive can be streamed to a stream without seek or tell."""
        stream = NonSeekableStream()

        ArchiveWriter(ExclusionSet(["b"])).stream_to_archive(world, stream)

        assert not stream.closed
        with zipfile.ZipFile(io.BytesIO(bytes(stream.buffer))) as zf:
            assert zf.read("world/a.txt") == b"0123456789"
            assert zf.testzip() is None

    def test_large_file_streamed(self, tmp_path: Path) -> None:
        """Files much larger than the buffer are archived intact."""
        root = tmp_path / "big"
        root.mkdir()
        data = os.urandom(100_000)
        (root / "region.mca").write_bytes(data)
        out = io.BytesIO()

        ArchiveWriter(buffer_size=1024).stream_to_archive(root, out)

        with zipfile.ZipFile(io.BytesIO(out.getvalue())) as zf:
            assert zf.read("big/region.mca") == data

    def test_unreadable_file_skipped(self, world: Path) -> None:
        """A file that can't be opened is recorded, the archive continues."""
        (world / "z.txt").write_bytes(b"z")
        out = io.BytesIO()

        def fake_open(path: Path, *args, **kwargs):  # type: ignore[no-untyped-def]
            if path.name == "a.txt":
                raise PermissionError("locked by server")
            return open(path, "rb")

        with patch("worldbackup.backup.archive.open_source_file", fake_open):
            summary = ArchiveWriter(ExclusionSet(["b"])).stream_to_archive(world, out)

        assert summary.paths(ItemStatus.FAILED) == {"a.txt"}
        with zipfile.ZipFile(io.BytesIO(out.getvalue())) as zf:
            assert zf.namelist() == ["world/z.txt"]

    def test_old_mtime_clamped(self, world: Path) -> None:
        """Files older than 1980 still get a valid zip timestamp."""
        os.utime(world / "a.txt", (0, 0))
        out = io.BytesIO()

        ArchiveWriter(ExclusionSet(["b"])).stream_to_archive(world, out)

        with zipfile.ZipFile(io.BytesIO(out.getvalue())) as zf:
            assert zf.getinfo("world/a.txt").date_time == (1980, 1, 1, 0, 0, 0)


class TestMirrorTree:
    """Tests for mirror_tree."""

    def test_copies_tree(self, world: Path, tmp_path: Path) -> None:
        """Files are copied with their modification time."""
        os.utime(world / "a.txt", (1_600_000_000, 1_600_000_000))
        target = tmp_path / "copy"

        summary = mirror_tree(world, target, ExclusionSet(["b"]))

        assert (target / "a.txt").read_bytes() == b"0123456789"
        assert (target / "a.txt").stat().st_mtime == 1_600_000_000
        assert not (target / "b").exists()
        assert not (target / "a.txt.lck").exists()
        assert summary.succeeded_count == 1

    def test_creates_nested_folders(self, world: Path, tmp_path: Path) -> None:
        """Nested folders are created in the copy."""
        target = tmp_path / "copy"
        mirror_tree(world, target)
        assert (target / "b" / "c.txt").read_bytes() == b"excluded"
