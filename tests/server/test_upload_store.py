"""Tests for the upload store, database and filesystem storage."""

from collections.abc import Iterator
from datetime import timedelta
from pathlib import Path

import pytest

from worldbackup.server.app import build_store
from worldbackup.server.storage import InvalidPathError, normalize_remote_path
from worldbackup.server.store import (
    OffsetMismatchError,
    SessionNotFoundError,
    UploadStore,
    conflict_path,
)


@pytest.fixture
def store(tmp_path: Path) -> Iterator[UploadStore]:
    """Store with its database in the storage directory."""
    s = build_store(tmp_path / "storage")
    yield s
    s.close()


class TestPaths:
    """Tests for path helpers."""

    def test_normalize(self) -> None:
        """Leading, doubled and backslash separators are normalized."""
        assert normalize_remote_path("/a//b\\c.zip") == "a/b/c.zip"

    @pytest.mark.parametrize("path", ["", "/", "../etc/passwd", "a/../../b"])
    def test_invalid(self, path: str) -> None:
        """Empty paths and parent references are rejected."""
        with pytest.raises(InvalidPathError):
            normalize_remote_path(path)

    def test_conflict_path(self) -> None:
        """The attempt number goes before the extension."""
        assert conflict_path("backups/world.zip", 2) == "backups/world (2).zip"
        assert conflict_path("README", 1) == "README (1)"


class TestSessions:
    """Tests for chunked sessions."""

    def test_start_append_commit(self, store: UploadStore) -> None:
        """A session accumulates chunks and becomes a file."""
        upload_id, offset = store.start_session(b"hello ")
        assert offset == 6

        assert store.append(upload_id, 6, b"world") == 11
        stored = store.commit(upload_id, "/backups/hello.txt")

        assert stored.path == "backups/hello.txt"
        assert stored.size == 11
        assert store.storage.read_file("backups/hello.txt") == b"hello world"

    def test_offset_mismatch(self, store: UploadStore) -> None:
        """An append at the wrong offset reports the session offset."""
        upload_id, _ = store.start_session(b"abcd")

        with pytest.raises(OffsetMismatchError) as exc_info:
            store.append(upload_id, 2, b"cd")

        assert exc_info.value.offset == 4
        assert store.append(upload_id, 4, b"ef") == 6

    def test_unknown_session(self, store: UploadStore) -> None:
        """Unknown sessions are reported on append and commit."""
        with pytest.raises(SessionNotFoundError):
            store.append("deadbeef", 0, b"x")
        with pytest.raises(SessionNotFoundError):
            store.commit("deadbeef", "x")

    def test_session_gone_after_commit(self, store: UploadStore) -> None:
        """A committed session can't be appended to."""
        upload_id, _ = store.start_session(b"a")
        store.commit(upload_id, "a.txt")
        with pytest.raises(SessionNotFoundError):
            store.append(upload_id, 1, b"b")

    def test_repeated_commit_returns_same_file(self, store: UploadStore) -> None:
        """Committing a session again gives the first commit's file."""
        store.put("world.zip", b"old")
        upload_id, _ = store.start_session(b"new")

        first = store.commit(upload_id, "world.zip")
        again = store.commit(upload_id, "world.zip")

        assert first.path == "world (1).zip"
        assert again.path == first.path
        assert again.rev == first.rev
        assert store.metadata("world (2).zip") is None

    def test_expired_sessions_discarded(self, tmp_path: Path) -> None:
        """Sessions older than the TTL are dropped with their data."""
        store = build_store(tmp_path / "storage", session_ttl=timedelta(seconds=-1))
        try:
            upload_id, _ = store.start_session(b"stale")
            with pytest.raises(SessionNotFoundError):
                store.append(upload_id, 5, b"x")
            assert store.storage.session_size(upload_id) == 0
        finally:
            store.close()


class TestWriteModes:
    """Tests for add, force and update semantics."""

    def test_add_renames_on_conflict(self, store: UploadStore) -> None:
        """Adding over an existing file creates a numbered copy."""
        store.put("world.zip", b"one")
        second = store.put("world.zip", b"two")
        third = store.put("world.zip", b"three")

        assert second.path == "world (1).zip"
        assert third.path == "world (2).zip"
        assert store.storage.read_file("world.zip") == b"one"

    def test_force_overwrites(self, store: UploadStore) -> None:
        """overwrite replaces the file and its revision."""
        first = store.put("level.dat", b"one")
        second = store.put("level.dat", b"two!", overwrite=True)

        assert second.path == "level.dat"
        assert second.size == 4
        assert second.rev != first.rev
        assert store.storage.read_file("level.dat") == b"two!"

    def test_update_with_current_rev(self, store: UploadStore) -> None:
        """A matching parent_rev overwrites."""
        first = store.put("level.dat", b"one")
        second = store.put("level.dat", b"two", overwrite=True, parent_rev=first.rev)
        assert second.path == "level.dat"

    def test_update_with_stale_rev(self, store: UploadStore) -> None:
        """A stale parent_rev is renamed like add."""
        store.put("level.dat", b"one")
        second = store.put("level.dat", b"two", overwrite=True, parent_rev="stale")
        assert second.path == "level (1).dat"

    def test_commit_renames_on_conflict(self, store: UploadStore) -> None:
        """Commits follow the same conflict rules."""
        store.put("world.zip", b"one")
        upload_id, _ = store.start_session(b"two")
        assert store.commit(upload_id, "world.zip").path == "world (1).zip"


class TestMetadata:
    """Tests for metadata lookups."""

    def test_metadata(self, store: UploadStore) -> None:
        """Committed files have metadata, folders are directories."""
        store.put("backups/world.zip", b"zip")

        stored = store.metadata("backups/world.zip")
        assert stored is not None
        assert stored.size == 3
        assert store.metadata("backups") is None
        assert store.is_dir("backups")
        assert store.metadata("missing") is None

    def test_database_persists(self, tmp_path: Path) -> None:
        """Metadata survives reopening the store."""
        first = build_store(tmp_path / "storage")
        rev = first.put("a.txt", b"abc").rev
        first.close()

        second = build_store(tmp_path / "storage")
        try:
            stored = second.metadata("a.txt")
            assert stored is not None
            assert stored.rev == rev
        finally:
            second.close()
