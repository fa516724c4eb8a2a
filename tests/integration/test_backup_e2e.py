"""End-to-end tests: backups uploaded to the reference store."""

import io
import os
import zipfile
from collections.abc import Generator
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.types import ASGIApp

from worldbackup.authority.bridge import AuthorityLoop, SyncBridge
from worldbackup.backup.chunked import ChunkedUploadClient, ChunkedUploader, WriteMode
from worldbackup.backup.runner import BackupRunner
from worldbackup.core.config import BackupTarget, Destination, DestinationKind
from worldbackup.server.app import build_store, create_app
from worldbackup.server.store import UploadStore

RUN_NAME = "2024-05-06_07-08-09"


@pytest.fixture
def store(tmp_path: Path) -> Generator[UploadStore, None, None]:
    """Reference store in a temporary directory."""
    s = build_store(tmp_path / "storage")
    yield s
    s.close()


@pytest.fixture
def client(store: UploadStore) -> Generator[ChunkedUploadClient, None, None]:
    """Chunked upload client talking to the store app in-process."""
    c = ChunkedUploadClient(client=TestClient(create_app(store)), retry_backoff=0)
    yield c
    c.close()


class LossyTestClient(TestClient):
    """Delivers requests to the app but loses the first response from one endpoint."""

    def __init__(self, app: ASGIApp, endpoint: str) -> None:
        super().__init__(app)
        self._endpoint = endpoint
        self.lost = 0

    def request(self, method: str, url: Any, **kwargs: Any) -> httpx.Response:  # type: ignore[override]
        response = super().request(method, url, **kwargs)
        if self._endpoint in str(url) and not self.lost:
            self.lost += 1
            raise httpx.ReadError("connection reset by peer")
        return response


@pytest.fixture
def world(tmp_path: Path) -> Path:
    """World large enough to need several chunks."""
    root = tmp_path / "world"
    (root / "region").mkdir(parents=True)
    (root / "cache").mkdir()
    (root / "level.dat").write_bytes(os.urandom(3000))
    (root / "region" / "r.0.0.mca").write_bytes(os.urandom(20_000))
    (root / "cache" / "tmp").write_bytes(b"skip me")
    (root / "session.lck").write_bytes(b"")
    return root


class TestChunkedUploadE2E:
    """Tests for ChunkedUploader against the store."""

    def test_multi_chunk_upload(self, client: ChunkedUploadClient, store: UploadStore) -> None:
        """A payload spanning many chunks arrives intact."""
        data = os.urandom(10_000)
        uploader = ChunkedUploader(client, "backups/blob.bin", chunk_size=1024)
        for i in range(0, len(data), 700):
            uploader.write(data[i : i + 700])

        remote = uploader.finish(expected_size=len(data))

        assert remote.size == len(data)
        assert store.storage.read_file("backups/blob.bin") == data

    def test_lost_ack_corrected(self, client: ChunkedUploadClient, store: UploadStore) -> None:
        """Bytes the store got but never acknowledged are not sent twice."""
        session = client.upload_first(b"0123")
        # The store received the first half of the next chunk, the client never heard
        store.append(session.upload_id, 4, b"abcd")

        client.append_chunk(session, b"abcdefgh")

        assert session.committed_offset == 12
        remote = client.commit("lost.bin", WriteMode.add(), session.upload_id)
        assert remote.size == 12
        assert store.storage.read_file("lost.bin") == b"0123abcdefgh"

    def test_lost_commit_response(self, store: UploadStore) -> None:
        """A commit whose answer was lost is retried without a second file."""
        lossy = LossyTestClient(create_app(store), "commit_chunked_upload")
        client = ChunkedUploadClient(client=lossy, retry_backoff=0)
        store.put("backups/world.zip", b"previous run")
        uploader = ChunkedUploader(client, "backups/world.zip", chunk_size=4)

        uploader.write(b"0123456789")
        remote = uploader.finish()

        assert lossy.lost == 1
        assert remote.path == "backups/world (1).zip"
        assert remote.size == 10
        assert store.storage.read_file("backups/world (1).zip") == b"0123456789"
        assert store.metadata("backups/world (2).zip") is None

    def test_lost_direct_write_response_not_resent(self, store: UploadStore) -> None:
        """A direct write in add mode is not resent once it may have landed."""
        lossy = LossyTestClient(create_app(store), "files_put")
        client = ChunkedUploadClient(client=lossy, retry_backoff=0)
        uploader = ChunkedUploader(client, "backups/small.zip", chunk_size=64)
        uploader.write(b"tiny")

        with pytest.raises(httpx.ReadError):
            uploader.finish()

        assert store.storage.read_file("backups/small.zip") == b"tiny"
        assert store.metadata("backups/small (1).zip") is None

    def test_lost_forced_write_response_resent(self, store: UploadStore) -> None:
        """A forced direct write is idempotent and is resent."""
        lossy = LossyTestClient(create_app(store), "files_put")
        client = ChunkedUploadClient(client=lossy, retry_backoff=0)
        uploader = ChunkedUploader(client, "backups/small.zip", WriteMode.force(), chunk_size=64)
        uploader.write(b"tiny")

        remote = uploader.finish()

        assert remote.path == "backups/small.zip"
        assert store.metadata("backups/small (1).zip") is None


class TestBackupRunnerE2E:
    """Tests for full backup runs to the store."""

    def make_runner(self, client: ChunkedUploadClient) -> BackupRunner:
        loop = AuthorityLoop()
        return BackupRunner(
            SyncBridge(loop),
            chunk_size=4096,
            clock=lambda: datetime(2024, 5, 6, 7, 8, 9),
            cloud_client_factory=lambda destination: client,
        )

    def target(self, world: Path, archived: bool) -> BackupTarget:
        return BackupTarget(
            source=world,
            destination=Destination(DestinationKind.CLOUD, "/worlds", url="http://testserver"),
            archived=archived,
            exclusions=("cache",),
        )

    def test_archived_backup(
        self, client: ChunkedUploadClient, store: UploadStore, world: Path
    ) -> None:
        """The streamed archive is committed as one zip."""
        summary = self.make_runner(client).run(self.target(world, archived=True))

        assert summary.succeeded_count == 2
        data = store.storage.read_file(f"worlds/{RUN_NAME}/world.zip")
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert sorted(zf.namelist()) == ["world/level.dat", "world/region/r.0.0.mca"]
            assert zf.read("world/region/r.0.0.mca") == (
                world / "region" / "r.0.0.mca"
            ).read_bytes()

    def test_mirrored_backup(
        self, client: ChunkedUploadClient, store: UploadStore, world: Path
    ) -> None:
        """Each file is uploaded to its own path."""
        summary = self.make_runner(client).run(self.target(world, archived=False))

        assert summary.bytes_processed == 23_000
        base = f"worlds/{RUN_NAME}/world"
        assert store.storage.read_file(f"{base}/level.dat") == (world / "level.dat").read_bytes()
        assert store.metadata(f"{base}/region/r.0.0.mca") is not None
        assert store.metadata(f"{base}/cache/tmp") is None
