"""Resumable chunked upload to a remote object store.

This module provides:
- WriteMode: how a committed file treats an existing remote file
- RemoteFile: metadata returned by the store
- ChunkedUploadSession: upload id plus the locally committed offset
- ChunkedUploadClient: one method per wire call, plus the corrective append
- ChunkedUploader: writable stream that uploads what is written to it
- upload_file: upload one local file

Wire contract (prefix /1):
- PUT /chunked_upload[?upload_id=&offset=] -> {"upload_id", "offset"}
  A 400 with the same body shape is an offset correction.
- POST /commit_chunked_upload/{path}?upload_id=&overwrite=[&parent_rev=]
- PUT /files_put/{path}?overwrite=[&parent_rev=]
- GET /metadata/{path}
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto
from io import RawIOBase
from pathlib import Path
from typing import Any, TypeVar

import httpx

from worldbackup.backup.retry import (
    DEFAULT_INITIAL_BACKOFF,
    TRANSIENT_EXCEPTIONS,
    UNSENT_EXCEPTIONS,
    retry_with_backoff,
)
from worldbackup.core.config import DEFAULT_CHUNK_SIZE
from worldbackup.core.streams import COPY_BUFFER_SIZE, copy_stream, open_source_file
from worldbackup.core.types import (
    IntegrityError,
    ProtocolError,
    ServerError,
    UnexpectedStatusError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_API_PREFIX = "/1"
MAX_ATTEMPTS = 3
MAX_OFFSET_CORRECTIONS = 8


@dataclass(frozen=True)
class WriteMode:
    """Conflict behaviour of a committed file.

    add: never overwrite, the store renames on conflict.
    force: always overwrite.
    update: overwrite only if the remote revision is still parent_rev.
    """

    overwrite: bool
    parent_rev: str | None = None

    @classmethod
    def add(cls) -> WriteMode:
        return cls(overwrite=False)

    @classmethod
    def force(cls) -> WriteMode:
        return cls(overwrite=True)

    @classmethod
    def update(cls, parent_rev: str) -> WriteMode:
        return cls(overwrite=True, parent_rev=parent_rev)

    @property
    def idempotent(self) -> bool:
        """Whether writing the same bytes twice leaves one file."""
        return self.overwrite and self.parent_rev is None

    def params(self) -> dict[str, str]:
        """Query parameters for commit and direct write calls."""
        params = {"overwrite": "true" if self.overwrite else "false"}
        if self.parent_rev is not None:
            params["parent_rev"] = self.parent_rev
        return params


class UploadState(Enum):
    """Progress of one ChunkedUploader."""

    NOT_STARTED = auto()
    FIRST_CHUNK_SENT = auto()
    APPENDING = auto()
    COMMITTED = auto()


@dataclass
class RemoteFile:
    """File metadata from the store."""

    path: str
    size: int
    rev: str = ""
    is_dir: bool = False
    modified: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteFile:
        """Create from API response dictionary."""
        return cls(
            path=data["path"],
            size=int(data["bytes"]),
            rev=data.get("rev", ""),
            is_dir=bool(data.get("is_dir", False)),
            modified=data.get("modified"),
        )


@dataclass
class ChunkedUploadSession:
    """A server-side upload session as the client sees it.

    committed_offset only moves forward, and only when the store
    acknowledges bytes.
    """

    upload_id: str
    committed_offset: int = 0


def _parse_offset_body(response: httpx.Response) -> tuple[str, int]:
    try:
        data = response.json()
        upload_id = data["upload_id"]
        offset = int(data["offset"])
    except (ValueError, KeyError, TypeError) as e:
        raise ProtocolError(
            f"Unparseable chunked upload response ({response.status_code}): {response.text!r}"
        ) from e
    if not isinstance(upload_id, str) or not upload_id or offset < 0:
        raise ProtocolError(f"Invalid chunked upload response: {response.text!r}")
    return upload_id, offset


def _raise_for_status(response: httpx.Response) -> None:
    if response.status_code == 200:
        return
    if response.status_code >= 500:
        raise ServerError(response.status_code, response.text)
    raise UnexpectedStatusError(response.status_code, response.text)


class ChunkedUploadClient:
    """HTTP client for the chunked upload API.

    The plain wire methods (upload_first, upload_append, commit, put_file)
    make exactly one request. with_retries() adds the bounded retry used by
    ChunkedUploader.
    """

    def __init__(
        self,
        base_url: str = "",
        token: str | None = None,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
        api_prefix: str = DEFAULT_API_PREFIX,
        max_attempts: int = MAX_ATTEMPTS,
        retry_backoff: float = DEFAULT_INITIAL_BACKOFF,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Base URL of the store.
            token: Bearer token, if the store requires one.
            timeout: Request timeout in seconds.
            client: Existing httpx client to use instead of creating one.
                It is not closed by close().
            api_prefix: Path prefix of the API.
            max_attempts: Attempts for calls retried on transient failures.
            retry_backoff: Initial backoff between attempts in seconds.
        """
        # Per request, never set on the client
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        if client is None:
            self._client = httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)
            self._owns_client = True
        else:
            self._client = client
            self._owns_client = False
        self._prefix = api_prefix.rstrip("/")
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff

    def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> ChunkedUploadClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _url(self, endpoint: str, path: str = "") -> str:
        url = f"{self._prefix}/{endpoint}"
        if path:
            url += "/" + path.lstrip("/")
        return url

    def with_retries(
        self,
        func: Callable[[], T],
        description: str,
        retryable_exceptions: tuple[type[Exception], ...] = TRANSIENT_EXCEPTIONS,
    ) -> T:
        """Run func, retrying transport errors and 5xx answers."""
        return retry_with_backoff(
            func,
            max_attempts=self.max_attempts,
            initial_backoff=self.retry_backoff,
            retryable_exceptions=retryable_exceptions,
            description=description,
        )

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the store is reachable."""
        try:
            response = self._client.get("/health", headers=self._headers)
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === Chunked session ===

    def upload_first(self, data: bytes | memoryview) -> ChunkedUploadSession:
        """Open a session with its first chunk.

        Raises:
            ProtocolError: The store answered 404 or a correction, or echoed
                an offset other than len(data).
        """
        response = self._client.put(
            self._url("chunked_upload"), content=bytes(data), headers=self._headers
        )
        if response.status_code == 404:
            raise ProtocolError("Store answered 404 to a first chunk")
        if response.status_code == 400:
            raise ProtocolError(f"Offset correction on a first chunk: {response.text!r}")
        _raise_for_status(response)

        upload_id, offset = _parse_offset_body(response)
        if offset != len(data):
            raise ProtocolError(
                f"First chunk of {len(data)} bytes acknowledged at offset {offset}"
            )
        logger.debug(f"Opened upload session {upload_id}")
        return ChunkedUploadSession(upload_id, offset)

    def upload_append(self, upload_id: str, offset: int, data: bytes | memoryview) -> int | None:
        """Send one chunk at the offset the client believes is committed.

        Returns:
            None when the store acknowledged offset + len(data), or the
            store's corrected offset.

        Raises:
            ProtocolError: Unparseable or inconsistent answer.
            UnexpectedStatusError: Any other non-200 status.
        """
        response = self._client.put(
            self._url("chunked_upload"),
            params={"upload_id": upload_id, "offset": str(offset)},
            content=bytes(data),
            headers=self._headers,
        )
        if response.status_code == 400:
            returned_id, corrected = _parse_offset_body(response)
            if returned_id != upload_id:
                raise ProtocolError(
                    f"Correction for session {returned_id}, expected {upload_id}"
                )
            if corrected == offset:
                raise ProtocolError(f"Corrected offset is the offset sent ({offset})")
            return corrected
        _raise_for_status(response)

        returned_id, new_offset = _parse_offset_body(response)
        if returned_id != upload_id:
            raise ProtocolError(f"Acknowledged session {returned_id}, expected {upload_id}")
        if new_offset != offset + len(data):
            raise ProtocolError(
                f"Appended {len(data)} bytes at {offset}, store reports {new_offset}"
            )
        return None

    def append_chunk(
        self,
        session: ChunkedUploadSession,
        data: bytes | memoryview,
        max_corrections: int = MAX_OFFSET_CORRECTIONS,
    ) -> None:
        """Append a chunk, reconciling offset corrections.

        After a correction only the unacknowledged suffix of the chunk is
        resent. session.committed_offset ends at the end of the chunk.

        Raises:
            ProtocolError: A correction went below the committed offset or
                past the end of the chunk, or corrections did not converge.
        """
        view = memoryview(data)
        chunk_start = session.committed_offset
        chunk_end = chunk_start + len(view)

        for _ in range(max_corrections + 1):
            known = session.committed_offset
            suffix = view[known - chunk_start :]
            corrected = self.with_retries(
                lambda: self.upload_append(session.upload_id, known, suffix),
                description=f"append at offset {known}",
            )
            if corrected is None:
                session.committed_offset = chunk_end
                return
            if corrected < known:
                raise ProtocolError(
                    f"Store offset went back from {known} to {corrected}: remote data lost"
                )
            if corrected > chunk_end:
                raise ProtocolError(
                    f"Store offset {corrected} is past the {chunk_end} bytes sent"
                )
            logger.warning(
                f"Upload {session.upload_id}: offset corrected from {known} to {corrected}"
            )
            session.committed_offset = corrected
            if corrected == chunk_end:
                return

        raise ProtocolError(
            f"Upload {session.upload_id}: offset did not converge after "
            f"{max_corrections} corrections"
        )

    def commit(self, target_path: str, write_mode: WriteMode, upload_id: str) -> RemoteFile:
        """Materialize the session as a remote file."""
        params = {"upload_id": upload_id, **write_mode.params()}
        response = self._client.post(
            self._url("commit_chunked_upload", target_path), params=params, headers=self._headers
        )
        return self._file_result(response, target_path)

    # === Direct operations ===

    def put_file(
        self,
        target_path: str,
        data: bytes | memoryview,
        write_mode: WriteMode | None = None,
    ) -> RemoteFile:
        """Write a whole file in one request."""
        write_mode = write_mode or WriteMode.add()
        response = self._client.put(
            self._url("files_put", target_path),
            params=write_mode.params(),
            content=bytes(data),
            headers=self._headers,
        )
        return self._file_result(response, target_path)

    def get_metadata(self, target_path: str) -> RemoteFile | None:
        """Get metadata of a remote file, None if it does not exist."""
        response = self._client.get(self._url("metadata", target_path), headers=self._headers)
        if response.status_code == 404:
            return None
        return self._file_result(response, target_path)

    def _file_result(self, response: httpx.Response, target_path: str) -> RemoteFile:
        _raise_for_status(response)
        try:
            remote = RemoteFile.from_dict(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise ProtocolError(f"Unparseable file metadata: {response.text!r}") from e
        if remote.is_dir:
            raise ProtocolError(f"Store returned folder metadata for {target_path}")
        return remote


class ChunkedUploader(RawIOBase):
    """Writable binary stream uploading everything written to it.

    Bytes are buffered up to one chunk. Once more than a chunk is buffered,
    a chunk is sent (opening the session on the first one). finish() sends
    the rest and commits. A payload that never exceeds one chunk is written
    with a single direct write instead.
    Once sending fails, every later write() and finish() raises that same
    failure without sending anything.

    Usage:
        uploader = ChunkedUploader(client, "backups/world.zip")
        ArchiveWriter().stream_to_archive(world_dir, uploader)
        remote = uploader.finish()
    """

    def __init__(
        self,
        client: ChunkedUploadClient,
        target_path: str,
        write_mode: WriteMode | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_corrections: int = MAX_OFFSET_CORRECTIONS,
    ) -> None:
        super().__init__()
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._client = client
        self._target_path = target_path
        self._write_mode = write_mode or WriteMode.add()
        self._chunk_size = chunk_size
        self._max_corrections = max_corrections
        self._buffer = bytearray()
        self._session: ChunkedUploadSession | None = None
        self._state = UploadState.NOT_STARTED
        self._bytes_written = 0
        self._failed: Exception | None = None

    @property
    def state(self) -> UploadState:
        return self._state

    @property
    def session(self) -> ChunkedUploadSession | None:
        return self._session

    @property
    def error(self) -> Exception | None:
        """The failure that stopped sending, if any."""
        return self._failed

    @property
    def bytes_written(self) -> int:
        """Bytes accepted by write() so far."""
        return self._bytes_written

    def writable(self) -> bool:
        return True

    def write(self, data: Any) -> int:  # type: ignore[override]
        if self.closed:
            raise ValueError("write to a finished upload")
        if self._failed is not None:
            raise self._failed
        view = memoryview(data).cast("B")
        self._buffer += view
        self._bytes_written += len(view)
        while len(self._buffer) > self._chunk_size:
            chunk = bytes(self._buffer[: self._chunk_size])
            del self._buffer[: self._chunk_size]
            self._send_chunk(chunk)
        return len(view)

    def _send_chunk(self, chunk: bytes) -> None:
        # A chunk that failed is gone from the buffer; nothing after it may be sent
        try:
            if self._session is None:
                self._session = self._client.with_retries(
                    lambda: self._client.upload_first(chunk),
                    description=f"first chunk of {self._target_path}",
                )
                self._state = UploadState.FIRST_CHUNK_SENT
                return
            self._client.append_chunk(self._session, chunk, self._max_corrections)
            self._state = UploadState.APPENDING
        except Exception as e:
            self._failed = e
            raise

    def finish(self, expected_size: int | None = None) -> RemoteFile:
        """Send what is left, commit and verify the remote size.

        Args:
            expected_size: Declared payload size, checked before committing.

        Returns:
            Metadata of the committed remote file.

        Raises:
            IntegrityError: The declared or the remote size differs from the
                bytes written.
        """
        if self._state is UploadState.COMMITTED:
            raise ValueError("upload already finished")
        if self._failed is not None:
            raise self._failed
        if expected_size is not None and expected_size != self._bytes_written:
            raise IntegrityError(
                f"{self._target_path}: declared {expected_size} bytes, "
                f"{self._bytes_written} written"
            )

        if self._session is None:
            payload = bytes(self._buffer)
            # Resent only when it cannot have been applied, unless applying twice is harmless
            remote = self._client.with_retries(
                lambda: self._client.put_file(self._target_path, payload, self._write_mode),
                description=f"write of {self._target_path}",
                retryable_exceptions=(
                    TRANSIENT_EXCEPTIONS if self._write_mode.idempotent else UNSENT_EXCEPTIONS
                ),
            )
        else:
            if self._buffer:
                self._send_chunk(bytes(self._buffer))
            session = self._session
            if session.committed_offset != self._bytes_written:
                raise IntegrityError(
                    f"{self._target_path}: session at offset {session.committed_offset}, "
                    f"{self._bytes_written} bytes written"
                )
            remote = self._client.with_retries(
                lambda: self._client.commit(self._target_path, self._write_mode, session.upload_id),
                description=f"commit of {self._target_path}",
            )
        self._buffer.clear()

        if remote.size != self._bytes_written:
            raise IntegrityError(
                f"{self._target_path}: store has {remote.size} bytes, "
                f"{self._bytes_written} were sent"
            )
        self._state = UploadState.COMMITTED
        self.close()
        logger.info(f"Uploaded {remote.path} ({remote.size} bytes)")
        return remote


def upload_file(
    client: ChunkedUploadClient,
    source: Path,
    target_path: str,
    write_mode: WriteMode | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> RemoteFile:
    """Upload one local file, chunked if it is larger than chunk_size."""
    uploader = ChunkedUploader(client, target_path, write_mode, chunk_size)
    with open_source_file(source) as src:
        copy_stream(src, uploader, COPY_BUFFER_SIZE)
    return uploader.finish()
