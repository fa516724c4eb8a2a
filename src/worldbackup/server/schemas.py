"""Pydantic schemas for API responses."""

from __future__ import annotations

from pydantic import BaseModel

from worldbackup.server.models import StoredFile


class ChunkedUploadResponse(BaseModel):
    """Session state after a chunk; also the body of an offset correction."""

    upload_id: str
    offset: int


class FileMetadataResponse(BaseModel):
    """Metadata of a committed file or a folder."""

    path: str
    bytes: int
    rev: str = ""
    is_dir: bool = False
    modified: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str


def file_to_response(file: StoredFile) -> FileMetadataResponse:
    """Convert StoredFile to response model."""
    return FileMetadataResponse(
        path=file.path,
        bytes=file.size,
        rev=file.rev,
        modified=file.modified.isoformat(),
    )


def folder_response(path: str) -> FileMetadataResponse:
    return FileMetadataResponse(path=path, bytes=0, is_dir=True)
