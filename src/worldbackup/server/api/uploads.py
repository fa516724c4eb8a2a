"""Chunked upload API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from worldbackup.server.api.deps import get_store, verify_token
from worldbackup.server.schemas import (
    ChunkedUploadResponse,
    FileMetadataResponse,
    file_to_response,
)
from worldbackup.server.storage import InvalidPathError
from worldbackup.server.store import OffsetMismatchError, SessionNotFoundError, UploadStore

router = APIRouter(prefix="/1", tags=["uploads"], dependencies=[Depends(verify_token)])


@router.put("/chunked_upload", response_model=ChunkedUploadResponse)
async def chunked_upload(
    request: Request,
    upload_id: str | None = None,
    offset: int | None = None,
    store: UploadStore = Depends(get_store),
) -> ChunkedUploadResponse | JSONResponse:
    """Open a session with a first chunk, or append a chunk at offset.

    An offset other than the session's gets a 400 carrying the session's
    offset, so the client can resend from there.
    """
    data = await request.body()
    if upload_id is None:
        new_id, new_offset = store.start_session(data)
        return ChunkedUploadResponse(upload_id=new_id, offset=new_offset)

    if offset is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="offset is required with upload_id",
        )
    try:
        new_offset = store.append(upload_id, offset, data)
    except SessionNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Upload session not found: {upload_id}",
        ) from e
    except OffsetMismatchError as e:
        correction = ChunkedUploadResponse(upload_id=e.upload_id, offset=e.offset)
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=correction.model_dump())
    return ChunkedUploadResponse(upload_id=upload_id, offset=new_offset)


@router.post("/commit_chunked_upload/{path:path}", response_model=FileMetadataResponse)
def commit_chunked_upload(
    path: str,
    upload_id: str,
    overwrite: bool = False,
    parent_rev: str | None = None,
    store: UploadStore = Depends(get_store),
) -> FileMetadataResponse:
    """Materialize an upload session as a file."""
    try:
        stored = store.commit(upload_id, path, overwrite=overwrite, parent_rev=parent_rev)
    except SessionNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Upload session not found: {upload_id}",
        ) from e
    except InvalidPathError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return file_to_response(stored)
