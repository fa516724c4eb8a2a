"""Direct file API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from worldbackup.server.api.deps import get_store, verify_token
from worldbackup.server.schemas import FileMetadataResponse, file_to_response, folder_response
from worldbackup.server.storage import InvalidPathError
from worldbackup.server.store import UploadStore

router = APIRouter(prefix="/1", tags=["files"], dependencies=[Depends(verify_token)])


@router.put("/files_put/{path:path}", response_model=FileMetadataResponse)
async def files_put(
    path: str,
    request: Request,
    overwrite: bool = False,
    parent_rev: str | None = None,
    store: UploadStore = Depends(get_store),
) -> FileMetadataResponse:
    """Write a whole file in one request."""
    data = await request.body()
    try:
        stored = store.put(path, data, overwrite=overwrite, parent_rev=parent_rev)
    except InvalidPathError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return file_to_response(stored)


@router.get("/metadata/{path:path}", response_model=FileMetadataResponse)
def get_metadata(
    path: str,
    store: UploadStore = Depends(get_store),
) -> FileMetadataResponse:
    """Get metadata of a file or folder."""
    try:
        stored = store.metadata(path)
        if stored is None and store.is_dir(path):
            return folder_response(path)
    except InvalidPathError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    if stored is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File not found: {path}",
        )
    return file_to_response(stored)
