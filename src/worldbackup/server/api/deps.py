"""FastAPI dependencies for API routes."""

from __future__ import annotations

import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from worldbackup.server.store import UploadStore

# Security scheme
security = HTTPBearer(auto_error=False)


def get_store(request: Request) -> UploadStore:
    """Get upload store from app state."""
    store: UploadStore = request.app.state.store
    return store


def verify_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> None:
    """Check the bearer token when the app was created with one."""
    expected: str | None = request.app.state.token
    if expected is None:
        return
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not secrets.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
