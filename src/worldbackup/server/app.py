"""FastAPI application for the reference chunked-upload store.

Usage:
    uvicorn worldbackup.server.app:app_factory --factory --port 8000
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path

from fastapi import FastAPI

from worldbackup.core.log import setup_logging
from worldbackup.server.api.router import router as api_router
from worldbackup.server.database import Database
from worldbackup.server.storage import LocalFSStorage
from worldbackup.server.store import DEFAULT_SESSION_TTL, UploadStore

logger = logging.getLogger(__name__)


def create_app(store: UploadStore, token: str | None = None) -> FastAPI:
    """Create FastAPI application around a store.

    Args:
        store: Upload store instance.
        token: Bearer token required on every /1 route, None for no auth.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        logger.info("Upload store starting")
        logger.info("  Database: %s", store.db.path)
        logger.info("  Storage:  %s", store.storage.location)
        logger.info("  Auth:     %s", "bearer token" if token else "disabled")

        yield

        logger.info("Upload store shutting down")
        store.close()

    application = FastAPI(
        title="worldbackup store",
        description="Reference chunked-upload object store",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.state.store = store
    application.state.token = token

    application.include_router(api_router)

    return application


def build_store(
    storage_path: Path,
    db_path: Path | None = None,
    session_ttl: timedelta = DEFAULT_SESSION_TTL,
) -> UploadStore:
    """Create a store with its database inside storage_path unless given."""
    db = Database(db_path or storage_path / "store.db")
    return UploadStore(db, LocalFSStorage(storage_path), session_ttl)


def app_factory() -> FastAPI:
    """Factory function for uvicorn --factory mode.

    Reads WORLDBACKUP_STORAGE_PATH, WORLDBACKUP_DB_PATH, WORLDBACKUP_TOKEN,
    WORLDBACKUP_LOG_PATH and WORLDBACKUP_SESSION_TTL (seconds).
    """
    log_path = os.environ.get("WORLDBACKUP_LOG_PATH")
    setup_logging(log_path=Path(log_path) if log_path else None)

    storage_path = Path(os.environ.get("WORLDBACKUP_STORAGE_PATH", "storage"))
    db_path = os.environ.get("WORLDBACKUP_DB_PATH")
    ttl = os.environ.get("WORLDBACKUP_SESSION_TTL")
    store = build_store(
        storage_path,
        Path(db_path) if db_path else None,
        timedelta(seconds=float(ttl)) if ttl else DEFAULT_SESSION_TTL,
    )
    return create_app(store, token=os.environ.get("WORLDBACKUP_TOKEN") or None)
