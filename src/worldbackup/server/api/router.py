"""Main API router that includes all sub-routers."""

from __future__ import annotations

from fastapi import APIRouter

from worldbackup.server.api import files, health, uploads

router = APIRouter()

router.include_router(health.router)
router.include_router(uploads.router)
router.include_router(files.router)
