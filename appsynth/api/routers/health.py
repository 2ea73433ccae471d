"""Health check router."""

import logging
import os

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from appsynth.config import VERSION
from appsynth.repos.db import get_pool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Return health status with a real DB connectivity check."""
    if os.getenv("TESTING") == "1":
        db_ok = True
    else:
        try:
            pool = await get_pool()
            db_ok = await pool.fetchval("SELECT 1") == 1
        except Exception as exc:
            logger.warning("Health check: database unreachable (%s)", exc)
            db_ok = False

    if db_ok:
        return {"status": "ok", "db": "connected"}
    return JSONResponse(
        {"status": "degraded", "db": "unreachable"},
        status_code=503,
    )


@router.get("/health/version")
async def health_version() -> dict:
    """Return the application version."""
    return {"version": VERSION}
