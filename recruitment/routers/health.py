"""Liveness and readiness probes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import get_db
from ..worker import notification_worker

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "recruitment", "environment": settings.environment}


@router.get("/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """Ready once the database answers; worker and blobstore state are informational."""
    checks = {
        "notification_worker": "running" if notification_worker.is_running else "stopped",
        "blobstore": "ok" if settings.blobstore_path.exists() else "missing",
    }
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as exc:
        logger.warning("Readiness check failed: %s", exc)
        checks["database"] = "unavailable"
        return JSONResponse(status_code=503, content={"status": "unavailable", "checks": checks})
    return {"status": "ready", "service": "recruitment", "checks": checks}
