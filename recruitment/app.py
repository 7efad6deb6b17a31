"""FastAPI application factory for the recruitment portal."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import settings
from .errors import RecruitmentError
from .worker import notification_worker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.getLogger("recruitment").setLevel(settings.log_level.upper())
    # Auto-create tables for SQLite (local dev)
    if "sqlite" in settings.database_url:
        from .database import engine
        from .models import Base
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    notification_worker.start()
    yield
    await notification_worker.stop()


app = FastAPI(title=settings.app_title, lifespan=lifespan)


@app.exception_handler(RecruitmentError)
async def recruitment_error_handler(request: Request, exc: RecruitmentError) -> JSONResponse:
    logger.warning(
        "%s %s rejected: %s (%s)", request.method, request.url.path, exc.reason, exc.message
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


# Import and register routers
from .routers import (  # noqa: E402
    applications,
    audit,
    cycles,
    events,
    health,
    phases,
    slots,
)

app.include_router(health.router)
app.include_router(cycles.router)
app.include_router(applications.router)
app.include_router(phases.router)
app.include_router(slots.router)
app.include_router(events.router)
app.include_router(audit.router)
