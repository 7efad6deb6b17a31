"""Async engine, session factory and the FastAPI session dependency."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings


def build_engine(url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    url = url or settings.database_url
    kwargs = {"echo": settings.echo_sql if echo is None else echo}
    if url.startswith("sqlite"):
        # Writers queue on SQLite's single write lock instead of failing fast.
        kwargs["connect_args"] = {"timeout": settings.sqlite_busy_timeout_seconds}
    else:
        kwargs["pool_pre_ping"] = True
    return create_async_engine(url, **kwargs)


engine = build_engine()
async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    async with async_session_factory() as session:
        yield session
