"""Async test fixtures for recruitment tests using SQLite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from recruitment.database import get_db
from recruitment.models import Base
from recruitment.notifications import LoggingNotifier, set_notifier
from recruitment.services import application_svc, cycle_svc
from recruitment.storage import BlobStorage, set_storage


@pytest.fixture(autouse=True)
def notifier():
    """Every test gets a fresh in-memory notifier."""
    fake = LoggingNotifier()
    set_notifier(fake)
    yield fake
    set_notifier(None)


@pytest.fixture(autouse=True)
def storage(tmp_path):
    store = BlobStorage(tmp_path / "blobstore")
    set_storage(store)
    yield store
    set_storage(None)


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def db(engine):
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(engine):
    """HTTPX async test client against the recruitment app."""
    from recruitment.app import app

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def cycle(db):
    """An open cycle whose submission window contains the current time."""
    now = datetime.now(timezone.utc)
    return await cycle_svc.create_cycle(
        db,
        name="Current",
        slug="current",
        portal_open_at=now - timedelta(days=7),
        application_due_at=now + timedelta(days=7),
        portal_close_at=now + timedelta(days=30),
        activate=True,
    )


@pytest.fixture
def make_submitted(db):
    """Factory: draft and submit an application inside the cycle's window."""

    async def _make(cycle, email: str, track: str = "business", submitted_at: datetime | None = None):
        application = await application_svc.save_draft(
            db, cycle.id, email, answers={"why": "because"}, track=track
        )
        return await application_svc.submit(db, application.id, now=submitted_at or datetime.now(timezone.utc))

    return _make


@pytest.fixture
def admin_headers():
    return {"X-Actor-Email": "admin@example.org", "X-Actor-Role": "admin"}


@pytest.fixture
def reviewer_headers():
    return {"X-Actor-Email": "reviewer@example.org", "X-Actor-Role": "reviewer"}
