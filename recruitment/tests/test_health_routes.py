"""Tests for health endpoints."""

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from recruitment.database import get_db


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
    assert resp.json()["service"] == "recruitment"


@pytest.mark.asyncio
async def test_ready(client: AsyncClient):
    resp = await client.get("/ready")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ready"
    assert body["checks"]["database"] == "ok"
    # The test client does not run the lifespan, so the worker is idle.
    assert body["checks"]["notification_worker"] == "stopped"


@pytest.mark.asyncio
async def test_ready_reports_database_outage(client: AsyncClient):
    from recruitment.app import app

    class BrokenSession:
        async def execute(self, *args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    async def broken_db():
        yield BrokenSession()

    previous = app.dependency_overrides[get_db]
    app.dependency_overrides[get_db] = broken_db
    try:
        resp = await client.get("/ready")
    finally:
        app.dependency_overrides[get_db] = previous

    assert resp.status_code == 503
    assert resp.json()["checks"]["database"] == "unavailable"
