"""Tests for the cycle registry."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from recruitment.errors import DependencyError, NotFoundError, StateConflictError, ValidationError
from recruitment.models import PhaseConfig, RecruitmentCycle
from recruitment.services import application_svc, cycle_svc, event_svc, slot_svc

OPEN = datetime(2025, 9, 1, tzinfo=timezone.utc)
DUE = datetime(2025, 9, 15, tzinfo=timezone.utc)
CLOSE = datetime(2025, 9, 30, tzinfo=timezone.utc)


async def _create(db, slug, activate=False):
    return await cycle_svc.create_cycle(
        db, name=slug.title(), slug=slug,
        portal_open_at=OPEN, application_due_at=DUE, portal_close_at=CLOSE, activate=activate,
    )


async def _active_count(db) -> int:
    result = await db.execute(
        select(func.count()).select_from(RecruitmentCycle).where(RecruitmentCycle.is_active.is_(True))
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_create_cycle_initializes_phase_configs(db: AsyncSession):
    cycle = await _create(db, "fall-2025")
    assert cycle.slug == "fall-2025"
    assert cycle.is_active is False

    configs = (await db.execute(select(PhaseConfig).where(PhaseConfig.cycle_id == cycle.id))).scalars().all()
    assert sorted(c.phase for c in configs) == ["application", "interview_round1", "interview_round2"]
    assert all(c.status == "open" for c in configs)
    assert all(c.min_reviewers_required == 2 for c in configs)
    assert all(c.scoring_categories for c in configs)


@pytest.mark.asyncio
async def test_create_cycle_rejects_bad_date_order(db: AsyncSession):
    with pytest.raises(ValidationError) as exc:
        await cycle_svc.create_cycle(
            db, name="Bad", slug="bad",
            portal_open_at=DUE, application_due_at=OPEN, portal_close_at=CLOSE,
        )
    assert exc.value.reason == "invalid_dates"


@pytest.mark.asyncio
async def test_create_cycle_rejects_duplicate_slug(db: AsyncSession):
    await _create(db, "dup")
    with pytest.raises(StateConflictError) as exc:
        await _create(db, "DUP")
    assert exc.value.reason == "slug_taken"


@pytest.mark.asyncio
async def test_update_cycle_validates_merged_dates(db: AsyncSession):
    cycle = await _create(db, "edit-me")
    updated = await cycle_svc.update_cycle(db, cycle.id, name="Renamed")
    assert updated.name == "Renamed"

    with pytest.raises(ValidationError) as exc:
        await cycle_svc.update_cycle(db, cycle.id, portal_close_at=OPEN - timedelta(days=1))
    assert exc.value.reason == "invalid_dates"


@pytest.mark.asyncio
async def test_set_active_keeps_single_active_cycle(db: AsyncSession):
    cycles = [await _create(db, f"cycle-{i}") for i in range(4)]
    assert await _active_count(db) == 0

    for target in (cycles[2], cycles[0], cycles[3], cycles[3], cycles[1]):
        await cycle_svc.set_active(db, target.id)
        assert await _active_count(db) == 1
        active = await cycle_svc.get_active_cycle(db)
        assert active.id == target.id

    assert [c.is_active for c in cycles] == [False, True, False, False]


@pytest.mark.asyncio
async def test_create_with_activate_swaps_active(db: AsyncSession):
    first = await _create(db, "first", activate=True)
    second = await _create(db, "second", activate=True)
    assert await _active_count(db) == 1
    assert first.is_active is False
    assert second.is_active is True


@pytest.mark.asyncio
async def test_concurrent_activation_never_leaves_two_active(tmp_path):
    from sqlalchemy.ext.asyncio import AsyncSession as Session, async_sessionmaker, create_async_engine

    from recruitment.models import Base

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'activate.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=Session, expire_on_commit=False)
    try:
        async with factory() as setup:
            ids = [(await _create(setup, f"race-{i}")).id for i in range(5)]

        async def activate(cycle_id):
            async with factory() as session:
                await cycle_svc.set_active(session, cycle_id)

        await asyncio.gather(*(activate(i) for i in ids))
        async with factory() as check:
            assert await _active_count(check) == 1
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_set_active_unknown_cycle(db: AsyncSession):
    import uuid
    with pytest.raises(NotFoundError):
        await cycle_svc.set_active(db, uuid.uuid4())


@pytest.mark.asyncio
async def test_delete_empty_cycle(db: AsyncSession):
    cycle = await _create(db, "empty")
    summary = await cycle_svc.delete_cycle(db, cycle.id)
    assert summary["applications"] == 0
    assert await cycle_svc.get_cycle(db, cycle.id) is None


@pytest.mark.asyncio
async def test_delete_cycle_requires_confirmation(db: AsyncSession):
    cycle = await _create(db, "busy")
    await application_svc.save_draft(db, cycle.id, "a@example.org")
    await slot_svc.create_slot(
        db, cycle.id, kind="coffee_chat", start_time=CLOSE, host_name="Host"
    )
    await event_svc.create_event(
        db, cycle.id, title="Info", start_at=OPEN, end_at=OPEN + timedelta(hours=1)
    )

    with pytest.raises(DependencyError) as exc:
        await cycle_svc.delete_cycle(db, cycle.id)
    assert exc.value.reason == "confirmation_required"
    assert exc.value.summary["applications"] == 1
    assert exc.value.summary["slots"] == 1
    assert exc.value.summary["events"] == 1
    assert "1 applications" in exc.value.message
    assert await cycle_svc.get_cycle(db, cycle.id) is not None

    summary = await cycle_svc.delete_cycle(db, cycle.id, cascade_confirmed=True)
    assert summary == exc.value.summary
    assert await cycle_svc.get_cycle(db, cycle.id) is None
    assert await application_svc.list_applications(db, cycle.id) == []
