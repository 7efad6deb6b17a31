"""Tests for the cutoff decision engine."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from recruitment.database import build_engine
from recruitment.errors import StateConflictError, ValidationError
from recruitment.models import Application, Base, PhaseConfig, PhaseDecision
from recruitment.services import application_svc, cutoff_svc, cycle_svc, ranking_svc, review_svc
from recruitment.services.cutoff_svc import CutoffCriteria, ManualOverride

SINGLE_CATEGORY = [{"key": "overall", "label": "Overall", "min_score": 1, "max_score": 10, "weight": 1}]


async def stage_of(db: AsyncSession, application_id) -> str:
    result = await db.execute(select(Application.stage).where(Application.id == application_id))
    return result.scalar_one()


async def phase_status(db: AsyncSession, cycle_id, phase: str) -> str:
    result = await db.execute(
        select(PhaseConfig.status).where(PhaseConfig.cycle_id == cycle_id, PhaseConfig.phase == phase)
    )
    return result.scalar_one()


@pytest_asyncio.fixture
async def ranked(db: AsyncSession, cycle, make_submitted):
    """Two business and two engineering applicants, ranked; returns ids by name."""
    await review_svc.update_phase_config(
        db, cycle.id, "application", scoring_categories=SINGLE_CATEGORY, min_reviewers_required=1
    )
    base = datetime.now(timezone.utc) - timedelta(days=1)
    scores = {"b_top": 9, "b_next": 7, "e_top": 8, "e_next": 5}
    ids = {}
    for offset, (name, score) in enumerate(scores.items()):
        track = "business" if name.startswith("b_") else "engineering"
        application = await make_submitted(cycle, f"{name}@example.org", track, base + timedelta(minutes=offset))
        await review_svc.record_review(
            db, cycle.id, "application", application.id, "r@example.org", {"overall": score}
        )
        ids[name] = application.id
    await ranking_svc.generate_rankings(db, cycle.id, "application")
    return ids


@pytest.mark.asyncio
async def test_override_rejects_top_and_next_advances(db: AsyncSession, cycle, ranked, notifier):
    cycle_id = cycle.id
    result = await cutoff_svc.apply_cutoff(
        db, cycle_id, "application",
        {"type": "top_n", "value": 1},
        manual_overrides=[ManualOverride(ranked["b_top"], "reject", "conflict of interest")],
        actor="admin@example.org",
    )

    assert await stage_of(db, ranked["b_top"]) == "rejected"
    assert await stage_of(db, ranked["b_next"]) == "interview_round1"
    assert await stage_of(db, ranked["e_top"]) == "interview_round1"
    assert await stage_of(db, ranked["e_next"]) == "rejected"
    assert set(result.advanced) == {ranked["b_next"], ranked["e_top"]}
    assert await phase_status(db, cycle_id, "application") == "finalized"

    decisions = {d.application_id: d for d in await cutoff_svc.get_phase_decisions(db, cycle_id, "application")}
    assert decisions[ranked["b_top"]].action == "manual_reject"
    assert decisions[ranked["b_top"]].reason == "conflict of interest"
    assert decisions[ranked["b_next"]].action == "advance"
    assert decisions[ranked["e_next"]].previous_stage == "under_review"

    kinds = sorted(kind for _, kind, _ in notifier.sent)
    assert kinds == ["phase_advanced", "phase_advanced", "phase_rejected", "phase_rejected"]
    assert result.warnings == []


@pytest.mark.asyncio
async def test_per_track_criteria_and_min_score(db: AsyncSession, cycle, ranked):
    result = await cutoff_svc.apply_cutoff(
        db, cycle.id, "application",
        {"business": {"type": "min_score", "value": 7}, "engineering": {"type": "top_n", "value": 0}},
        send_notifications=False,
    )
    assert set(result.advanced) == {ranked["b_top"], ranked["b_next"]}
    assert set(result.rejected) == {ranked["e_top"], ranked["e_next"]}


@pytest.mark.asyncio
async def test_failure_mid_cutoff_changes_nothing(db: AsyncSession, cycle, ranked, monkeypatch):
    cycle_id = cycle.id
    real_apply = cutoff_svc.apply_decision
    calls = []

    def failing_apply(*args, **kwargs):
        calls.append(1)
        if len(calls) == 3:
            raise RuntimeError("injected failure")
        return real_apply(*args, **kwargs)

    monkeypatch.setattr(cutoff_svc, "apply_decision", failing_apply)
    with pytest.raises(RuntimeError):
        await cutoff_svc.apply_cutoff(db, cycle_id, "application", CutoffCriteria("top_n", 1))

    assert len(calls) == 3
    assert await phase_status(db, cycle_id, "application") == "open"
    for application_id in ranked.values():
        assert await stage_of(db, application_id) == "under_review"
    assert await cutoff_svc.get_phase_decisions(db, cycle_id, "application") == []

    monkeypatch.setattr(cutoff_svc, "apply_decision", real_apply)
    result = await cutoff_svc.apply_cutoff(db, cycle_id, "application", CutoffCriteria("top_n", 1))
    assert len(result.advanced) == 2


@pytest.mark.asyncio
async def test_finalized_phase_blocks_everything(db: AsyncSession, cycle, ranked):
    cycle_id = cycle.id
    await cutoff_svc.apply_cutoff(db, cycle_id, "application", CutoffCriteria("top_n", 1), send_notifications=False)

    with pytest.raises(StateConflictError) as exc:
        await cutoff_svc.apply_cutoff(db, cycle_id, "application", CutoffCriteria("top_n", 1))
    assert exc.value.reason == "phase_finalized"

    with pytest.raises(StateConflictError) as exc:
        await ranking_svc.generate_rankings(db, cycle_id, "application")
    assert exc.value.reason == "phase_finalized"

    with pytest.raises(StateConflictError) as exc:
        await review_svc.record_review(
            db, cycle_id, "application", ranked["b_top"], "late@example.org", {"overall": 3}
        )
    assert exc.value.reason == "phase_locked"


@pytest.mark.asyncio
async def test_cutoff_requires_ranking(db: AsyncSession, cycle, make_submitted):
    await make_submitted(cycle, "solo@example.org")
    with pytest.raises(StateConflictError) as exc:
        await cutoff_svc.apply_cutoff(db, cycle.id, "application", CutoffCriteria("top_n", 1))
    assert exc.value.reason == "no_ranking"


@pytest.mark.asyncio
async def test_cutoff_can_require_complete_reviews(db: AsyncSession, cycle, ranked):
    await review_svc.update_phase_config(db, cycle.id, "application", min_reviewers_required=2)
    with pytest.raises(StateConflictError) as exc:
        await cutoff_svc.apply_cutoff(
            db, cycle.id, "application", CutoffCriteria("top_n", 1), require_complete_reviews=True
        )
    assert exc.value.reason == "reviews_incomplete"
    assert exc.value.details["applicants_fully_reviewed"] == 0


@pytest.mark.asyncio
async def test_unscored_rejected_unless_overridden(db: AsyncSession, cycle, ranked, make_submitted):
    cycle_id = cycle.id
    quiet = await make_submitted(cycle, "quiet@example.org", "business")
    loud = await make_submitted(cycle, "loud@example.org", "business")
    quiet_id, loud_id = quiet.id, loud.id
    await ranking_svc.generate_rankings(db, cycle_id, "application")

    result = await cutoff_svc.apply_cutoff(
        db, cycle_id, "application", CutoffCriteria("top_n", 5),
        manual_overrides=[ManualOverride(loud_id, "advance", "strong referral")],
        send_notifications=False,
    )
    assert quiet_id in result.unscored
    assert await stage_of(db, quiet_id) == "rejected"
    assert await stage_of(db, loud_id) == "interview_round1"


@pytest.mark.asyncio
async def test_invalid_criteria_and_overrides(db: AsyncSession, cycle, ranked):
    with pytest.raises(ValidationError) as exc:
        await cutoff_svc.apply_cutoff(db, cycle.id, "application", {"type": "best_of"})
    assert exc.value.reason == "invalid_criteria"

    with pytest.raises(ValidationError) as exc:
        await cutoff_svc.apply_cutoff(db, cycle.id, "application", {"business": {"type": "top_n", "value": 1}})
    assert exc.value.reason == "invalid_criteria"

    with pytest.raises(ValidationError) as exc:
        ManualOverride(ranked["b_top"], "promote")
    assert exc.value.reason == "invalid_override"

    with pytest.raises(ValidationError) as exc:
        await cutoff_svc.apply_cutoff(
            db, cycle.id, "application", CutoffCriteria("top_n", 1),
            manual_overrides=[ManualOverride(uuid.uuid4(), "advance")],
        )
    assert exc.value.reason == "invalid_override"


@pytest.mark.asyncio
async def test_failed_notification_is_a_warning(db: AsyncSession, cycle, ranked):
    from recruitment.notifications import set_notifier

    class DownNotifier:
        async def notify(self, recipient, kind, context):
            raise ConnectionError("mail relay down")

    set_notifier(DownNotifier())
    result = await cutoff_svc.apply_cutoff(db, cycle.id, "application", CutoffCriteria("top_n", 1))
    assert len(result.warnings) == 4
    assert all("mail relay down" in w.error for w in result.warnings)
    assert await phase_status(db, cycle.id, "application") == "finalized"


@pytest.mark.asyncio
async def test_manual_criteria_only_overrides_advance(db: AsyncSession, cycle, ranked):
    result = await cutoff_svc.apply_cutoff(
        db, cycle.id, "application",
        CutoffCriteria("manual"),
        manual_overrides=[ManualOverride(ranked["e_next"], "advance", "strong portfolio")],
        send_notifications=False,
    )
    assert result.advanced == [ranked["e_next"]]
    assert await stage_of(db, ranked["e_next"]) == "interview_round1"
    assert await stage_of(db, ranked["b_top"]) == "rejected"


async def ranked_file_db(tmp_path, applicants: int = 4):
    """A file-backed database with a ranked application phase, for multi-session tests."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'cutoff.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    now = datetime.now(timezone.utc)
    async with factory() as setup:
        cycle = await cycle_svc.create_cycle(
            setup, name="Race", slug="race",
            portal_open_at=now - timedelta(days=2), application_due_at=now + timedelta(days=2),
            portal_close_at=now + timedelta(days=4), activate=True,
        )
        cycle_id = cycle.id
        await review_svc.update_phase_config(
            setup, cycle_id, "application", scoring_categories=SINGLE_CATEGORY, min_reviewers_required=1
        )
        ids = []
        for n in range(applicants):
            draft = await application_svc.save_draft(
                setup, cycle_id, f"racer{n}@example.org", answers={"why": "because"}, track="business"
            )
            application = await application_svc.submit(setup, draft.id, now=now - timedelta(minutes=n))
            ids.append(application.id)
            await review_svc.record_review(
                setup, cycle_id, "application", application.id, "r@example.org", {"overall": 10 - n}
            )
        await ranking_svc.generate_rankings(setup, cycle_id, "application")
    return engine, factory, cycle_id, ids


@pytest.mark.asyncio
async def test_two_concurrent_cutoffs_finalize_once(tmp_path, notifier):
    engine, factory, cycle_id, ids = await ranked_file_db(tmp_path)

    async def attempt():
        async with factory() as session:
            return await cutoff_svc.apply_cutoff(session, cycle_id, "application", CutoffCriteria("top_n", 1))

    try:
        outcomes = await asyncio.gather(attempt(), attempt(), return_exceptions=True)
        applied = [o for o in outcomes if isinstance(o, cutoff_svc.CutoffResult)]
        refused = [o for o in outcomes if isinstance(o, StateConflictError) and o.reason == "phase_finalized"]
        assert len(applied) == 1
        assert len(refused) == 1

        async with factory() as check:
            decisions = await check.execute(select(func.count()).select_from(PhaseDecision))
            assert decisions.scalar_one() == len(ids)
            assert await phase_status(check, cycle_id, "application") == "finalized"
        assert len([kind for _, kind, _ in notifier.sent if kind.startswith("phase_")]) == len(ids)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_stale_session_cannot_write_into_finalized_phase(tmp_path):
    engine, factory, cycle_id, ids = await ranked_file_db(tmp_path, applicants=2)
    try:
        async with factory() as reviewer, factory() as admin:
            config = await review_svc.get_phase_config(reviewer, cycle_id, "application")
            config_id = config.id
            assert config.status == "open"

            await cutoff_svc.apply_cutoff(
                admin, cycle_id, "application", CutoffCriteria("top_n", 1), send_notifications=False
            )

            with pytest.raises(StateConflictError) as exc:
                await review_svc.hold_phase_open(reviewer, config_id, "application", reason="phase_locked")
            assert exc.value.reason == "phase_locked"

            with pytest.raises(StateConflictError) as exc:
                await ranking_svc.generate_rankings(reviewer, cycle_id, "application")
            assert exc.value.reason == "phase_finalized"
    finally:
        await engine.dispose()
