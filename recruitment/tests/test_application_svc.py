"""Tests for the application state machine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from recruitment.errors import SideEffectError, StateConflictError, ValidationError
from recruitment.services import application_svc, cycle_svc, question_svc, slot_svc


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_fall_2025_draft_and_submit(db: AsyncSession):
    cycle = await cycle_svc.create_cycle(
        db, name="Fall 2025", slug="fall-2025",
        portal_open_at=utc(2025, 9, 1), application_due_at=utc(2025, 9, 15),
        portal_close_at=utc(2025, 9, 30), activate=True,
    )
    assert (await cycle_svc.get_active_cycle(db)).id == cycle.id

    draft = await application_svc.start_draft(db, cycle.id, "X@Example.org", track="business")
    assert draft.stage == "draft"
    assert draft.applicant_email == "x@example.org"
    assert draft.track == "business"

    submitted = await application_svc.submit(db, draft.id, now=utc(2025, 9, 10))
    assert submitted.stage == "submitted"
    assert submitted.submitted_at is not None


@pytest.mark.asyncio
async def test_save_draft_is_idempotent_upsert(db: AsyncSession, cycle):
    first = await application_svc.save_draft(db, cycle.id, "a@example.org", answers={"q1": "one"})
    second = await application_svc.save_draft(db, cycle.id, "a@example.org", answers={"q2": "two"})
    assert first.id == second.id
    assert second.answers == {"q1": "one", "q2": "two"}

    again = await application_svc.save_draft(db, cycle.id, "a@example.org", answers={"q1": "uno"})
    assert again.answers == {"q1": "uno", "q2": "two"}
    assert len(await application_svc.list_applications(db, cycle.id)) == 1


@pytest.mark.asyncio
async def test_track_is_immutable_once_set(db: AsyncSession, cycle):
    application = await application_svc.save_draft(db, cycle.id, "t@example.org", track="engineering")
    same = await application_svc.save_draft(db, cycle.id, "t@example.org", track="engineering")
    assert same.track == "engineering"

    with pytest.raises(StateConflictError) as exc:
        await application_svc.save_draft(db, cycle.id, "t@example.org", track="business")
    assert exc.value.reason == "track_locked"

    with pytest.raises(ValidationError) as exc:
        await application_svc.save_draft(db, cycle.id, "other@example.org", track="design")
    assert exc.value.reason == "invalid_track"
    assert application.track == "engineering"


@pytest.mark.asyncio
async def test_submit_requires_track(db: AsyncSession, cycle):
    application = await application_svc.save_draft(db, cycle.id, "nt@example.org")
    with pytest.raises(ValidationError) as exc:
        await application_svc.submit(db, application.id)
    assert exc.value.reason == "invalid_track"

    submitted = await application_svc.submit(db, application.id, track="business")
    assert submitted.track == "business"


@pytest.mark.asyncio
async def test_submit_outside_window(db: AsyncSession):
    cycle = await cycle_svc.create_cycle(
        db, name="Closed", slug="closed",
        portal_open_at=utc(2025, 9, 1), application_due_at=utc(2025, 9, 15), portal_close_at=utc(2025, 9, 30),
    )
    application = await application_svc.save_draft(db, cycle.id, "late@example.org", track="business")
    for moment in (utc(2025, 8, 31), utc(2025, 9, 16)):
        with pytest.raises(StateConflictError) as exc:
            await application_svc.submit(db, application.id, now=moment)
        assert exc.value.reason == "submission_closed"


@pytest.mark.asyncio
async def test_submit_validates_question_set(db: AsyncSession, cycle):
    await question_svc.upsert_questions(db, cycle.id, None, [
        {"key": "why", "label": "Why us?", "type": "textarea", "required": True, "word_limit": 5},
        {"key": "resume", "label": "Resume", "type": "file", "required": True},
    ])
    await question_svc.upsert_questions(db, cycle.id, "engineering", [
        {"key": "github", "label": "GitHub", "type": "url", "required": True},
    ])

    application = await application_svc.save_draft(db, cycle.id, "q@example.org", track="engineering")
    with pytest.raises(ValidationError) as exc:
        await application_svc.submit(db, application.id)
    assert exc.value.reason == "missing_required_fields"
    assert set(exc.value.details["fields"]) == {"why", "resume", "github"}
    assert "Why us?" in exc.value.message

    await application_svc.save_draft(
        db, cycle.id, "q@example.org",
        answers={"why": "one two three four five six", "github": "https://github.com/q"},
    )
    await application_svc.attach_file(db, application.id, "resume", b"%PDF-1.4 resume")
    with pytest.raises(ValidationError) as exc:
        await application_svc.submit(db, application.id)
    assert exc.value.reason == "word_limit_exceeded"
    assert exc.value.details["fields"][0]["words"] == 6

    await application_svc.save_draft(db, cycle.id, "q@example.org", answers={"why": "short and sweet"})
    submitted = await application_svc.submit(db, application.id)
    assert submitted.stage == "submitted"
    assert submitted.files["resume"].startswith("blob://sha256/")


@pytest.mark.asyncio
async def test_business_track_ignores_engineering_questions(db: AsyncSession, cycle):
    await question_svc.upsert_questions(db, cycle.id, "engineering", [
        {"key": "github", "label": "GitHub", "type": "url", "required": True},
    ])
    application = await application_svc.save_draft(db, cycle.id, "b@example.org", track="business")
    submitted = await application_svc.submit(db, application.id)
    assert submitted.stage == "submitted"


@pytest.mark.asyncio
async def test_no_edits_after_submission(db: AsyncSession, cycle, make_submitted):
    application = await make_submitted(cycle, "done@example.org")
    with pytest.raises(StateConflictError) as exc:
        await application_svc.save_draft(db, cycle.id, "done@example.org", answers={"why": "changed"})
    assert exc.value.reason == "not_editable"

    with pytest.raises(StateConflictError) as exc:
        await application_svc.submit(db, application.id)
    assert exc.value.reason == "invalid_transition"


@pytest.mark.asyncio
async def test_attach_file_stores_reference(db: AsyncSession, cycle, storage):
    application = await application_svc.save_draft(db, cycle.id, "f@example.org")
    updated = await application_svc.attach_file(
        db, application.id, "portfolio", "data:text/plain;base64,aGVsbG8=", metadata={"filename": "p.txt"}
    )
    reference = updated.files["portfolio"]
    assert storage.read(reference) == b"hello"


@pytest.mark.asyncio
async def test_attach_file_storage_failure(db: AsyncSession, cycle):
    class BrokenStorage:
        def store(self, payload, metadata=None):
            raise OSError("disk full")

    application = await application_svc.save_draft(db, cycle.id, "s@example.org")
    with pytest.raises(SideEffectError) as exc:
        await application_svc.attach_file(db, application.id, "resume", b"x", storage=BrokenStorage())
    assert exc.value.reason == "storage_failed"


@pytest.mark.asyncio
async def test_advance_stage_enforces_forward_transitions(db: AsyncSession, cycle, make_submitted):
    application = await make_submitted(cycle, "adv@example.org")
    moved = await application_svc.advance_stage(db, application.id, "interview_round1")
    assert moved.stage == "interview_round1"

    with pytest.raises(StateConflictError) as exc:
        await application_svc.advance_stage(db, application.id, "submitted")
    assert exc.value.reason == "invalid_transition"

    with pytest.raises(StateConflictError):
        await application_svc.advance_stage(db, application.id, "accepted")


@pytest.mark.asyncio
async def test_admin_override_can_move_backwards(db: AsyncSession, cycle, make_submitted):
    application = await make_submitted(cycle, "back@example.org")
    await application_svc.admin_set_stage(db, application.id, "rejected", reason="mistake", actor="admin@example.org")
    restored = await application_svc.admin_set_stage(
        db, application.id, "under_review", reason="restored", actor="admin@example.org"
    )
    assert restored.stage == "under_review"

    with pytest.raises(ValidationError):
        await application_svc.admin_set_stage(db, application.id, "hired")


@pytest.mark.asyncio
async def test_withdraw_is_terminal_and_releases_bookings(db: AsyncSession, cycle, make_submitted):
    application = await make_submitted(cycle, "w@example.org")
    slot = await slot_svc.create_slot(
        db, cycle.id, kind="coffee_chat",
        start_time=datetime.now(timezone.utc) + timedelta(days=3), host_name="Host",
    )
    await slot_svc.book_slot(db, slot.id, "w@example.org")

    result = await application_svc.withdraw(db, application.id, actor="w@example.org")
    assert result.application.stage == "withdrawn"
    assert result.application.withdrawn_at is not None
    assert len(result.released_bookings) == 1
    assert result.warnings == []

    refreshed = await slot_svc.require_slot(db, slot.id, refresh=True)
    assert refreshed.booked_count == 0
    assert await slot_svc.count_confirmed(db, slot.id) == 0

    with pytest.raises(StateConflictError) as exc:
        await application_svc.withdraw(db, application.id)
    assert exc.value.reason == "invalid_transition"
