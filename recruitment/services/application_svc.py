"""Application state machine: drafts, submission, stage moves, withdrawal."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import (
    NotFoundError, SideEffectError, SideEffectWarning, StateConflictError, ValidationError,
)
from ..models.application import Application
from ..models.slot import RecruitmentSlot, SlotBooking
from ..pipeline import EDITABLE_STAGES, STAGES, check_transition, validate_track
from ..storage import BlobStorage, StorageError, get_storage
from ..timeutil import ensure_utc, utcnow
from . import activity_svc, notification_svc, question_svc
from .cycle_svc import require_cycle
from .notification_svc import OutboundMessage

logger = logging.getLogger(__name__)


@dataclass
class WithdrawResult:
    application: Application
    released_bookings: list[SlotBooking] = field(default_factory=list)
    warnings: list[SideEffectWarning] = field(default_factory=list)


def normalize_email(email: str) -> str:
    value = (email or "").strip().lower()
    if "@" not in value:
        raise ValidationError("invalid_email", f"'{email}' is not a valid email address")
    return value


async def get_application(db: AsyncSession, application_id: uuid.UUID) -> Application | None:
    result = await db.execute(select(Application).where(Application.id == application_id))
    return result.scalar_one_or_none()


async def require_application(db: AsyncSession, application_id: uuid.UUID) -> Application:
    application = await get_application(db, application_id)
    if application is None:
        raise NotFoundError("application", application_id)
    return application


async def get_application_for(db: AsyncSession, cycle_id: uuid.UUID, applicant_email: str) -> Application | None:
    stmt = select(Application).where(
        Application.cycle_id == cycle_id,
        Application.applicant_email == normalize_email(applicant_email),
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_applications(
    db: AsyncSession,
    cycle_id: uuid.UUID,
    *,
    stage: str | None = None,
    track: str | None = None,
) -> list[Application]:
    stmt = select(Application).where(Application.cycle_id == cycle_id)
    if stage:
        stmt = stmt.where(Application.stage == stage)
    if track:
        stmt = stmt.where(Application.track == track)
    stmt = stmt.order_by(Application.created_at.asc(), Application.id.asc())
    result = await db.execute(stmt)
    return list(result.scalars().all())


def _apply_track(application: Application, track: str | None) -> None:
    if track is None:
        return
    validate_track(track)
    if application.track is not None and application.track != track:
        raise StateConflictError(
            "track_locked",
            "Track cannot be changed once chosen",
            {"track": application.track, "requested": track},
        )
    application.track = track


def _ensure_editable(application: Application) -> None:
    if application.stage not in EDITABLE_STAGES:
        raise StateConflictError(
            "not_editable",
            f"Application can no longer be edited (stage '{application.stage}')",
            {"stage": application.stage},
        )


async def start_draft(
    db: AsyncSession,
    cycle_id: uuid.UUID,
    applicant_email: str,
    applicant_name: str | None = None,
    track: str | None = None,
) -> Application:
    """Return the applicant's application for the cycle, creating a draft if needed."""
    return await save_draft(db, cycle_id, applicant_email, applicant_name=applicant_name, track=track)


async def save_draft(
    db: AsyncSession,
    cycle_id: uuid.UUID,
    applicant_email: str,
    answers: dict | None = None,
    files: dict | None = None,
    applicant_name: str | None = None,
    track: str | None = None,
    now: datetime | None = None,
    _retry: bool = True,
) -> Application:
    """Idempotent upsert of draft answers while the application is editable."""
    await require_cycle(db, cycle_id)
    email = normalize_email(applicant_email)
    now = now or utcnow()
    if track is not None:
        validate_track(track)

    application = await get_application_for(db, cycle_id, email)
    if application is None:
        application = Application(cycle_id=cycle_id, applicant_email=email, stage="draft", answers={}, files={})
        db.add(application)
    else:
        _ensure_editable(application)
        if application.stage == "not_started":
            check_transition(application.stage, "draft")
            application.stage = "draft"

    _apply_track(application, track)
    if applicant_name:
        application.applicant_name = applicant_name
    if answers:
        application.answers = {**(application.answers or {}), **answers}
    if files:
        application.files = {**(application.files or {}), **files}
    application.last_saved_at = now

    try:
        await db.commit()
    except IntegrityError:
        # Another request created the row first; apply onto theirs.
        await db.rollback()
        if not _retry:
            raise
        return await save_draft(
            db, cycle_id, email, answers=answers, files=files,
            applicant_name=applicant_name, track=track, now=now, _retry=False,
        )
    await db.refresh(application)
    return application


async def attach_file(
    db: AsyncSession,
    application_id: uuid.UUID,
    key: str,
    payload: bytes | str,
    metadata: dict | None = None,
    storage: BlobStorage | None = None,
) -> Application:
    """Store an upload and keep only its reference on the application."""
    application = await require_application(db, application_id)
    _ensure_editable(application)
    storage = storage or get_storage()
    try:
        reference = storage.store(payload, {**(metadata or {}), "application_id": str(application.id), "key": key})
    except (OSError, StorageError) as exc:
        logger.warning("File storage failed for application %s: %s", application.id, exc)
        raise SideEffectError("storage_failed", "File could not be stored, please retry") from exc

    application.files = {**(application.files or {}), key: reference}
    application.last_saved_at = utcnow()
    await db.commit()
    await db.refresh(application)
    return application


async def submit(
    db: AsyncSession,
    application_id: uuid.UUID,
    track: str | None = None,
    now: datetime | None = None,
) -> Application:
    """Move a draft to ``submitted`` after window and question-set checks."""
    application = await require_application(db, application_id)
    cycle = await require_cycle(db, application.cycle_id)
    now = now or utcnow()

    check_transition(application.stage, "submitted")
    if now < ensure_utc(cycle.portal_open_at) or now > ensure_utc(cycle.application_due_at):
        raise StateConflictError(
            "submission_closed",
            "Applications are not being accepted right now",
            {
                "portal_open_at": ensure_utc(cycle.portal_open_at).isoformat(),
                "application_due_at": ensure_utc(cycle.application_due_at).isoformat(),
            },
        )

    _apply_track(application, track)
    if application.track is None:
        raise ValidationError("invalid_track", "Choose a track before submitting", {"allowed": ["business", "engineering"]})

    fields = await question_svc.get_fields(db, application.cycle_id, application.track)
    question_svc.validate_submission(fields, application.answers or {}, application.files or {})

    application.stage = "submitted"
    application.submitted_at = now
    activity_svc.add_activity(
        db, "application", application.id, "submitted", created_by=application.applicant_email
    )
    await db.commit()
    await db.refresh(application)
    logger.info("Application %s submitted (%s)", application.id, application.track)
    return application


def transition(application: Application, new_stage: str) -> str:
    """Validate and apply a forward move in the caller's transaction. Returns the old stage."""
    previous = application.stage
    check_transition(previous, new_stage)
    application.stage = new_stage
    if new_stage == "withdrawn":
        application.withdrawn_at = utcnow()
    return previous


async def advance_stage(
    db: AsyncSession,
    application_id: uuid.UUID,
    new_stage: str,
    actor: str | None = None,
) -> Application:
    application = await require_application(db, application_id)
    previous = transition(application, new_stage)
    activity_svc.add_activity(
        db, "application", application.id, "stage_changed",
        metadata_json={"from": previous, "to": new_stage}, created_by=actor,
    )
    await db.commit()
    await db.refresh(application)
    return application


async def admin_set_stage(
    db: AsyncSession,
    application_id: uuid.UUID,
    stage: str,
    reason: str | None = None,
    actor: str | None = None,
) -> Application:
    """Administrative override; may move backwards. Always audited."""
    if stage not in STAGES:
        raise ValidationError("invalid_stage", f"Unknown stage '{stage}'")
    application = await require_application(db, application_id)
    previous = application.stage
    application.stage = stage
    application.withdrawn_at = utcnow() if stage == "withdrawn" else None
    activity_svc.add_activity(
        db, "application", application.id, "stage_overridden", reason,
        metadata_json={"from": previous, "to": stage}, created_by=actor,
    )
    await db.commit()
    await db.refresh(application)
    logger.info("Stage override for %s: %s -> %s by %s", application.id, previous, stage, actor)
    return application


async def withdraw(
    db: AsyncSession,
    application_id: uuid.UUID,
    actor: str | None = None,
    now: datetime | None = None,
) -> WithdrawResult:
    """Withdraw and release any upcoming confirmed bookings."""
    application = await require_application(db, application_id)
    now = now or utcnow()
    transition(application, "withdrawn")

    stmt = (
        select(SlotBooking)
        .join(RecruitmentSlot, RecruitmentSlot.id == SlotBooking.slot_id)
        .where(
            SlotBooking.cycle_id == application.cycle_id,
            SlotBooking.applicant_email == application.applicant_email,
            SlotBooking.status == "confirmed",
            RecruitmentSlot.start_time > now,
        )
    )
    released = list((await db.execute(stmt)).scalars().all())
    try:
        for booking in released:
            booking.status = "cancelled"
            booking.cancelled_at = now
            booking.cancelled_by = actor or application.applicant_email
            await db.execute(
                update(RecruitmentSlot)
                .where(RecruitmentSlot.id == booking.slot_id, RecruitmentSlot.booked_count > 0)
                .values(booked_count=RecruitmentSlot.booked_count - 1)
                .execution_options(synchronize_session=False)
            )
        activity_svc.add_activity(
            db, "application", application.id, "withdrawn",
            metadata_json={"released_bookings": len(released)}, created_by=actor,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(application)

    messages = [
        OutboundMessage(
            recipient=application.applicant_email,
            kind="calendar_cancel",
            context={"booking_id": str(b.id), "slot_id": str(b.slot_id), "slot_kind": b.slot_kind},
            subject_type="booking",
            subject_id=b.id,
        )
        for b in released
    ]
    warnings = await notification_svc.send_notifications(db, messages)
    return WithdrawResult(application=application, released_bookings=released, warnings=warnings)
