"""Event RSVP and check-in tracking."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import (
    NotFoundError, RecruitmentError, SideEffectWarning, StateConflictError, ValidationError,
)
from ..models.event import EventRsvp, RecruitmentEvent
from ..storage import BlobStorage, StorageError, get_storage
from ..timeutil import ensure_utc, utcnow
from . import notification_svc
from .application_svc import get_application_for, normalize_email
from .cycle_svc import require_cycle
from .notification_svc import OutboundMessage

logger = logging.getLogger(__name__)

EVENT_FIELDS = (
    "title", "description", "location", "start_at", "end_at", "is_required",
    "rsvp_enabled", "check_in_enabled", "capacity",
)


@dataclass
class RsvpResult:
    rsvp: EventRsvp
    created: bool
    warnings: list[SideEffectWarning] = field(default_factory=list)


@dataclass
class CheckInResult:
    rsvp: EventRsvp
    already_checked_in: bool
    warnings: list[SideEffectWarning] = field(default_factory=list)


def _validate_event_fields(data: dict) -> dict:
    if not data.get("title"):
        raise ValidationError("invalid_title", "Event title is required")
    start_at, end_at = data.get("start_at"), data.get("end_at")
    if start_at is None or end_at is None or ensure_utc(end_at) <= ensure_utc(start_at):
        raise ValidationError("invalid_dates", "Event must end after it starts")
    capacity = data.get("capacity")
    if capacity is not None and int(capacity) < 1:
        raise ValidationError("invalid_capacity", "Event capacity must be at least 1")
    cleaned = {k: v for k, v in data.items() if k in EVENT_FIELDS}
    cleaned["start_at"] = ensure_utc(start_at)
    cleaned["end_at"] = ensure_utc(end_at)
    return cleaned


async def get_event(db: AsyncSession, event_id: uuid.UUID, refresh: bool = False) -> RecruitmentEvent | None:
    stmt = select(RecruitmentEvent).where(RecruitmentEvent.id == event_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one_or_none()


async def require_event(db: AsyncSession, event_id: uuid.UUID, refresh: bool = False) -> RecruitmentEvent:
    event = await get_event(db, event_id, refresh=refresh)
    if event is None:
        raise NotFoundError("event", event_id)
    return event


async def list_events(db: AsyncSession, cycle_id: uuid.UUID) -> list[RecruitmentEvent]:
    stmt = (
        select(RecruitmentEvent)
        .where(RecruitmentEvent.cycle_id == cycle_id)
        .order_by(RecruitmentEvent.start_at.asc(), RecruitmentEvent.id.asc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def create_event(db: AsyncSession, cycle_id: uuid.UUID, **data) -> RecruitmentEvent:
    await require_cycle(db, cycle_id)
    event = RecruitmentEvent(cycle_id=cycle_id, rsvp_count=0, **_validate_event_fields(data))
    db.add(event)
    await db.commit()
    await db.refresh(event)
    return event


async def update_event(db: AsyncSession, event_id: uuid.UUID, **changes) -> RecruitmentEvent:
    event = await require_event(db, event_id, refresh=True)
    unknown = set(changes) - set(EVENT_FIELDS)
    if unknown:
        raise ValidationError("invalid_field", "Unknown event fields", {"fields": sorted(unknown)})
    merged = {key: changes.get(key, getattr(event, key)) for key in EVENT_FIELDS}
    cleaned = _validate_event_fields(merged)
    if cleaned["capacity"] is not None and cleaned["capacity"] < event.rsvp_count:
        raise StateConflictError(
            "capacity_below_bookings",
            f"Event already has {event.rsvp_count} RSVPs",
            {"rsvp_count": event.rsvp_count, "capacity": cleaned["capacity"]},
        )
    for key in changes:
        setattr(event, key, cleaned[key])
    await db.commit()
    await db.refresh(event)
    return event


async def get_rsvp(db: AsyncSession, event_id: uuid.UUID, applicant_email: str) -> EventRsvp | None:
    stmt = (
        select(EventRsvp)
        .where(EventRsvp.event_id == event_id, EventRsvp.applicant_email == normalize_email(applicant_email))
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_attendees(
    db: AsyncSession,
    event_id: uuid.UUID,
    status: str | None = "active",
    checked_in_only: bool = False,
) -> list[EventRsvp]:
    stmt = select(EventRsvp).where(EventRsvp.event_id == event_id)
    if status:
        stmt = stmt.where(EventRsvp.status == status)
    if checked_in_only:
        stmt = stmt.where(EventRsvp.checked_in_at.is_not(None))
    stmt = stmt.order_by(EventRsvp.rsvp_at.asc(), EventRsvp.applicant_email.asc())
    return list((await db.execute(stmt)).scalars().all())


async def _ensure_not_withdrawn(db: AsyncSession, event: RecruitmentEvent, email: str):
    application = await get_application_for(db, event.cycle_id, email)
    if application is not None and application.stage == "withdrawn":
        raise StateConflictError("wrong_stage", "Withdrawn applicants cannot attend events", {"stage": "withdrawn"})
    return application


async def rsvp(
    db: AsyncSession,
    event_id: uuid.UUID,
    applicant_email: str,
    applicant_name: str | None = None,
    now: datetime | None = None,
) -> RsvpResult:
    """Reserve a place; repeating the call for an active RSVP is a no-op."""
    now = now or utcnow()
    email = normalize_email(applicant_email)
    event = await require_event(db, event_id)
    if not event.rsvp_enabled or now >= ensure_utc(event.start_at):
        raise StateConflictError("rsvp_closed", "RSVPs are closed for this event")
    application = await _ensure_not_withdrawn(db, event, email)

    existing = await get_rsvp(db, event.id, email)
    if existing is not None and existing.status == "active":
        return RsvpResult(rsvp=existing, created=False)
    capacity = event.capacity

    claimed = await db.execute(
        update(RecruitmentEvent)
        .where(
            RecruitmentEvent.id == event.id,
            or_(RecruitmentEvent.capacity.is_(None), RecruitmentEvent.rsvp_count < RecruitmentEvent.capacity),
        )
        .values(rsvp_count=RecruitmentEvent.rsvp_count + 1)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 0:
        await db.rollback()
        raise StateConflictError("event_full", "This event is at capacity", {"capacity": capacity})

    if existing is not None:
        record = existing
        record.status = "active"
        record.cancelled_at = None
        record.rsvp_at = now
    else:
        record = EventRsvp(
            event_id=event.id,
            cycle_id=event.cycle_id,
            applicant_email=email,
            applicant_name=applicant_name or (application.applicant_name if application else None),
            application_id=application.id if application else None,
            status="active",
            rsvp_at=now,
        )
        db.add(record)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent request created the RSVP first.
        await db.rollback()
        current = await get_rsvp(db, event_id, email)
        if current is None:
            raise
        return RsvpResult(rsvp=current, created=False)
    await db.refresh(record)

    warnings = await notification_svc.send_notifications(db, [
        OutboundMessage(
            email, "rsvp_confirmed",
            {"event_id": str(event.id), "title": event.title, "start_at": ensure_utc(event.start_at).isoformat()},
            "rsvp", record.id,
        )
    ])
    return RsvpResult(rsvp=record, created=True, warnings=warnings)


async def cancel_rsvp(
    db: AsyncSession,
    event_id: uuid.UUID,
    applicant_email: str,
    now: datetime | None = None,
) -> RsvpResult:
    """Withdraw an RSVP before the event starts; no-op when already cancelled."""
    now = now or utcnow()
    event = await require_event(db, event_id)
    record = await get_rsvp(db, event.id, applicant_email)
    if record is None:
        raise NotFoundError("rsvp", f"{event_id}:{applicant_email}")
    if record.status == "cancelled":
        return RsvpResult(rsvp=record, created=False)
    if record.checked_in_at is not None:
        raise StateConflictError("already_checked_in", "Cannot cancel an RSVP after checking in")
    if now >= ensure_utc(event.start_at):
        raise StateConflictError("rsvp_closed", "The event has already started")

    changed = await db.execute(
        update(EventRsvp)
        .where(EventRsvp.id == record.id, EventRsvp.status == "active", EventRsvp.checked_in_at.is_(None))
        .values(status="cancelled", cancelled_at=now)
        .execution_options(synchronize_session=False)
    )
    if changed.rowcount == 1:
        await db.execute(
            update(RecruitmentEvent)
            .where(RecruitmentEvent.id == event.id, RecruitmentEvent.rsvp_count > 0)
            .values(rsvp_count=RecruitmentEvent.rsvp_count - 1)
            .execution_options(synchronize_session=False)
        )
    await db.commit()
    return RsvpResult(rsvp=await get_rsvp(db, event.id, applicant_email), created=False)


async def check_in(
    db: AsyncSession,
    event_id: uuid.UUID,
    applicant_email: str,
    photo: bytes | str | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
    applicant_name: str | None = None,
    now: datetime | None = None,
    storage: BlobStorage | None = None,
    _retry: bool = True,
) -> CheckInResult:
    """Record attendance during the live window, creating the RSVP if needed.

    The check-in commits before the photo is stored; a storage failure
    leaves the check-in in place and is reported as a warning.
    """
    now = now or utcnow()
    email = normalize_email(applicant_email)
    event = await require_event(db, event_id)
    if not event.check_in_enabled:
        raise StateConflictError("check_in_disabled", "Check-in is not enabled for this event")
    if not (ensure_utc(event.start_at) <= now < ensure_utc(event.end_at)):
        raise StateConflictError(
            "check_in_closed",
            "Check-in is only open while the event is running",
            {"start_at": ensure_utc(event.start_at).isoformat(), "end_at": ensure_utc(event.end_at).isoformat()},
        )
    application = await _ensure_not_withdrawn(db, event, email)

    record = await get_rsvp(db, event.id, email)
    if record is not None and record.checked_in_at is not None:
        return CheckInResult(rsvp=record, already_checked_in=True)

    if record is None:
        record = EventRsvp(
            event_id=event.id,
            cycle_id=event.cycle_id,
            applicant_email=email,
            applicant_name=applicant_name or (application.applicant_name if application else None),
            application_id=application.id if application else None,
            status="active",
            rsvp_at=now,
        )
        db.add(record)
        count_delta = 1
    else:
        count_delta = 1 if record.status == "cancelled" else 0
        record.status = "active"
        record.cancelled_at = None

    record.checked_in_at = now
    record.attended_at = now
    record.latitude = latitude
    record.longitude = longitude
    if count_delta:
        # Walk-ins are admitted regardless of RSVP capacity.
        await db.execute(
            update(RecruitmentEvent)
            .where(RecruitmentEvent.id == event.id)
            .values(rsvp_count=RecruitmentEvent.rsvp_count + count_delta)
            .execution_options(synchronize_session=False)
        )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        if not _retry:
            raise
        return await check_in(
            db, event_id, email, photo=photo, latitude=latitude, longitude=longitude,
            applicant_name=applicant_name, now=now, storage=storage, _retry=False,
        )
    await db.refresh(record)
    logger.info("Checked in %s at event %s", email, event.id)

    warnings: list[SideEffectWarning] = []
    if photo is not None:
        storage = storage or get_storage()
        try:
            record.photo_ref = storage.store(photo, {"event_id": str(event.id), "applicant_email": email})
            await db.commit()
            await db.refresh(record)
        except (OSError, StorageError, RecruitmentError) as exc:
            logger.warning("Check-in photo for %s at event %s not stored: %s", email, event.id, exc)
            warnings.append(SideEffectWarning(kind="photo_storage", recipient=email, error=str(exc)))
    return CheckInResult(rsvp=record, already_checked_in=False, warnings=warnings)
