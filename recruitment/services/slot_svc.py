"""Slot and booking engine.

Capacity and one-confirmed-booking-per-kind are enforced at write time:
the seat is claimed with a conditional UPDATE on ``booked_count`` and the
booking row is guarded by a partial unique index, so two requests racing
for the last seat cannot both succeed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..errors import (
    DependencyError, NotFoundError, SideEffectWarning, StateConflictError, ValidationError,
)
from ..models.application import Application
from ..models.slot import RecruitmentSlot, SlotBooking
from ..pipeline import SLOT_KIND_REQUIRED_STAGE, validate_slot_kind, validate_track
from ..timeutil import ensure_utc, utcnow
from . import activity_svc, notification_svc
from .application_svc import get_application_for, normalize_email
from .cycle_svc import require_cycle
from .notification_svc import OutboundMessage

logger = logging.getLogger(__name__)

SLOT_FIELDS = (
    "kind", "start_time", "duration_minutes", "host_name", "host_email", "location",
    "meeting_url", "for_track", "max_bookings", "notes",
)


@dataclass
class BookingResult:
    booking: SlotBooking
    slot: RecruitmentSlot
    warnings: list[SideEffectWarning] = field(default_factory=list)


@dataclass
class CancelResult:
    booking: SlotBooking
    cancelled: bool
    warnings: list[SideEffectWarning] = field(default_factory=list)


def _validate_slot_fields(data: dict) -> dict:
    validate_slot_kind(data["kind"])
    if data.get("for_track") is not None:
        validate_track(data["for_track"])
    if int(data.get("max_bookings", 1)) < 1:
        raise ValidationError("invalid_capacity", "Slot capacity must be at least 1")
    if int(data.get("duration_minutes", 30)) < 1:
        raise ValidationError("invalid_duration", "Slot duration must be positive")
    if not data.get("host_name"):
        raise ValidationError("invalid_host", "Slot host name is required")
    if data.get("start_time") is None:
        raise ValidationError("invalid_dates", "Slot start time is required")
    cleaned = {k: v for k, v in data.items() if k in SLOT_FIELDS}
    cleaned["start_time"] = ensure_utc(data["start_time"])
    return cleaned


async def get_slot(db: AsyncSession, slot_id: uuid.UUID) -> RecruitmentSlot | None:
    result = await db.execute(select(RecruitmentSlot).where(RecruitmentSlot.id == slot_id))
    return result.scalar_one_or_none()


async def require_slot(
    db: AsyncSession,
    slot_id: uuid.UUID,
    refresh: bool = False,
    include_deleted: bool = False,
) -> RecruitmentSlot:
    stmt = select(RecruitmentSlot).where(RecruitmentSlot.id == slot_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    slot = (await db.execute(stmt)).scalar_one_or_none()
    if slot is None or (slot.deleted_at is not None and not include_deleted):
        raise NotFoundError("slot", slot_id)
    return slot


async def list_slots(
    db: AsyncSession,
    cycle_id: uuid.UUID,
    kind: str | None = None,
) -> list[RecruitmentSlot]:
    stmt = select(RecruitmentSlot).where(RecruitmentSlot.cycle_id == cycle_id, RecruitmentSlot.deleted_at.is_(None))
    if kind:
        stmt = stmt.where(RecruitmentSlot.kind == validate_slot_kind(kind))
    stmt = stmt.order_by(RecruitmentSlot.start_time.asc(), RecruitmentSlot.id.asc())
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def create_slot(db: AsyncSession, cycle_id: uuid.UUID, **data) -> RecruitmentSlot:
    await require_cycle(db, cycle_id)
    slot = RecruitmentSlot(cycle_id=cycle_id, booked_count=0, **_validate_slot_fields(data))
    db.add(slot)
    await db.commit()
    await db.refresh(slot)
    return slot


async def bulk_create_slots(db: AsyncSession, cycle_id: uuid.UUID, slots: list[dict]) -> list[RecruitmentSlot]:
    """Create many slots; one invalid entry rejects the whole batch."""
    await require_cycle(db, cycle_id)
    cleaned = []
    for index, data in enumerate(slots):
        try:
            cleaned.append(_validate_slot_fields(data))
        except ValidationError as e:
            e.details = {**e.details, "index": index}
            raise
    created = [RecruitmentSlot(cycle_id=cycle_id, booked_count=0, **c) for c in cleaned]
    db.add_all(created)
    await db.commit()
    for slot in created:
        await db.refresh(slot)
    return created


async def update_slot(db: AsyncSession, slot_id: uuid.UUID, **changes) -> RecruitmentSlot:
    slot = await require_slot(db, slot_id, refresh=True)
    unknown = set(changes) - set(SLOT_FIELDS)
    if unknown:
        raise ValidationError("invalid_field", "Unknown slot fields", {"fields": sorted(unknown)})

    merged = {key: changes.get(key, getattr(slot, key)) for key in SLOT_FIELDS}
    cleaned = _validate_slot_fields(merged)
    if "kind" in changes and changes["kind"] != slot.kind and slot.booked_count > 0:
        raise StateConflictError("slot_has_bookings", "Cannot change the kind of a slot with bookings")
    if cleaned["max_bookings"] < slot.booked_count:
        raise StateConflictError(
            "capacity_below_bookings",
            f"Slot already has {slot.booked_count} confirmed bookings",
            {"booked_count": slot.booked_count, "max_bookings": cleaned["max_bookings"]},
        )

    for key in changes:
        setattr(slot, key, cleaned[key])
    try:
        await db.commit()
    except IntegrityError as e:
        # A booking landed between the check and the write.
        await db.rollback()
        raise StateConflictError("capacity_below_bookings", "Slot capacity is below its confirmed bookings") from e
    await db.refresh(slot)
    return slot


async def delete_slot(
    db: AsyncSession,
    slot_id: uuid.UUID,
    confirmed: bool = False,
    actor: str | None = None,
    now: datetime | None = None,
) -> list[SideEffectWarning]:
    """Delete a slot. Confirmed bookings block deletion until ``confirmed`` is set.

    Booking rows are never removed: confirmed ones are cancelled, and a slot
    with any booking history is only marked deleted so the rows keep their slot.
    """
    now = now or utcnow()
    slot = await require_slot(db, slot_id, refresh=True)
    bookings = await list_bookings(db, slot_id=slot.id)
    active = [b for b in bookings if b.status == "confirmed"]
    if active and not confirmed:
        raise DependencyError(
            f"Slot has {len(active)} confirmed booking(s) that would be cancelled",
            {"confirmed_bookings": len(active), "bookings": len(bookings)},
        )

    context = {"slot_id": str(slot.id), "slot_kind": slot.kind, "start_time": ensure_utc(slot.start_time).isoformat()}
    messages = [
        OutboundMessage(b.applicant_email, "calendar_cancel", {**context, "booking_id": str(b.id)}, "booking", b.id)
        for b in active
    ]
    try:
        if bookings:
            await db.execute(
                update(SlotBooking)
                .where(SlotBooking.slot_id == slot.id, SlotBooking.status == "confirmed")
                .values(status="cancelled", cancelled_at=now, cancelled_by=actor)
                .execution_options(synchronize_session=False)
            )
            slot.booked_count = 0
            slot.deleted_at = now
        else:
            await db.delete(slot)
        activity_svc.add_activity(
            db, "slot", slot_id, "deleted",
            metadata_json={"cancelled_bookings": len(active), "kept_bookings": len(bookings)},
            created_by=actor,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Deleted slot %s (%s bookings cancelled)", slot_id, len(active))
    return await notification_svc.send_notifications(db, messages)


def check_eligibility(slot: RecruitmentSlot, application: Application | None, now: datetime) -> None:
    """Raise when the applicant may not book ``slot`` right now."""
    if ensure_utc(slot.start_time) <= now:
        raise StateConflictError("slot_started", "This slot has already started", {"slot_id": str(slot.id)})

    required_stage = SLOT_KIND_REQUIRED_STAGE.get(slot.kind)
    if required_stage is not None and (application is None or application.stage != required_stage):
        raise StateConflictError(
            "wrong_stage",
            f"Only applicants in '{required_stage}' can book {slot.kind} slots",
            {"required_stage": required_stage, "stage": application.stage if application else None},
        )

    if slot.for_track is not None and (application is None or application.track != slot.for_track):
        raise StateConflictError(
            "track_mismatch",
            f"This slot is reserved for the {slot.for_track} track",
            {"for_track": slot.for_track, "track": application.track if application else None},
        )


def is_eligible(slot: RecruitmentSlot, application: Application | None, now: datetime) -> bool:
    try:
        check_eligibility(slot, application, now)
    except StateConflictError:
        return False
    return True


async def list_available_slots(
    db: AsyncSession,
    cycle_id: uuid.UUID,
    applicant_email: str,
    kind: str | None = None,
    now: datetime | None = None,
) -> list[RecruitmentSlot]:
    """Upcoming slots with free seats that this applicant may book."""
    now = now or utcnow()
    application = await get_application_for(db, cycle_id, applicant_email)
    stmt = (
        select(RecruitmentSlot)
        .where(
            RecruitmentSlot.cycle_id == cycle_id,
            RecruitmentSlot.booked_count < RecruitmentSlot.max_bookings,
            RecruitmentSlot.start_time > now,
            RecruitmentSlot.deleted_at.is_(None),
        )
        .order_by(RecruitmentSlot.start_time.asc(), RecruitmentSlot.id.asc())
        .execution_options(populate_existing=True)
    )
    if kind:
        stmt = stmt.where(RecruitmentSlot.kind == validate_slot_kind(kind))
    slots = (await db.execute(stmt)).scalars().all()
    return [s for s in slots if is_eligible(s, application, now)]


async def _find_confirmed(db: AsyncSession, cycle_id: uuid.UUID, email: str, kind: str) -> SlotBooking | None:
    stmt = select(SlotBooking).where(
        SlotBooking.cycle_id == cycle_id,
        SlotBooking.applicant_email == email,
        SlotBooking.slot_kind == kind,
        SlotBooking.status == "confirmed",
    )
    return (await db.execute(stmt)).scalars().first()


def _already_booked(kind: str, existing: SlotBooking | None = None) -> StateConflictError:
    details = {"slot_kind": kind}
    if existing is not None:
        details["booking_id"] = str(existing.id)
    return StateConflictError("already_booked", f"You already have a confirmed {kind} booking", details)


async def book_slot(
    db: AsyncSession,
    slot_id: uuid.UUID,
    applicant_email: str,
    applicant_name: str | None = None,
    now: datetime | None = None,
) -> BookingResult:
    """Claim a seat on ``slot_id`` for the applicant."""
    now = now or utcnow()
    email = normalize_email(applicant_email)
    slot = await require_slot(db, slot_id, refresh=True)
    application = await get_application_for(db, slot.cycle_id, email)
    check_eligibility(slot, application, now)
    kind = slot.kind

    existing = await _find_confirmed(db, slot.cycle_id, email, kind)
    if existing is not None:
        raise _already_booked(kind, existing)

    claimed = await db.execute(
        update(RecruitmentSlot)
        .where(
            RecruitmentSlot.id == slot.id,
            RecruitmentSlot.booked_count < RecruitmentSlot.max_bookings,
            RecruitmentSlot.deleted_at.is_(None),
        )
        .values(booked_count=RecruitmentSlot.booked_count + 1)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 0:
        await db.rollback()
        raise StateConflictError("slot_full", "This slot is fully booked", {"slot_id": str(slot_id)})

    booking = SlotBooking(
        cycle_id=slot.cycle_id,
        slot_id=slot.id,
        application_id=application.id if application else None,
        applicant_email=email,
        applicant_name=applicant_name or (application.applicant_name if application else None),
        slot_kind=slot.kind,
        status="confirmed",
        booked_at=now,
    )
    db.add(booking)
    try:
        await db.commit()
    except IntegrityError as e:
        # Lost the race on the confirmed-per-kind index; the seat claim rolls back with it.
        await db.rollback()
        raise _already_booked(kind) from e

    await db.refresh(booking)
    slot = await require_slot(db, slot_id, refresh=True)
    logger.info("Booked %s slot %s for %s", slot.kind, slot.id, email)

    context = {
        "booking_id": str(booking.id),
        "slot_id": str(slot.id),
        "slot_kind": slot.kind,
        "start_time": ensure_utc(slot.start_time).isoformat(),
        "end_time": ensure_utc(slot.end_time).isoformat(),
        "host_name": slot.host_name,
        "host_email": slot.host_email,
        "location": slot.location,
        "meeting_url": slot.meeting_url,
    }
    messages = [
        OutboundMessage(email, "booking_confirmed", context, "booking", booking.id),
        OutboundMessage(email, "calendar_invite", context, "booking", booking.id),
    ]
    warnings = await notification_svc.send_notifications(db, messages)
    return BookingResult(booking=booking, slot=slot, warnings=warnings)


async def get_booking(db: AsyncSession, booking_id: uuid.UUID) -> SlotBooking | None:
    stmt = select(SlotBooking).where(SlotBooking.id == booking_id).execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one_or_none()


async def cancel_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
    actor: str | None = None,
    enforce_window: bool = True,
    now: datetime | None = None,
) -> CancelResult:
    """Cancel a confirmed booking; cancelling twice is a no-op."""
    now = now or utcnow()
    booking = await get_booking(db, booking_id)
    if booking is None:
        raise NotFoundError("booking", booking_id)
    if booking.status == "cancelled":
        return CancelResult(booking=booking, cancelled=False)

    slot = await require_slot(db, booking.slot_id, include_deleted=True)
    window = timedelta(hours=settings.cancellation_window_hours)
    deadline = ensure_utc(slot.start_time) - window
    if enforce_window and now >= deadline:
        raise StateConflictError(
            "too_late_to_cancel",
            f"Bookings can only be cancelled up to {settings.cancellation_window_hours} hours before the start",
            {"deadline": deadline.isoformat()},
        )

    changed = await db.execute(
        update(SlotBooking)
        .where(SlotBooking.id == booking.id, SlotBooking.status == "confirmed")
        .values(status="cancelled", cancelled_at=now, cancelled_by=actor or booking.applicant_email)
        .execution_options(synchronize_session=False)
    )
    if changed.rowcount == 0:
        await db.rollback()
        return CancelResult(booking=await get_booking(db, booking_id), cancelled=False)

    await db.execute(
        update(RecruitmentSlot)
        .where(RecruitmentSlot.id == slot.id, RecruitmentSlot.booked_count > 0)
        .values(booked_count=RecruitmentSlot.booked_count - 1)
        .execution_options(synchronize_session=False)
    )
    activity_svc.add_activity(
        db, "booking", booking.id, "cancelled",
        metadata_json={"slot_id": str(slot.id), "enforce_window": enforce_window}, created_by=actor,
    )
    await db.commit()
    booking = await get_booking(db, booking_id)
    logger.info("Cancelled booking %s on slot %s", booking.id, slot.id)

    context = {
        "booking_id": str(booking.id),
        "slot_id": str(slot.id),
        "slot_kind": slot.kind,
        "start_time": ensure_utc(slot.start_time).isoformat(),
    }
    messages = [
        OutboundMessage(booking.applicant_email, "booking_cancelled", context, "booking", booking.id),
        OutboundMessage(booking.applicant_email, "calendar_cancel", context, "booking", booking.id),
    ]
    warnings = await notification_svc.send_notifications(db, messages)
    return CancelResult(booking=booking, cancelled=True, warnings=warnings)


async def list_bookings(
    db: AsyncSession,
    *,
    cycle_id: uuid.UUID | None = None,
    applicant_email: str | None = None,
    slot_id: uuid.UUID | None = None,
    status: str | None = None,
) -> list[SlotBooking]:
    stmt = select(SlotBooking)
    if cycle_id:
        stmt = stmt.where(SlotBooking.cycle_id == cycle_id)
    if applicant_email:
        stmt = stmt.where(SlotBooking.applicant_email == normalize_email(applicant_email))
    if slot_id:
        stmt = stmt.where(SlotBooking.slot_id == slot_id)
    if status:
        stmt = stmt.where(SlotBooking.status == status)
    stmt = stmt.order_by(SlotBooking.booked_at.asc(), SlotBooking.id.asc()).execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def count_confirmed(db: AsyncSession, slot_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count()).select_from(SlotBooking).where(
            SlotBooking.slot_id == slot_id, SlotBooking.status == "confirmed"
        )
    )
    return int(result.scalar_one())
