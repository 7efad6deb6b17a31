"""Slot administration and applicant booking endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..identity import Actor, ensure_owner_or_admin, require_actor, require_admin
from ..schemas.slot import BookingCreate, SlotBulkCreate, SlotCreate, SlotUpdate
from ..services import slot_svc
from ..timeutil import isoformat

router = APIRouter()


def slot_dict(slot) -> dict:
    return {
        "id": str(slot.id),
        "cycle_id": str(slot.cycle_id),
        "kind": slot.kind,
        "start_time": isoformat(slot.start_time),
        "end_time": isoformat(slot.end_time),
        "duration_minutes": slot.duration_minutes,
        "host_name": slot.host_name,
        "host_email": slot.host_email,
        "location": slot.location,
        "meeting_url": slot.meeting_url,
        "for_track": slot.for_track,
        "max_bookings": slot.max_bookings,
        "booked_count": slot.booked_count,
        "remaining": slot.remaining_capacity,
    }


def booking_dict(booking) -> dict:
    return {
        "id": str(booking.id),
        "slot_id": str(booking.slot_id),
        "cycle_id": str(booking.cycle_id),
        "applicant_email": booking.applicant_email,
        "applicant_name": booking.applicant_name,
        "slot_kind": booking.slot_kind,
        "status": booking.status,
        "booked_at": isoformat(booking.booked_at),
        "cancelled_at": isoformat(booking.cancelled_at),
        "cancelled_by": booking.cancelled_by,
    }


@router.get("/cycles/{cycle_id}/slots")
async def list_slots(
    cycle_id: uuid.UUID,
    kind: str | None = None,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return [slot_dict(s) for s in await slot_svc.list_slots(db, cycle_id, kind)]


@router.get("/cycles/{cycle_id}/slots/available")
async def available_slots(
    cycle_id: uuid.UUID,
    kind: str | None = None,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
):
    slots = await slot_svc.list_available_slots(db, cycle_id, actor.email, kind=kind)
    return [slot_dict(s) for s in slots]


@router.post("/cycles/{cycle_id}/slots", status_code=201)
async def create_slot(
    cycle_id: uuid.UUID,
    data: SlotCreate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return slot_dict(await slot_svc.create_slot(db, cycle_id, **data.model_dump()))


@router.post("/cycles/{cycle_id}/slots/bulk", status_code=201)
async def bulk_create_slots(
    cycle_id: uuid.UUID,
    data: SlotBulkCreate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    slots = await slot_svc.bulk_create_slots(db, cycle_id, [s.model_dump() for s in data.slots])
    return [slot_dict(s) for s in slots]


@router.patch("/slots/{slot_id}")
async def update_slot(
    slot_id: uuid.UUID,
    data: SlotUpdate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return slot_dict(await slot_svc.update_slot(db, slot_id, **data.model_dump(exclude_unset=True)))


@router.delete("/slots/{slot_id}")
async def delete_slot(
    slot_id: uuid.UUID,
    confirm: bool = False,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    warnings = await slot_svc.delete_slot(db, slot_id, confirmed=confirm, actor=actor.email)
    return {"deleted": True, "warnings": [w.to_dict() for w in warnings]}


@router.get("/slots/{slot_id}/bookings")
async def slot_bookings(
    slot_id: uuid.UUID,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return [booking_dict(b) for b in await slot_svc.list_bookings(db, slot_id=slot_id)]


@router.post("/slots/{slot_id}/book", status_code=201)
async def book_slot(
    slot_id: uuid.UUID,
    data: BookingCreate,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
):
    result = await slot_svc.book_slot(db, slot_id, actor.email, applicant_name=data.applicant_name)
    return {
        "booking": booking_dict(result.booking),
        "slot": slot_dict(result.slot),
        "warnings": [w.to_dict() for w in result.warnings],
    }


@router.get("/bookings/me")
async def my_bookings(
    cycle_id: uuid.UUID | None = None,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
):
    bookings = await slot_svc.list_bookings(db, cycle_id=cycle_id, applicant_email=actor.email)
    return [booking_dict(b) for b in bookings]


@router.post("/bookings/{booking_id}/cancel")
async def cancel_booking(
    booking_id: uuid.UUID,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
):
    booking = await slot_svc.get_booking(db, booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    ensure_owner_or_admin(actor, booking.applicant_email)
    result = await slot_svc.cancel_booking(
        db, booking_id, actor=actor.email, enforce_window=not actor.is_admin
    )
    return {
        "booking": booking_dict(result.booking),
        "cancelled": result.cancelled,
        "warnings": [w.to_dict() for w in result.warnings],
    }
