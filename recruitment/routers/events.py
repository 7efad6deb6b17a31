"""Event, RSVP and check-in endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..identity import Actor, require_actor, require_admin
from ..schemas.event import CheckInRequest, EventCreate, EventUpdate
from ..services import event_svc
from ..timeutil import isoformat

router = APIRouter()


def event_dict(event) -> dict:
    return {
        "id": str(event.id),
        "cycle_id": str(event.cycle_id),
        "title": event.title,
        "description": event.description,
        "location": event.location,
        "start_at": isoformat(event.start_at),
        "end_at": isoformat(event.end_at),
        "is_required": event.is_required,
        "rsvp_enabled": event.rsvp_enabled,
        "check_in_enabled": event.check_in_enabled,
        "capacity": event.capacity,
        "rsvp_count": event.rsvp_count,
    }


def rsvp_dict(rsvp) -> dict:
    return {
        "id": str(rsvp.id),
        "event_id": str(rsvp.event_id),
        "applicant_email": rsvp.applicant_email,
        "applicant_name": rsvp.applicant_name,
        "status": rsvp.status,
        "rsvp_at": isoformat(rsvp.rsvp_at),
        "checked_in_at": isoformat(rsvp.checked_in_at),
        "attended_at": isoformat(rsvp.attended_at),
        "photo_ref": rsvp.photo_ref,
        "latitude": rsvp.latitude,
        "longitude": rsvp.longitude,
    }


@router.get("/cycles/{cycle_id}/events")
async def list_events(cycle_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    return [event_dict(e) for e in await event_svc.list_events(db, cycle_id)]


@router.post("/cycles/{cycle_id}/events", status_code=201)
async def create_event(
    cycle_id: uuid.UUID,
    data: EventCreate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return event_dict(await event_svc.create_event(db, cycle_id, **data.model_dump()))


@router.patch("/events/{event_id}")
async def update_event(
    event_id: uuid.UUID,
    data: EventUpdate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return event_dict(await event_svc.update_event(db, event_id, **data.model_dump(exclude_unset=True)))


@router.get("/events/{event_id}/attendees")
async def attendees(
    event_id: uuid.UUID,
    checked_in: bool = False,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await event_svc.require_event(db, event_id)
    rsvps = await event_svc.list_attendees(db, event_id, checked_in_only=checked_in)
    return [rsvp_dict(r) for r in rsvps]


@router.post("/events/{event_id}/rsvp")
async def rsvp(
    event_id: uuid.UUID,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
):
    result = await event_svc.rsvp(db, event_id, actor.email)
    return {
        "rsvp": rsvp_dict(result.rsvp),
        "created": result.created,
        "warnings": [w.to_dict() for w in result.warnings],
    }


@router.delete("/events/{event_id}/rsvp")
async def cancel_rsvp(
    event_id: uuid.UUID,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
):
    result = await event_svc.cancel_rsvp(db, event_id, actor.email)
    return {"rsvp": rsvp_dict(result.rsvp)}


@router.post("/events/{event_id}/check-in")
async def check_in(
    event_id: uuid.UUID,
    data: CheckInRequest,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
):
    result = await event_svc.check_in(
        db,
        event_id,
        actor.email,
        photo=data.photo_data_url,
        latitude=data.latitude,
        longitude=data.longitude,
        applicant_name=data.applicant_name,
    )
    return {
        "rsvp": rsvp_dict(result.rsvp),
        "already_checked_in": result.already_checked_in,
        "warnings": [w.to_dict() for w in result.warnings],
    }
