"""Cycle registry and question-set endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..identity import Actor, require_admin
from ..schemas.cycle import CycleCreate, CycleUpdate, QuestionSetUpdate
from ..services import cycle_svc, question_svc
from ..timeutil import isoformat

router = APIRouter(prefix="/cycles")


def cycle_dict(cycle) -> dict:
    return {
        "id": str(cycle.id),
        "name": cycle.name,
        "slug": cycle.slug,
        "description": cycle.description,
        "portal_open_at": isoformat(cycle.portal_open_at),
        "application_due_at": isoformat(cycle.application_due_at),
        "portal_close_at": isoformat(cycle.portal_close_at),
        "is_active": cycle.is_active,
    }


@router.get("")
async def list_cycles(db: AsyncSession = Depends(get_db)):
    return [cycle_dict(c) for c in await cycle_svc.list_cycles(db)]


@router.get("/active")
async def active_cycle(db: AsyncSession = Depends(get_db)):
    cycle = await cycle_svc.get_active_cycle(db)
    if not cycle:
        raise HTTPException(status_code=404, detail="No active cycle")
    return cycle_dict(cycle)


@router.post("", status_code=201)
async def create_cycle(
    data: CycleCreate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    cycle = await cycle_svc.create_cycle(
        db,
        name=data.name,
        slug=data.slug,
        portal_open_at=data.portal_open_at,
        application_due_at=data.application_due_at,
        portal_close_at=data.portal_close_at,
        description=data.description,
        activate=data.activate,
        created_by=actor.email,
    )
    return cycle_dict(cycle)


@router.get("/{cycle_id}")
async def get_cycle(cycle_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    return cycle_dict(await cycle_svc.require_cycle(db, cycle_id))


@router.patch("/{cycle_id}")
async def update_cycle(
    cycle_id: uuid.UUID,
    data: CycleUpdate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    cycle = await cycle_svc.update_cycle(db, cycle_id, **data.model_dump(exclude_unset=True))
    return cycle_dict(cycle)


@router.post("/{cycle_id}/activate")
async def activate_cycle(
    cycle_id: uuid.UUID,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return cycle_dict(await cycle_svc.set_active(db, cycle_id, actor=actor.email))


@router.delete("/{cycle_id}")
async def delete_cycle(
    cycle_id: uuid.UUID,
    confirm: bool = False,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    summary = await cycle_svc.delete_cycle(db, cycle_id, cascade_confirmed=confirm, actor=actor.email)
    return {"deleted": True, "summary": summary}


@router.get("/{cycle_id}/questions")
async def get_questions(cycle_id: uuid.UUID, track: str | None = None, db: AsyncSession = Depends(get_db)):
    await cycle_svc.require_cycle(db, cycle_id)
    return await question_svc.get_fields(db, cycle_id, track)


@router.put("/{cycle_id}/questions")
async def put_questions(
    cycle_id: uuid.UUID,
    data: QuestionSetUpdate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await cycle_svc.require_cycle(db, cycle_id)
    fields = [f.model_dump(exclude_none=True) for f in data.fields]
    question_set = await question_svc.upsert_questions(db, cycle_id, data.track, fields)
    return {"track": question_set.track, "fields": question_set.fields}
