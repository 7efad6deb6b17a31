"""Applicant-facing application endpoints plus admin stage overrides."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..identity import Actor, ensure_owner_or_admin, require_actor, require_admin
from ..schemas.application import DraftSave, FileAttach, StageOverride, SubmitRequest
from ..services import application_svc
from ..timeutil import isoformat

router = APIRouter()


def application_dict(application) -> dict:
    return {
        "id": str(application.id),
        "cycle_id": str(application.cycle_id),
        "applicant_email": application.applicant_email,
        "applicant_name": application.applicant_name,
        "track": application.track,
        "stage": application.stage,
        "answers": application.answers or {},
        "files": application.files or {},
        "submitted_at": isoformat(application.submitted_at),
        "last_saved_at": isoformat(application.last_saved_at),
        "withdrawn_at": isoformat(application.withdrawn_at),
    }


async def _owned_application(db: AsyncSession, application_id: uuid.UUID, actor: Actor):
    application = await application_svc.require_application(db, application_id)
    ensure_owner_or_admin(actor, application.applicant_email)
    return application


@router.get("/cycles/{cycle_id}/applications")
async def list_applications(
    cycle_id: uuid.UUID,
    stage: str | None = None,
    track: str | None = None,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    applications = await application_svc.list_applications(db, cycle_id, stage=stage, track=track)
    return [application_dict(a) for a in applications]


@router.get("/cycles/{cycle_id}/applications/me")
async def my_application(
    cycle_id: uuid.UUID,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
):
    application = await application_svc.get_application_for(db, cycle_id, actor.email)
    if not application:
        raise HTTPException(status_code=404, detail="No application yet")
    return application_dict(application)


@router.put("/cycles/{cycle_id}/applications/me")
async def save_my_draft(
    cycle_id: uuid.UUID,
    data: DraftSave,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
):
    application = await application_svc.save_draft(
        db,
        cycle_id,
        actor.email,
        answers=data.answers,
        files=data.files,
        applicant_name=data.applicant_name,
        track=data.track,
    )
    return application_dict(application)


@router.get("/applications/{application_id}")
async def get_application(
    application_id: uuid.UUID,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
):
    return application_dict(await _owned_application(db, application_id, actor))


@router.post("/applications/{application_id}/files")
async def attach_file(
    application_id: uuid.UUID,
    data: FileAttach,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
):
    await _owned_application(db, application_id, actor)
    application = await application_svc.attach_file(
        db, application_id, data.key, data.data_url, metadata={"filename": data.filename} if data.filename else None
    )
    return application_dict(application)


@router.post("/applications/{application_id}/submit")
async def submit_application(
    application_id: uuid.UUID,
    data: SubmitRequest,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
):
    application = await _owned_application(db, application_id, actor)
    if application.applicant_email != actor.email:
        raise HTTPException(status_code=403, detail="Only the applicant can submit")
    application = await application_svc.submit(db, application_id, track=data.track)
    return application_dict(application)


@router.post("/applications/{application_id}/withdraw")
async def withdraw_application(
    application_id: uuid.UUID,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
):
    await _owned_application(db, application_id, actor)
    result = await application_svc.withdraw(db, application_id, actor=actor.email)
    return {
        **application_dict(result.application),
        "released_bookings": [str(b.id) for b in result.released_bookings],
        "warnings": [w.to_dict() for w in result.warnings],
    }


@router.post("/applications/{application_id}/stage")
async def override_stage(
    application_id: uuid.UUID,
    data: StageOverride,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    application = await application_svc.admin_set_stage(
        db, application_id, data.stage, reason=data.reason, actor=actor.email
    )
    return application_dict(application)
