"""Admin views over the audit trail and the notification outbox."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..identity import Actor, require_admin
from ..services import activity_svc, notification_svc
from ..timeutil import isoformat

router = APIRouter()


def activity_dict(activity) -> dict:
    return {
        "id": str(activity.id),
        "entity_type": activity.entity_type,
        "entity_id": str(activity.entity_id),
        "action": activity.action,
        "description": activity.description,
        "metadata": activity.metadata_json,
        "created_by": activity.created_by,
        "created_at": isoformat(activity.created_at),
    }


def notification_dict(dispatch) -> dict:
    return {
        "id": str(dispatch.id),
        "recipient": dispatch.recipient,
        "kind": dispatch.kind,
        "context": dispatch.context,
        "subject_type": dispatch.subject_type,
        "subject_id": str(dispatch.subject_id) if dispatch.subject_id else None,
        "status": dispatch.status,
        "attempts": dispatch.attempts,
        "max_attempts": dispatch.max_attempts,
        "available_at": isoformat(dispatch.available_at),
        "sent_at": isoformat(dispatch.sent_at),
        "error_message": dispatch.error_message,
    }


@router.get("/activity")
async def list_activity(
    entity_type: str | None = None,
    entity_id: uuid.UUID | None = None,
    action: str | None = None,
    created_by: str | None = None,
    limit: int = 50,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    activities = await activity_svc.list_activities(
        db,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        created_by=created_by,
        limit=min(max(limit, 1), 500),
    )
    return [activity_dict(a) for a in activities]


@router.get("/notifications")
async def list_notifications(
    recipient: str | None = None,
    kind: str | None = None,
    status: str | None = None,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    rows = await notification_svc.list_notifications(db, recipient=recipient, kind=kind, status=status)
    return [notification_dict(r) for r in rows]


@router.get("/notifications/{dispatch_id}")
async def get_notification(
    dispatch_id: uuid.UUID,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    dispatch = await notification_svc.get_notification(db, dispatch_id)
    if not dispatch:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification_dict(dispatch)
