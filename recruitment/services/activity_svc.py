"""Audit trail for cycle, application, phase and booking changes."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.activity import Activity


def add_activity(
    db: AsyncSession,
    entity_type: str,
    entity_id: uuid.UUID,
    action: str,
    description: str | None = None,
    metadata_json: dict | None = None,
    created_by: str | None = None,
) -> Activity:
    """Stage an audit row in the caller's transaction.

    Never commits: the row lands with the change it describes or not at all.
    """
    activity = Activity(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        description=description,
        metadata_json=metadata_json,
        created_by=created_by,
    )
    db.add(activity)
    return activity


async def list_activities(
    db: AsyncSession,
    *,
    entity_type: str | None = None,
    entity_id: uuid.UUID | None = None,
    action: str | None = None,
    created_by: str | None = None,
    limit: int = 50,
) -> list[Activity]:
    """Most recent first."""
    filters = []
    if entity_type:
        filters.append(Activity.entity_type == entity_type)
    if entity_id:
        filters.append(Activity.entity_id == entity_id)
    if action:
        filters.append(Activity.action == action)
    if created_by:
        filters.append(Activity.created_by == created_by.strip().lower())
    stmt = select(Activity).where(*filters).order_by(Activity.created_at.desc(), Activity.id.desc()).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())
