"""Cycle registry: CRUD, the single-active-cycle swap, guarded deletion."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from ..config import settings
from ..errors import DependencyError, NotFoundError, StateConflictError, ValidationError
from ..models.application import Application, ApplicationQuestionSet
from ..models.cycle import RecruitmentCycle
from ..models.event import EventRsvp, RecruitmentEvent
from ..models.phase import PhaseConfig, PhaseDecision, PhaseReview, RankedApplicant, RankingGeneration
from ..models.slot import RecruitmentSlot, SlotBooking
from ..pipeline import DEFAULT_SCORING_CATEGORIES, PHASES
from ..timeutil import ensure_utc
from . import activity_svc

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "name", "slug", "description", "portal_open_at", "application_due_at", "portal_close_at",
)


def validate_dates(portal_open_at: datetime, application_due_at: datetime, portal_close_at: datetime) -> None:
    opened = ensure_utc(portal_open_at)
    due = ensure_utc(application_due_at)
    closed = ensure_utc(portal_close_at)
    if not (opened <= due <= closed):
        raise ValidationError(
            "invalid_dates",
            "Dates must satisfy portal open <= application due <= portal close",
            {
                "portal_open_at": opened.isoformat(),
                "application_due_at": due.isoformat(),
                "portal_close_at": closed.isoformat(),
            },
        )


def _normalize_slug(slug: str) -> str:
    value = (slug or "").strip().lower()
    if not value:
        raise ValidationError("invalid_slug", "Slug is required")
    return value


async def list_cycles(db: AsyncSession) -> list[RecruitmentCycle]:
    stmt = select(RecruitmentCycle).order_by(RecruitmentCycle.portal_open_at.desc())
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_cycle(db: AsyncSession, cycle_id: uuid.UUID) -> RecruitmentCycle | None:
    result = await db.execute(select(RecruitmentCycle).where(RecruitmentCycle.id == cycle_id))
    return result.scalar_one_or_none()


async def require_cycle(db: AsyncSession, cycle_id: uuid.UUID) -> RecruitmentCycle:
    cycle = await get_cycle(db, cycle_id)
    if cycle is None:
        raise NotFoundError("cycle", cycle_id)
    return cycle


async def get_cycle_by_slug(db: AsyncSession, slug: str) -> RecruitmentCycle | None:
    result = await db.execute(select(RecruitmentCycle).where(RecruitmentCycle.slug == _normalize_slug(slug)))
    return result.scalar_one_or_none()


async def get_active_cycle(db: AsyncSession) -> RecruitmentCycle | None:
    result = await db.execute(select(RecruitmentCycle).where(RecruitmentCycle.is_active.is_(True)))
    return result.scalars().first()


async def _swap_active(db: AsyncSession, cycle_id: uuid.UUID) -> None:
    # One statement: every row is rewritten, so readers never see zero or two active cycles.
    await db.execute(
        update(RecruitmentCycle)
        .values(is_active=(RecruitmentCycle.id == cycle_id))
        .execution_options(synchronize_session=False)
    )
    for obj in list(db.identity_map.values()):
        if isinstance(obj, RecruitmentCycle):
            set_committed_value(obj, "is_active", obj.id == cycle_id)


async def create_cycle(
    db: AsyncSession,
    name: str,
    slug: str,
    portal_open_at: datetime,
    application_due_at: datetime,
    portal_close_at: datetime,
    description: str | None = None,
    activate: bool = False,
    created_by: str | None = None,
) -> RecruitmentCycle:
    validate_dates(portal_open_at, application_due_at, portal_close_at)
    slug = _normalize_slug(slug)
    if await get_cycle_by_slug(db, slug):
        raise StateConflictError("slug_taken", f"A cycle with slug '{slug}' already exists", {"slug": slug})

    cycle = RecruitmentCycle(
        name=name,
        slug=slug,
        description=description,
        portal_open_at=ensure_utc(portal_open_at),
        application_due_at=ensure_utc(application_due_at),
        portal_close_at=ensure_utc(portal_close_at),
        is_active=False,
    )
    db.add(cycle)
    try:
        await db.flush()
        for phase in PHASES:
            db.add(PhaseConfig(
                cycle_id=cycle.id,
                phase=phase,
                status="open",
                scoring_categories=[dict(c) for c in DEFAULT_SCORING_CATEGORIES[phase]],
                min_reviewers_required=settings.default_min_reviewers,
            ))
        if activate:
            await _swap_active(db, cycle.id)
        activity_svc.add_activity(db, "cycle", cycle.id, "created", f"Cycle {name} created", created_by=created_by)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise StateConflictError("slug_taken", f"A cycle with slug '{slug}' already exists", {"slug": slug}) from e
    await db.refresh(cycle)
    logger.info("Created cycle %s (active=%s)", slug, cycle.is_active)
    return cycle


async def update_cycle(db: AsyncSession, cycle_id: uuid.UUID, **patch) -> RecruitmentCycle:
    cycle = await require_cycle(db, cycle_id)
    unknown = set(patch) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError("invalid_field", "Unknown cycle fields", {"fields": sorted(unknown)})

    merged = {key: patch.get(key, getattr(cycle, key)) for key in EDITABLE_FIELDS}
    validate_dates(merged["portal_open_at"], merged["application_due_at"], merged["portal_close_at"])

    if "slug" in patch:
        slug = _normalize_slug(patch["slug"])
        existing = await get_cycle_by_slug(db, slug)
        if existing is not None and existing.id != cycle.id:
            raise StateConflictError("slug_taken", f"A cycle with slug '{slug}' already exists", {"slug": slug})
        patch["slug"] = slug

    for key, value in patch.items():
        if isinstance(value, datetime):
            value = ensure_utc(value)
        setattr(cycle, key, value)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise StateConflictError("slug_taken", "Cycle slug already in use") from e
    await db.refresh(cycle)
    return cycle


async def set_active(db: AsyncSession, cycle_id: uuid.UUID, actor: str | None = None) -> RecruitmentCycle:
    """Make ``cycle_id`` the only active cycle."""
    cycle = await require_cycle(db, cycle_id)
    await _swap_active(db, cycle.id)
    activity_svc.add_activity(db, "cycle", cycle.id, "activated", created_by=actor)
    await db.commit()
    await db.refresh(cycle)
    logger.info("Activated cycle %s", cycle.slug)
    return cycle


async def dependency_summary(db: AsyncSession, cycle_id: uuid.UUID) -> dict[str, int]:
    async def _count(model, column) -> int:
        result = await db.execute(select(func.count()).select_from(model).where(column == cycle_id))
        return int(result.scalar_one())

    event_ids = select(RecruitmentEvent.id).where(RecruitmentEvent.cycle_id == cycle_id)
    rsvps = await db.execute(
        select(func.count()).select_from(EventRsvp).where(EventRsvp.event_id.in_(event_ids))
    )
    return {
        "applications": await _count(Application, Application.cycle_id),
        "reviews": await _count(PhaseReview, PhaseReview.cycle_id),
        "slots": await _count(RecruitmentSlot, RecruitmentSlot.cycle_id),
        "bookings": await _count(SlotBooking, SlotBooking.cycle_id),
        "events": await _count(RecruitmentEvent, RecruitmentEvent.cycle_id),
        "rsvps": int(rsvps.scalar_one()),
    }


async def delete_cycle(
    db: AsyncSession,
    cycle_id: uuid.UUID,
    cascade_confirmed: bool = False,
    actor: str | None = None,
) -> dict[str, int]:
    """Delete a cycle; refuses with a summary while dependents exist unless confirmed."""
    cycle = await require_cycle(db, cycle_id)
    summary = await dependency_summary(db, cycle.id)
    has_dependents = any(summary[key] for key in ("applications", "slots", "events"))
    if has_dependents and not cascade_confirmed:
        parts = ", ".join(f"{count} {name}" for name, count in summary.items() if count)
        raise DependencyError(
            f"Deleting cycle '{cycle.slug}' would also delete {parts}. Confirm to proceed.",
            summary,
        )

    event_ids = select(RecruitmentEvent.id).where(RecruitmentEvent.cycle_id == cycle.id)
    generation_ids = select(RankingGeneration.id).where(RankingGeneration.cycle_id == cycle.id)
    statements = (
        delete(RankedApplicant).where(RankedApplicant.generation_id.in_(generation_ids)),
        delete(RankingGeneration).where(RankingGeneration.cycle_id == cycle.id),
        delete(PhaseDecision).where(PhaseDecision.cycle_id == cycle.id),
        delete(PhaseReview).where(PhaseReview.cycle_id == cycle.id),
        delete(SlotBooking).where(SlotBooking.cycle_id == cycle.id),
        delete(RecruitmentSlot).where(RecruitmentSlot.cycle_id == cycle.id),
        delete(EventRsvp).where(EventRsvp.event_id.in_(event_ids)),
        delete(RecruitmentEvent).where(RecruitmentEvent.cycle_id == cycle.id),
        delete(ApplicationQuestionSet).where(ApplicationQuestionSet.cycle_id == cycle.id),
        delete(Application).where(Application.cycle_id == cycle.id),
        delete(PhaseConfig).where(PhaseConfig.cycle_id == cycle.id),
    )
    try:
        for stmt in statements:
            await db.execute(stmt.execution_options(synchronize_session=False))
        await db.delete(cycle)
        activity_svc.add_activity(
            db, "cycle", cycle.id, "deleted", f"Cycle {cycle.slug} deleted",
            metadata_json=summary, created_by=actor,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Deleted cycle %s with %s", cycle.slug, summary)
    return summary
