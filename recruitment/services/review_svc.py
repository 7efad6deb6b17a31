"""Phase configuration, per-reviewer scoring and completeness."""

from __future__ import annotations

import logging
import uuid
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..errors import StateConflictError, ValidationError
from ..models.application import Application
from ..models.phase import PhaseConfig, PhaseReview
from ..pipeline import DEFAULT_SCORING_CATEGORIES, PHASE_ELIGIBLE_STAGES, PHASES, validate_phase
from ..timeutil import utcnow
from . import activity_svc
from .application_svc import normalize_email, require_application

logger = logging.getLogger(__name__)

RECOMMENDATIONS = ("advance", "hold", "reject")
REFERRAL_SIGNALS = ("referral", "neutral", "deferral")


@dataclass
class PhaseCompleteness:
    phase: str
    total_applicants: int
    applicants_with_reviews: int
    applicants_fully_reviewed: int
    min_reviewers_required: int
    per_reviewer: dict[str, int] = field(default_factory=dict)

    @property
    def fraction(self) -> float:
        if self.total_applicants == 0:
            return 0.0
        return round(self.applicants_fully_reviewed / self.total_applicants, 6)

    @property
    def is_complete(self) -> bool:
        return self.applicants_fully_reviewed == self.total_applicants

    def to_dict(self) -> dict:
        return {
            "phase": self.phase,
            "total_applicants": self.total_applicants,
            "applicants_with_reviews": self.applicants_with_reviews,
            "applicants_fully_reviewed": self.applicants_fully_reviewed,
            "min_reviewers_required": self.min_reviewers_required,
            "fraction": self.fraction,
            "is_complete": self.is_complete,
            "per_reviewer": dict(self.per_reviewer),
        }


# ── Phase configuration ──────────────────────────────────────────────────

async def get_phase_config(db: AsyncSession, cycle_id: uuid.UUID, phase: str) -> PhaseConfig:
    """Fetch the phase config, creating the default row for older cycles."""
    validate_phase(phase)
    stmt = (
        select(PhaseConfig)
        .where(PhaseConfig.cycle_id == cycle_id, PhaseConfig.phase == phase)
        .execution_options(populate_existing=True)
    )
    config = (await db.execute(stmt)).scalar_one_or_none()
    if config is not None:
        return config
    config = PhaseConfig(
        cycle_id=cycle_id,
        phase=phase,
        status="open",
        scoring_categories=[dict(c) for c in DEFAULT_SCORING_CATEGORIES[phase]],
        min_reviewers_required=settings.default_min_reviewers,
    )
    db.add(config)
    await db.commit()
    await db.refresh(config)
    return config


async def list_phase_configs(db: AsyncSession, cycle_id: uuid.UUID) -> list[PhaseConfig]:
    return [await get_phase_config(db, cycle_id, phase) for phase in PHASES]


def ensure_phase_open(config: PhaseConfig, reason: str = "phase_finalized") -> None:
    if config.is_finalized:
        raise StateConflictError(
            reason,
            f"Phase '{config.phase}' has been finalized",
            {"phase": config.phase, "finalized_at": config.finalized_at.isoformat() if config.finalized_at else None},
        )


async def hold_phase_open(db: AsyncSession, config_id: uuid.UUID, phase: str, reason: str = "phase_finalized") -> None:
    """Write-lock the phase row for the rest of the caller's transaction.

    The guarded UPDATE matches nothing once a concurrent finalize has
    committed; a finalize that starts later waits for this transaction.
    """
    held = await db.execute(
        update(PhaseConfig)
        .where(PhaseConfig.id == config_id, PhaseConfig.status == "open")
        .values(status="open")
        .execution_options(synchronize_session=False)
    )
    if held.rowcount == 0:
        await db.rollback()
        raise StateConflictError(reason, f"Phase '{phase}' has been finalized", {"phase": phase})


def normalize_categories(categories: list[dict]) -> list[dict]:
    normalized = []
    seen: set[str] = set()
    for raw in categories:
        key = str(raw.get("key") or "").strip()
        if not key or key in seen:
            raise ValidationError("invalid_category", f"Scoring category key '{key}' is missing or duplicated")
        seen.add(key)
        min_score = float(raw.get("min_score", 1))
        max_score = float(raw.get("max_score", 10))
        weight = float(raw.get("weight", 1.0))
        if min_score >= max_score or weight < 0:
            raise ValidationError("invalid_category", f"Scoring category '{key}' has an invalid range or weight")
        normalized.append({
            "key": key,
            "label": raw.get("label") or key,
            "min_score": min_score,
            "max_score": max_score,
            "weight": weight,
        })
    return normalized


async def update_phase_config(
    db: AsyncSession,
    cycle_id: uuid.UUID,
    phase: str,
    *,
    scoring_categories: list[dict] | None = None,
    min_reviewers_required: int | None = None,
    use_zscore_normalization: bool | None = None,
    referral_weights: dict | None = None,
    actor: str | None = None,
) -> PhaseConfig:
    config = await get_phase_config(db, cycle_id, phase)
    ensure_phase_open(config)

    if scoring_categories is not None:
        config.scoring_categories = normalize_categories(scoring_categories)
    if min_reviewers_required is not None:
        if min_reviewers_required < 1:
            raise ValidationError("invalid_min_reviewers", "At least one reviewer must be required")
        config.min_reviewers_required = min_reviewers_required
    if use_zscore_normalization is not None:
        config.use_zscore_normalization = use_zscore_normalization
    if referral_weights is not None:
        unknown = set(referral_weights) - {"advocate", "oppose"}
        if unknown:
            raise ValidationError("invalid_referral_weights", "Unknown referral weight keys", {"keys": sorted(unknown)})
        config.referral_weights = {k: float(v) for k, v in referral_weights.items()}

    activity_svc.add_activity(db, "phase", config.id, "config_updated", created_by=actor)
    await db.commit()
    await db.refresh(config)
    return config


async def unlock_phase(
    db: AsyncSession,
    cycle_id: uuid.UUID,
    phase: str,
    actor: str | None = None,
    reason: str | None = None,
) -> PhaseConfig:
    """Reopen a finalized phase. Stage moves already applied are not reverted."""
    config = await get_phase_config(db, cycle_id, phase)
    if not config.is_finalized:
        return config
    previous = config.finalized_at
    config.status = "open"
    config.finalized_at = None
    config.finalized_by = None
    activity_svc.add_activity(
        db, "phase", config.id, "unlocked", reason,
        metadata_json={"phase": phase, "finalized_at": previous.isoformat() if previous else None},
        created_by=actor,
    )
    await db.commit()
    await db.refresh(config)
    logger.warning("Phase %s of cycle %s unlocked by %s", phase, cycle_id, actor)
    return config


# ── Reviews ──────────────────────────────────────────────────────────────

def validate_scores(scores: dict, categories: list[dict]) -> dict[str, float]:
    if not scores:
        raise ValidationError("invalid_scores", "At least one score is required")
    ranges = {c["key"]: c for c in categories or []}
    cleaned: dict[str, float] = {}
    for key, value in scores.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError("invalid_scores", f"Score for '{key}' must be numeric", {"key": key})
        category = ranges.get(key)
        if category is not None and not (category["min_score"] <= value <= category["max_score"]):
            raise ValidationError(
                "invalid_scores",
                f"Score for '{key}' must be between {category['min_score']} and {category['max_score']}",
                {"key": key, "value": value},
            )
        cleaned[key] = float(value)
    return cleaned


async def record_review(
    db: AsyncSession,
    cycle_id: uuid.UUID,
    phase: str,
    application_id: uuid.UUID,
    reviewer_email: str,
    scores: dict,
    notes: str | None = None,
    recommendation: str | None = None,
    referral_signal: str = "neutral",
    reviewer_name: str | None = None,
    now: datetime | None = None,
    _retry: bool = True,
) -> PhaseReview:
    """Upsert one reviewer's review; a resubmission replaces the earlier one."""
    config = await get_phase_config(db, cycle_id, phase)
    ensure_phase_open(config, reason="phase_locked")
    config_id = config.id

    application = await require_application(db, application_id)
    if application.cycle_id != cycle_id:
        raise ValidationError("wrong_cycle", "Application belongs to another cycle")
    if application.stage not in PHASE_ELIGIBLE_STAGES[phase]:
        raise StateConflictError(
            "wrong_stage",
            f"Application has not reached phase '{phase}'",
            {"stage": application.stage, "phase": phase},
        )
    if recommendation is not None and recommendation not in RECOMMENDATIONS:
        raise ValidationError("invalid_recommendation", f"Unknown recommendation '{recommendation}'")
    if referral_signal not in REFERRAL_SIGNALS:
        raise ValidationError("invalid_referral_signal", f"Unknown referral signal '{referral_signal}'")
    cleaned = validate_scores(scores, config.scoring_categories)
    reviewer = normalize_email(reviewer_email)
    now = now or utcnow()

    stmt = select(PhaseReview).where(
        PhaseReview.cycle_id == cycle_id,
        PhaseReview.phase == phase,
        PhaseReview.application_id == application_id,
        PhaseReview.reviewer_email == reviewer,
    )
    review = (await db.execute(stmt)).scalar_one_or_none()
    if review is None:
        review = PhaseReview(
            cycle_id=cycle_id, phase=phase, application_id=application_id, reviewer_email=reviewer,
        )
        db.add(review)
    review.reviewer_name = reviewer_name or review.reviewer_name
    review.scores = cleaned
    review.notes = notes
    review.recommendation = recommendation
    review.referral_signal = referral_signal
    review.completed_at = now

    if phase == "application" and application.stage == "submitted":
        application.stage = "under_review"

    try:
        await hold_phase_open(db, config_id, phase, reason="phase_locked")
        await db.commit()
    except IntegrityError:
        await db.rollback()
        if not _retry:
            raise
        return await record_review(
            db, cycle_id, phase, application_id, reviewer, scores, notes=notes,
            recommendation=recommendation, referral_signal=referral_signal,
            reviewer_name=reviewer_name, now=now, _retry=False,
        )
    await db.refresh(review)
    return review


async def list_reviews(
    db: AsyncSession,
    cycle_id: uuid.UUID,
    phase: str,
    application_id: uuid.UUID | None = None,
) -> list[PhaseReview]:
    validate_phase(phase)
    stmt = select(PhaseReview).where(PhaseReview.cycle_id == cycle_id, PhaseReview.phase == phase)
    if application_id:
        stmt = stmt.where(PhaseReview.application_id == application_id)
    stmt = stmt.order_by(PhaseReview.application_id.asc(), PhaseReview.reviewer_email.asc())
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_phase_applicants(db: AsyncSession, cycle_id: uuid.UUID, phase: str) -> list[Application]:
    """Applications currently sitting in ``phase``'s eligible stages."""
    stmt = (
        select(Application)
        .where(Application.cycle_id == cycle_id, Application.stage.in_(PHASE_ELIGIBLE_STAGES[phase]))
        .order_by(Application.id.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_completeness(db: AsyncSession, cycle_id: uuid.UUID, phase: str) -> PhaseCompleteness:
    config = await get_phase_config(db, cycle_id, phase)
    applicants = await list_phase_applicants(db, cycle_id, phase)
    eligible_ids = {a.id for a in applicants}

    counts: Counter = Counter()
    per_reviewer: Counter = Counter()
    for review in await list_reviews(db, cycle_id, phase):
        if review.application_id in eligible_ids:
            counts[review.application_id] += 1
            per_reviewer[review.reviewer_email] += 1

    required = config.min_reviewers_required
    return PhaseCompleteness(
        phase=phase,
        total_applicants=len(eligible_ids),
        applicants_with_reviews=sum(1 for app_id in eligible_ids if counts[app_id] > 0),
        applicants_fully_reviewed=sum(1 for app_id in eligible_ids if counts[app_id] >= required),
        min_reviewers_required=required,
        per_reviewer=dict(sorted(per_reviewer.items())),
    )


async def get_review_summary(db: AsyncSession, application_id: uuid.UUID, phase: str) -> dict:
    application = await require_application(db, application_id)
    reviews = await list_reviews(db, application.cycle_id, phase, application_id)

    by_category: dict[str, list[float]] = defaultdict(list)
    for review in reviews:
        for key, value in (review.scores or {}).items():
            by_category[key].append(float(value))

    return {
        "application_id": str(application.id),
        "phase": phase,
        "review_count": len(reviews),
        "category_means": {k: round(sum(v) / len(v), 6) for k, v in sorted(by_category.items())},
        "recommendations": dict(Counter(r.recommendation for r in reviews if r.recommendation)),
        "referral_signals": dict(Counter(r.referral_signal for r in reviews)),
        "reviewers": [r.reviewer_email for r in reviews],
    }
