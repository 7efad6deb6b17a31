"""Ranking engine.

Each run replaces the full ranked set for a (cycle, phase) under a new
generation number. Given identical reviews the output is identical: the
aggregate is rounded and every tie is broken down to the application id.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..errors import StateConflictError
from ..models.application import Application
from ..models.phase import PhaseConfig, PhaseReview, RankedApplicant, RankingGeneration
from ..timeutil import ensure_utc, utcnow
from . import review_svc

logger = logging.getLogger(__name__)

SCORE_PRECISION = 6


@dataclass
class RankingRow:
    application_id: uuid.UUID
    applicant_email: str
    track: str | None
    submitted_at: datetime | None
    status: str
    aggregate_score: float | None
    review_count: int
    referral_count: int
    deferral_count: int
    category_scores: dict[str, float] = field(default_factory=dict)
    rank: int = 0
    track_rank: int = 0

    @property
    def tie_break_key(self) -> str:
        submitted = ensure_utc(self.submitted_at).isoformat() if self.submitted_at else ""
        return f"{submitted}|{self.application_id}"

    def sort_key(self) -> tuple:
        return (
            0 if self.status == "scored" else 1,
            -(self.aggregate_score or 0.0),
            -self.referral_count,
            self.deferral_count,
            self.tie_break_key,
        )


def _zscore_tables(reviews: list[PhaseReview]) -> dict[tuple[str, str], tuple[float, float]]:
    """Per (reviewer, category): mean and population stdev of that reviewer's scores."""
    samples: dict[tuple[str, str], list[float]] = defaultdict(list)
    for review in reviews:
        for key, value in (review.scores or {}).items():
            samples[(review.reviewer_email, key)].append(float(value))
    tables = {}
    for ident, values in samples.items():
        mean = sum(values) / len(values)
        variance = sum((v - mean) ** 2 for v in values) / len(values)
        tables[ident] = (mean, math.sqrt(variance))
    return tables


def aggregate(
    reviews: list[PhaseReview],
    categories: list[dict],
    referral_weights: dict | None = None,
    zscores: dict[tuple[str, str], tuple[float, float]] | None = None,
) -> tuple[float | None, dict[str, float]]:
    """Reduce one applicant's reviews to ``(aggregate, category_means)``."""
    per_category: dict[str, list[float]] = defaultdict(list)
    for review in reviews:
        for key, value in (review.scores or {}).items():
            value = float(value)
            if zscores is not None:
                mean, stdev = zscores[(review.reviewer_email, key)]
                value = (value - mean) / stdev if stdev > 0 else 0.0
            per_category[key].append(value)

    category_means = {k: sum(v) / len(v) for k, v in sorted(per_category.items())}
    if not category_means:
        return None, {}

    weights = {c["key"]: float(c.get("weight", 1.0)) for c in categories or []}
    weighted = [(category_means[k], w) for k, w in weights.items() if k in category_means and w > 0]
    if weighted:
        total_weight = sum(w for _, w in weighted)
        score = sum(v * w for v, w in weighted) / total_weight
    else:
        score = sum(category_means.values()) / len(category_means)

    if referral_weights:
        referrals = sum(1 for r in reviews if r.referral_signal == "referral")
        deferrals = sum(1 for r in reviews if r.referral_signal == "deferral")
        score += referrals * float(referral_weights.get("advocate", 0.0))
        score += deferrals * float(referral_weights.get("oppose", 0.0))

    rounded = {k: round(v, SCORE_PRECISION) for k, v in category_means.items()}
    return round(score, SCORE_PRECISION), rounded


def compute_rankings(
    applications: list[Application],
    reviews: list[PhaseReview],
    config: PhaseConfig,
) -> list[RankingRow]:
    """Order applications for one phase; zero-review applicants come last as ``unscored``."""
    by_application: dict[uuid.UUID, list[PhaseReview]] = defaultdict(list)
    for review in reviews:
        by_application[review.application_id].append(review)
    zscores = _zscore_tables(reviews) if config.use_zscore_normalization else None

    rows = []
    for application in applications:
        app_reviews = sorted(by_application.get(application.id, []), key=lambda r: r.reviewer_email)
        score, category_means = aggregate(
            app_reviews, config.scoring_categories, config.referral_weights, zscores
        )
        rows.append(RankingRow(
            application_id=application.id,
            applicant_email=application.applicant_email,
            track=application.track,
            submitted_at=application.submitted_at,
            status="scored" if score is not None else "unscored",
            aggregate_score=score,
            review_count=len(app_reviews),
            referral_count=sum(1 for r in app_reviews if r.referral_signal == "referral"),
            deferral_count=sum(1 for r in app_reviews if r.referral_signal == "deferral"),
            category_scores=category_means,
        ))

    rows.sort(key=RankingRow.sort_key)
    track_counters: dict[str | None, int] = defaultdict(int)
    for position, row in enumerate(rows, start=1):
        row.rank = position
        track_counters[row.track] += 1
        row.track_rank = track_counters[row.track]
    return rows


async def generate_rankings(
    db: AsyncSession,
    cycle_id: uuid.UUID,
    phase: str,
    actor: str | None = None,
    now: datetime | None = None,
) -> RankingGeneration:
    """Replace the ranked set for ``phase`` with a fresh generation."""
    config = await review_svc.get_phase_config(db, cycle_id, phase)
    review_svc.ensure_phase_open(config)
    config_id = config.id

    applications = await review_svc.list_phase_applicants(db, cycle_id, phase)
    eligible_ids = {a.id for a in applications}
    reviews = [r for r in await review_svc.list_reviews(db, cycle_id, phase) if r.application_id in eligible_ids]
    rows = compute_rankings(applications, reviews, config)

    latest = await db.execute(
        select(func.max(RankingGeneration.version)).where(
            RankingGeneration.cycle_id == cycle_id, RankingGeneration.phase == phase
        )
    )
    version = (latest.scalar_one() or 0) + 1

    generation = RankingGeneration(
        cycle_id=cycle_id,
        phase=phase,
        version=version,
        generated_at=now or utcnow(),
        generated_by=actor,
        entry_count=len(rows),
    )
    try:
        await review_svc.hold_phase_open(db, config_id, phase)
        await db.execute(
            delete(RankedApplicant)
            .where(RankedApplicant.cycle_id == cycle_id, RankedApplicant.phase == phase)
            .execution_options(synchronize_session=False)
        )
        db.add(generation)
        await db.flush()
        for row in rows:
            db.add(RankedApplicant(
                generation_id=generation.id,
                cycle_id=cycle_id,
                phase=phase,
                application_id=row.application_id,
                applicant_email=row.applicant_email,
                track=row.track,
                rank=row.rank,
                track_rank=row.track_rank,
                status=row.status,
                aggregate_score=row.aggregate_score,
                review_count=row.review_count,
                referral_count=row.referral_count,
                deferral_count=row.deferral_count,
                category_scores=row.category_scores,
                tie_break_key=row.tie_break_key,
            ))
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise StateConflictError(
            "ranking_in_progress", "Rankings are being regenerated concurrently, retry shortly"
        ) from e

    logger.info("Generated %s rankings v%s with %s entries", phase, version, len(rows))
    return await get_latest_ranking(db, cycle_id, phase)


async def get_latest_ranking(db: AsyncSession, cycle_id: uuid.UUID, phase: str) -> RankingGeneration | None:
    stmt = (
        select(RankingGeneration)
        .where(RankingGeneration.cycle_id == cycle_id, RankingGeneration.phase == phase)
        .options(selectinload(RankingGeneration.entries))
        .order_by(RankingGeneration.version.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()
