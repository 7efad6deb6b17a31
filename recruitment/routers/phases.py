"""Phase config, reviews, completeness, rankings and cutoff endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..identity import Actor, require_admin, require_reviewer
from ..pipeline import validate_phase
from ..schemas.phase import CutoffRequest, PhaseConfigUpdate, ReviewSubmit, UnlockRequest
from ..services import cutoff_svc, cycle_svc, ranking_svc, review_svc
from ..services.cutoff_svc import CutoffCriteria, ManualOverride
from ..timeutil import isoformat

router = APIRouter(prefix="/cycles/{cycle_id}/phases")


def phase_config_dict(config) -> dict:
    return {
        "id": str(config.id),
        "phase": config.phase,
        "status": config.status,
        "scoring_categories": config.scoring_categories,
        "min_reviewers_required": config.min_reviewers_required,
        "use_zscore_normalization": config.use_zscore_normalization,
        "referral_weights": config.referral_weights,
        "finalized_at": isoformat(config.finalized_at),
        "finalized_by": config.finalized_by,
        "cutoff_applied_at": isoformat(config.cutoff_applied_at),
        "cutoff_criteria": config.cutoff_criteria,
    }


def review_dict(review) -> dict:
    return {
        "id": str(review.id),
        "application_id": str(review.application_id),
        "phase": review.phase,
        "reviewer_email": review.reviewer_email,
        "reviewer_name": review.reviewer_name,
        "scores": review.scores,
        "notes": review.notes,
        "recommendation": review.recommendation,
        "referral_signal": review.referral_signal,
        "completed_at": isoformat(review.completed_at),
    }


def ranking_dict(generation) -> dict:
    return {
        "version": generation.version,
        "generated_at": isoformat(generation.generated_at),
        "generated_by": generation.generated_by,
        "entries": [
            {
                "application_id": str(e.application_id),
                "applicant_email": e.applicant_email,
                "track": e.track,
                "rank": e.rank,
                "track_rank": e.track_rank,
                "status": e.status,
                "aggregate_score": e.aggregate_score,
                "review_count": e.review_count,
                "referral_count": e.referral_count,
                "deferral_count": e.deferral_count,
                "category_scores": e.category_scores,
                "tie_break_key": e.tie_break_key,
            }
            for e in generation.entries
        ],
    }


def decision_dict(decision) -> dict:
    return {
        "application_id": str(decision.application_id),
        "track": decision.track,
        "action": decision.action,
        "reason": decision.reason,
        "previous_stage": decision.previous_stage,
        "new_stage": decision.new_stage,
        "rank": decision.rank,
        "aggregate_score": decision.aggregate_score,
        "performed_by": decision.performed_by,
        "performed_at": isoformat(decision.performed_at),
    }


@router.get("")
async def list_phase_configs(cycle_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    await cycle_svc.require_cycle(db, cycle_id)
    return [phase_config_dict(c) for c in await review_svc.list_phase_configs(db, cycle_id)]


@router.get("/{phase}/config")
async def get_phase_config(cycle_id: uuid.UUID, phase: str, db: AsyncSession = Depends(get_db)):
    await cycle_svc.require_cycle(db, cycle_id)
    return phase_config_dict(await review_svc.get_phase_config(db, cycle_id, phase))


@router.patch("/{phase}/config")
async def update_phase_config(
    cycle_id: uuid.UUID,
    phase: str,
    data: PhaseConfigUpdate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await cycle_svc.require_cycle(db, cycle_id)
    changes = data.model_dump(exclude_unset=True)
    config = await review_svc.update_phase_config(db, cycle_id, phase, actor=actor.email, **changes)
    return phase_config_dict(config)


@router.post("/{phase}/reviews")
async def submit_review(
    cycle_id: uuid.UUID,
    phase: str,
    data: ReviewSubmit,
    actor: Actor = Depends(require_reviewer),
    db: AsyncSession = Depends(get_db),
):
    review = await review_svc.record_review(
        db,
        cycle_id,
        phase,
        data.application_id,
        actor.email,
        data.scores,
        notes=data.notes,
        recommendation=data.recommendation,
        referral_signal=data.referral_signal,
        reviewer_name=data.reviewer_name,
    )
    return review_dict(review)


@router.get("/{phase}/reviews")
async def list_reviews(
    cycle_id: uuid.UUID,
    phase: str,
    application_id: uuid.UUID | None = None,
    actor: Actor = Depends(require_reviewer),
    db: AsyncSession = Depends(get_db),
):
    return [review_dict(r) for r in await review_svc.list_reviews(db, cycle_id, phase, application_id)]


@router.get("/{phase}/applications/{application_id}/summary")
async def review_summary(
    cycle_id: uuid.UUID,
    phase: str,
    application_id: uuid.UUID,
    actor: Actor = Depends(require_reviewer),
    db: AsyncSession = Depends(get_db),
):
    validate_phase(phase)
    return await review_svc.get_review_summary(db, application_id, phase)


@router.get("/{phase}/completeness")
async def completeness(
    cycle_id: uuid.UUID,
    phase: str,
    actor: Actor = Depends(require_reviewer),
    db: AsyncSession = Depends(get_db),
):
    await cycle_svc.require_cycle(db, cycle_id)
    result = await review_svc.get_completeness(db, cycle_id, phase)
    return result.to_dict()


@router.post("/{phase}/rankings")
async def generate_rankings(
    cycle_id: uuid.UUID,
    phase: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await cycle_svc.require_cycle(db, cycle_id)
    generation = await ranking_svc.generate_rankings(db, cycle_id, phase, actor=actor.email)
    return ranking_dict(generation)


@router.get("/{phase}/rankings")
async def latest_ranking(
    cycle_id: uuid.UUID,
    phase: str,
    actor: Actor = Depends(require_reviewer),
    db: AsyncSession = Depends(get_db),
):
    validate_phase(phase)
    generation = await ranking_svc.get_latest_ranking(db, cycle_id, phase)
    if not generation:
        raise HTTPException(status_code=404, detail="No rankings generated yet")
    return ranking_dict(generation)


@router.post("/{phase}/cutoff")
async def apply_cutoff(
    cycle_id: uuid.UUID,
    phase: str,
    data: CutoffRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await cycle_svc.require_cycle(db, cycle_id)
    if data.criteria_by_track:
        criteria = {track: CutoffCriteria(c.type, c.value) for track, c in data.criteria_by_track.items()}
    elif data.criteria:
        criteria = CutoffCriteria(data.criteria.type, data.criteria.value)
    else:
        raise HTTPException(status_code=422, detail="criteria or criteria_by_track is required")
    overrides = [ManualOverride(o.application_id, o.action, o.reason) for o in data.manual_overrides]

    result = await cutoff_svc.apply_cutoff(
        db,
        cycle_id,
        phase,
        criteria,
        manual_overrides=overrides,
        send_notifications=data.send_notifications,
        require_complete_reviews=data.require_complete_reviews,
        actor=actor.email,
    )
    return {
        "phase": result.phase,
        "advanced": [str(i) for i in result.advanced],
        "rejected": [str(i) for i in result.rejected],
        "unscored": [str(i) for i in result.unscored],
        "skipped": [str(i) for i in result.skipped],
        "decisions": [decision_dict(d) for d in result.decisions],
        "warnings": [w.to_dict() for w in result.warnings],
    }


@router.get("/{phase}/decisions")
async def phase_decisions(
    cycle_id: uuid.UUID,
    phase: str,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    validate_phase(phase)
    return [decision_dict(d) for d in await cutoff_svc.get_phase_decisions(db, cycle_id, phase)]


@router.post("/{phase}/unlock")
async def unlock_phase(
    cycle_id: uuid.UUID,
    phase: str,
    data: UnlockRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await cycle_svc.require_cycle(db, cycle_id)
    config = await review_svc.unlock_phase(db, cycle_id, phase, actor=actor.email, reason=data.reason)
    return phase_config_dict(config)
