"""Cutoff decision engine.

Turns the latest ranking plus criteria and manual overrides into stage
moves. All moves, their audit rows and the phase finalize flag commit in
one transaction; notifications go out only after that commit.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import SideEffectWarning, StateConflictError, ValidationError
from ..models.application import Application
from ..models.phase import PhaseConfig, PhaseDecision, RankedApplicant
from ..pipeline import PHASE_ELIGIBLE_STAGES, PHASE_OUTCOMES, TRACKS
from ..timeutil import utcnow
from . import activity_svc, notification_svc, ranking_svc, review_svc
from .application_svc import transition
from .notification_svc import OutboundMessage

logger = logging.getLogger(__name__)

CRITERIA_TYPES = ("top_n", "min_score", "manual")
OVERRIDE_ACTIONS = ("advance", "reject")


@dataclass(frozen=True)
class CutoffCriteria:
    type: str
    value: float | None = None

    def __post_init__(self):
        if self.type not in CRITERIA_TYPES:
            raise ValidationError("invalid_criteria", f"Unknown cutoff type '{self.type}'", {"allowed": list(CRITERIA_TYPES)})
        if self.type == "top_n" and (self.value is None or int(self.value) != self.value or self.value < 0):
            raise ValidationError("invalid_criteria", "top_n needs a non-negative whole number")
        if self.type == "min_score" and self.value is None:
            raise ValidationError("invalid_criteria", "min_score needs a threshold")

    @classmethod
    def from_dict(cls, data: Mapping) -> "CutoffCriteria":
        value = data.get("value")
        return cls(type=data.get("type", ""), value=float(value) if value is not None else None)

    def to_dict(self) -> dict:
        return {"type": self.type, "value": self.value}


@dataclass(frozen=True)
class ManualOverride:
    application_id: uuid.UUID
    action: str
    reason: str | None = None

    def __post_init__(self):
        if self.action not in OVERRIDE_ACTIONS:
            raise ValidationError("invalid_override", f"Unknown override action '{self.action}'")


@dataclass
class Decision:
    application_id: uuid.UUID
    applicant_email: str
    track: str | None
    action: str
    reason: str | None
    rank: int | None
    aggregate_score: float | None

    @property
    def outcome(self) -> str:
        return "advance" if self.action in ("advance", "manual_advance") else "reject"


@dataclass
class CutoffResult:
    phase: str
    decisions: list[PhaseDecision] = field(default_factory=list)
    advanced: list[uuid.UUID] = field(default_factory=list)
    rejected: list[uuid.UUID] = field(default_factory=list)
    unscored: list[uuid.UUID] = field(default_factory=list)
    skipped: list[uuid.UUID] = field(default_factory=list)
    warnings: list[SideEffectWarning] = field(default_factory=list)


def _criteria_for(criteria, track: str | None) -> CutoffCriteria:
    if isinstance(criteria, CutoffCriteria):
        return criteria
    key = track or "none"
    if key not in criteria:
        raise ValidationError("invalid_criteria", f"No cutoff criteria given for track '{key}'", {"track": key})
    return criteria[key]


def plan_decisions(
    entries: list[RankedApplicant],
    criteria: CutoffCriteria | Mapping[str, CutoffCriteria],
    overrides: Mapping[uuid.UUID, ManualOverride],
) -> list[Decision]:
    """Compute the advance/reject outcome for every ranked entry, per track.

    Overridden applicants are set aside first; ``top_n`` then counts only the
    remaining scored applicants, so rejecting a top-ranked applicant by hand
    lets the next one in.
    """
    by_track: dict[str | None, list[RankedApplicant]] = defaultdict(list)
    for entry in sorted(entries, key=lambda e: e.rank):
        by_track[entry.track].append(entry)

    decisions: list[Decision] = []
    for track in sorted(by_track, key=lambda t: (t is None, t or "")):
        rule = _criteria_for(criteria, track)
        advanced_by_rule = 0
        for entry in by_track[track]:
            override = overrides.get(entry.application_id)
            if override is not None:
                action = f"manual_{override.action}"
                reason = override.reason
            elif entry.status != "scored":
                action, reason = "reject", "unscored"
            elif rule.type == "top_n" and advanced_by_rule < int(rule.value):
                advanced_by_rule += 1
                action, reason = "advance", f"top {int(rule.value)} in track"
            elif rule.type == "min_score" and entry.aggregate_score >= rule.value:
                action, reason = "advance", f"score >= {rule.value}"
            else:
                action, reason = "reject", f"below {rule.type} cutoff"
            decisions.append(Decision(
                application_id=entry.application_id,
                applicant_email=entry.applicant_email,
                track=entry.track,
                action=action,
                reason=reason,
                rank=entry.rank,
                aggregate_score=entry.aggregate_score,
            ))
    return decisions


def apply_decision(
    db: AsyncSession,
    application: Application,
    decision: Decision,
    phase: str,
    actor: str | None,
    now: datetime,
) -> PhaseDecision:
    """Move one applicant and stage its audit row; no commit."""
    new_stage = PHASE_OUTCOMES[phase][decision.outcome]
    previous = transition(application, new_stage)
    record = PhaseDecision(
        cycle_id=application.cycle_id,
        phase=phase,
        application_id=application.id,
        track=application.track,
        action=decision.action,
        reason=decision.reason,
        previous_stage=previous,
        new_stage=new_stage,
        rank=decision.rank,
        aggregate_score=decision.aggregate_score,
        performed_by=actor,
        performed_at=now,
    )
    db.add(record)
    return record


def _normalize_criteria(criteria) -> CutoffCriteria | dict[str, CutoffCriteria]:
    if isinstance(criteria, CutoffCriteria):
        return criteria
    if isinstance(criteria, Mapping) and "type" in criteria:
        return CutoffCriteria.from_dict(criteria)
    if isinstance(criteria, Mapping):
        normalized = {}
        for track, rule in criteria.items():
            if track not in TRACKS and track != "none":
                raise ValidationError("invalid_track", f"Unknown track '{track}'")
            normalized[track] = rule if isinstance(rule, CutoffCriteria) else CutoffCriteria.from_dict(rule)
        return normalized
    raise ValidationError("invalid_criteria", "Cutoff criteria must be a rule or a per-track mapping")


async def apply_cutoff(
    db: AsyncSession,
    cycle_id: uuid.UUID,
    phase: str,
    criteria,
    manual_overrides: list[ManualOverride] | None = None,
    send_notifications: bool = True,
    require_complete_reviews: bool = False,
    actor: str | None = None,
    now: datetime | None = None,
) -> CutoffResult:
    """Advance/reject every ranked applicant and finalize ``phase``."""
    config = await review_svc.get_phase_config(db, cycle_id, phase)
    review_svc.ensure_phase_open(config)
    config_id = config.id
    rules = _normalize_criteria(criteria)

    generation = await ranking_svc.get_latest_ranking(db, cycle_id, phase)
    if generation is None:
        raise StateConflictError("no_ranking", f"Generate rankings for '{phase}' before applying a cutoff")

    if require_complete_reviews:
        completeness = await review_svc.get_completeness(db, cycle_id, phase)
        if not completeness.is_complete:
            raise StateConflictError(
                "reviews_incomplete",
                "Not every applicant has the required number of reviews",
                completeness.to_dict(),
            )

    ranked_ids = {e.application_id for e in generation.entries}
    overrides: dict[uuid.UUID, ManualOverride] = {}
    for override in manual_overrides or []:
        if override.application_id not in ranked_ids:
            raise ValidationError(
                "invalid_override",
                "Override refers to an applicant who is not in the ranking",
                {"application_id": str(override.application_id)},
            )
        overrides[override.application_id] = override

    decisions = plan_decisions(generation.entries, rules, overrides)
    applications = {
        a.id: a for a in (await db.execute(
            select(Application).where(Application.id.in_(ranked_ids))
        )).scalars().all()
    }
    now = now or utcnow()
    result = CutoffResult(phase=phase)
    snapshot = {
        "criteria": rules.to_dict() if isinstance(rules, CutoffCriteria)
        else {k: v.to_dict() for k, v in rules.items()},
        "overrides": [
            {"application_id": str(o.application_id), "action": o.action, "reason": o.reason}
            for o in overrides.values()
        ],
        "ranking_version": generation.version,
    }

    # Claim the phase first: of two racing cutoffs only one matches "open".
    claimed = await db.execute(
        update(PhaseConfig)
        .where(PhaseConfig.id == config_id, PhaseConfig.status == "open")
        .values(
            status="finalized",
            finalized_at=now,
            finalized_by=actor,
            cutoff_applied_at=now,
            cutoff_applied_by=actor,
            cutoff_criteria=snapshot,
        )
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 0:
        await db.rollback()
        raise StateConflictError("phase_finalized", f"Phase '{phase}' has been finalized", {"phase": phase})

    try:
        for decision in decisions:
            application = applications.get(decision.application_id)
            if application is None or application.stage not in PHASE_ELIGIBLE_STAGES[phase]:
                # Withdrawn or moved by an administrator after the ranking was generated.
                result.skipped.append(decision.application_id)
                continue
            record = apply_decision(db, application, decision, phase, actor, now)
            result.decisions.append(record)
            if decision.outcome == "advance":
                result.advanced.append(decision.application_id)
            else:
                result.rejected.append(decision.application_id)
            if decision.reason == "unscored":
                result.unscored.append(decision.application_id)

        activity_svc.add_activity(
            db, "phase", config_id, "cutoff_applied",
            f"{len(result.advanced)} advanced, {len(result.rejected)} rejected",
            metadata_json={"phase": phase, "advanced": len(result.advanced), "rejected": len(result.rejected)},
            created_by=actor,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("Cutoff for %s of cycle %s rolled back", phase, cycle_id)
        raise

    logger.info(
        "Cutoff applied for %s: %s advanced, %s rejected", phase, len(result.advanced), len(result.rejected)
    )

    if send_notifications:
        messages = []
        for record in result.decisions:
            application = applications[record.application_id]
            advanced = record.new_stage != "rejected"
            messages.append(OutboundMessage(
                recipient=application.applicant_email,
                kind="phase_advanced" if advanced else "phase_rejected",
                context={
                    "phase": phase,
                    "new_stage": record.new_stage,
                    "applicant_name": application.applicant_name,
                    "track": application.track,
                },
                subject_type="application",
                subject_id=application.id,
            ))
        result.warnings = await notification_svc.send_notifications(db, messages)
    return result


async def get_phase_decisions(db: AsyncSession, cycle_id: uuid.UUID, phase: str) -> list[PhaseDecision]:
    stmt = (
        select(PhaseDecision)
        .where(PhaseDecision.cycle_id == cycle_id, PhaseDecision.phase == phase)
        .order_by(PhaseDecision.performed_at.asc(), PhaseDecision.rank.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
