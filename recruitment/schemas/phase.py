"""Pydantic models for phase review, ranking and cutoff API."""

from __future__ import annotations

import uuid

from pydantic import BaseModel


class ScoringCategory(BaseModel):
    key: str
    label: str | None = None
    min_score: float = 1
    max_score: float = 10
    weight: float = 1.0


class PhaseConfigUpdate(BaseModel):
    scoring_categories: list[ScoringCategory] | None = None
    min_reviewers_required: int | None = None
    use_zscore_normalization: bool | None = None
    referral_weights: dict[str, float] | None = None  # advocate/oppose


class ReviewSubmit(BaseModel):
    application_id: uuid.UUID
    scores: dict[str, float]
    notes: str | None = None
    recommendation: str | None = None  # advance/hold/reject
    referral_signal: str = "neutral"  # referral/neutral/deferral
    reviewer_name: str | None = None


class CriteriaIn(BaseModel):
    type: str  # top_n/min_score/manual
    value: float | None = None


class OverrideIn(BaseModel):
    application_id: uuid.UUID
    action: str  # advance/reject
    reason: str | None = None


class CutoffRequest(BaseModel):
    criteria: CriteriaIn | None = None
    criteria_by_track: dict[str, CriteriaIn] | None = None
    manual_overrides: list[OverrideIn] = []
    send_notifications: bool = True
    require_complete_reviews: bool = False


class UnlockRequest(BaseModel):
    reason: str | None = None
