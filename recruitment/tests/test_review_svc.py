"""Tests for phase configuration, reviews and completeness."""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from recruitment.errors import StateConflictError, ValidationError
from recruitment.services import ranking_svc, review_svc

SINGLE_CATEGORY = [{"key": "overall", "label": "Overall", "min_score": 1, "max_score": 10, "weight": 1}]


@pytest.mark.asyncio
async def test_default_phase_configs_exist(db: AsyncSession, cycle):
    configs = await review_svc.list_phase_configs(db, cycle.id)
    assert [c.phase for c in configs] == ["application", "interview_round1", "interview_round2"]
    assert all(c.status == "open" for c in configs)
    assert configs[0].min_reviewers_required == 2
    assert {c["key"] for c in configs[0].scoring_categories} >= {"overall", "motivation"}


@pytest.mark.asyncio
async def test_two_reviewer_completeness_and_aggregate(db: AsyncSession, cycle, make_submitted):
    await review_svc.update_phase_config(
        db, cycle.id, "application", scoring_categories=SINGLE_CATEGORY, min_reviewers_required=2
    )
    applicant = await make_submitted(cycle, "x@example.org")

    await review_svc.record_review(db, cycle.id, "application", applicant.id, "a@example.org", {"overall": 8})
    completeness = await review_svc.get_completeness(db, cycle.id, "application")
    assert completeness.total_applicants == 1
    assert completeness.applicants_fully_reviewed == 0
    assert completeness.applicants_with_reviews == 1
    assert not completeness.is_complete

    await review_svc.record_review(db, cycle.id, "application", applicant.id, "b@example.org", {"overall": 6})
    completeness = await review_svc.get_completeness(db, cycle.id, "application")
    assert completeness.applicants_fully_reviewed == 1
    assert completeness.is_complete
    assert completeness.fraction == 1.0
    assert completeness.per_reviewer == {"a@example.org": 1, "b@example.org": 1}

    generation = await ranking_svc.generate_rankings(db, cycle.id, "application")
    assert len(generation.entries) == 1
    assert generation.entries[0].application_id == applicant.id
    assert generation.entries[0].aggregate_score == 7.0


@pytest.mark.asyncio
async def test_first_review_moves_submitted_to_under_review(db: AsyncSession, cycle, make_submitted):
    applicant = await make_submitted(cycle, "ur@example.org")
    assert applicant.stage == "submitted"
    await review_svc.record_review(db, cycle.id, "application", applicant.id, "a@example.org", {"overall": 5})
    assert applicant.stage == "under_review"


@pytest.mark.asyncio
async def test_resubmitting_review_replaces_it(db: AsyncSession, cycle, make_submitted):
    applicant = await make_submitted(cycle, "re@example.org")
    first = await review_svc.record_review(
        db, cycle.id, "application", applicant.id, "A@Example.org", {"overall": 4}, notes="meh"
    )
    second = await review_svc.record_review(
        db, cycle.id, "application", applicant.id, "a@example.org", {"overall": 9},
        recommendation="advance", referral_signal="referral",
    )
    assert first.id == second.id
    reviews = await review_svc.list_reviews(db, cycle.id, "application", applicant.id)
    assert len(reviews) == 1
    assert reviews[0].scores == {"overall": 9.0}
    assert reviews[0].notes is None

    summary = await review_svc.get_review_summary(db, applicant.id, "application")
    assert summary["review_count"] == 1
    assert summary["recommendations"] == {"advance": 1}
    assert summary["referral_signals"] == {"referral": 1}


@pytest.mark.asyncio
async def test_review_input_validation(db: AsyncSession, cycle, make_submitted):
    applicant = await make_submitted(cycle, "v@example.org")
    cases = [
        ({"scores": {"overall": 11}}, "invalid_scores"),
        ({"scores": {"overall": "nine"}}, "invalid_scores"),
        ({"scores": {}}, "invalid_scores"),
        ({"scores": {"overall": 5}, "recommendation": "maybe"}, "invalid_recommendation"),
        ({"scores": {"overall": 5}, "referral_signal": "love"}, "invalid_referral_signal"),
    ]
    for kwargs, reason in cases:
        with pytest.raises(ValidationError) as exc:
            await review_svc.record_review(db, cycle.id, "application", applicant.id, "r@example.org", **kwargs)
        assert exc.value.reason == reason


@pytest.mark.asyncio
async def test_review_requires_phase_stage(db: AsyncSession, cycle, make_submitted):
    applicant = await make_submitted(cycle, "early@example.org")
    with pytest.raises(StateConflictError) as exc:
        await review_svc.record_review(
            db, cycle.id, "interview_round1", applicant.id, "r@example.org", {"technical": 5}
        )
    assert exc.value.reason == "wrong_stage"


@pytest.mark.asyncio
async def test_finalized_phase_rejects_reviews_and_config(db: AsyncSession, cycle, make_submitted):
    applicant = await make_submitted(cycle, "lock@example.org")
    config = await review_svc.get_phase_config(db, cycle.id, "application")
    config.status = "finalized"
    await db.commit()

    with pytest.raises(StateConflictError) as exc:
        await review_svc.record_review(db, cycle.id, "application", applicant.id, "r@example.org", {"overall": 5})
    assert exc.value.reason == "phase_locked"

    with pytest.raises(StateConflictError) as exc:
        await review_svc.update_phase_config(db, cycle.id, "application", min_reviewers_required=3)
    assert exc.value.reason == "phase_finalized"

    reopened = await review_svc.unlock_phase(db, cycle.id, "application", actor="admin@example.org", reason="typo")
    assert reopened.status == "open"
    review = await review_svc.record_review(
        db, cycle.id, "application", applicant.id, "r@example.org", {"overall": 5}
    )
    assert review.scores == {"overall": 5.0}


@pytest.mark.asyncio
async def test_config_validation(db: AsyncSession, cycle):
    with pytest.raises(ValidationError) as exc:
        await review_svc.update_phase_config(db, cycle.id, "application", min_reviewers_required=0)
    assert exc.value.reason == "invalid_min_reviewers"

    with pytest.raises(ValidationError) as exc:
        await review_svc.update_phase_config(db, cycle.id, "application", referral_weights={"boost": 1})
    assert exc.value.reason == "invalid_referral_weights"

    with pytest.raises(ValidationError) as exc:
        await review_svc.update_phase_config(
            db, cycle.id, "application", scoring_categories=[{"key": "a", "min_score": 5, "max_score": 1}]
        )
    assert exc.value.reason == "invalid_category"

    with pytest.raises(ValidationError) as exc:
        await review_svc.get_phase_config(db, cycle.id, "final_round")
    assert exc.value.reason == "invalid_phase"
