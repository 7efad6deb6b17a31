"""Stage, phase and slot-kind definitions for the recruitment pipeline."""

from __future__ import annotations

from .errors import StateConflictError, ValidationError

TRACKS: tuple[str, ...] = ("business", "engineering")

STAGES: tuple[str, ...] = (
    "not_started",
    "draft",
    "submitted",
    "under_review",
    "interview_round1",
    "interview_round2",
    "accepted",
    "rejected",
    "withdrawn",
)

TERMINAL_STAGES: frozenset[str] = frozenset({"accepted", "rejected", "withdrawn"})
EDITABLE_STAGES: frozenset[str] = frozenset({"not_started", "draft"})

# Legal forward moves. ``withdrawn`` is added for every non-terminal stage.
FORWARD_TRANSITIONS: dict[str, frozenset[str]] = {
    "not_started": frozenset({"draft"}),
    "draft": frozenset({"submitted"}),
    "submitted": frozenset({"under_review", "interview_round1", "rejected"}),
    "under_review": frozenset({"interview_round1", "rejected"}),
    "interview_round1": frozenset({"interview_round2", "rejected"}),
    "interview_round2": frozenset({"accepted", "rejected"}),
    "accepted": frozenset(),
    "rejected": frozenset(),
    "withdrawn": frozenset(),
}

PHASES: tuple[str, ...] = ("application", "interview_round1", "interview_round2")

PHASE_ELIGIBLE_STAGES: dict[str, tuple[str, ...]] = {
    "application": ("submitted", "under_review"),
    "interview_round1": ("interview_round1",),
    "interview_round2": ("interview_round2",),
}

PHASE_OUTCOMES: dict[str, dict[str, str]] = {
    "application": {"advance": "interview_round1", "reject": "rejected"},
    "interview_round1": {"advance": "interview_round2", "reject": "rejected"},
    "interview_round2": {"advance": "accepted", "reject": "rejected"},
}

SLOT_KINDS: tuple[str, ...] = ("coffee_chat", "interview_round1", "interview_round2")

# Slot kinds gated on the applicant's current stage; anything else is open.
SLOT_KIND_REQUIRED_STAGE: dict[str, str] = {
    "interview_round1": "interview_round1",
    "interview_round2": "interview_round2",
}

DEFAULT_SCORING_CATEGORIES: dict[str, list[dict]] = {
    "application": [
        {"key": "overall", "label": "Overall Impression", "min_score": 1, "max_score": 10, "weight": 0.3},
        {"key": "experience", "label": "Relevant Experience", "min_score": 1, "max_score": 10, "weight": 0.25},
        {"key": "motivation", "label": "Motivation & Fit", "min_score": 1, "max_score": 10, "weight": 0.25},
        {"key": "communication", "label": "Written Communication", "min_score": 1, "max_score": 10, "weight": 0.2},
    ],
    "interview_round1": [
        {"key": "overall", "label": "Overall Impression", "min_score": 1, "max_score": 10, "weight": 0.25},
        {"key": "technical", "label": "Technical Knowledge", "min_score": 1, "max_score": 10, "weight": 0.3},
        {"key": "problem_solving", "label": "Problem Solving", "min_score": 1, "max_score": 10, "weight": 0.25},
        {"key": "communication", "label": "Communication", "min_score": 1, "max_score": 10, "weight": 0.2},
    ],
    "interview_round2": [
        {"key": "overall", "label": "Overall Impression", "min_score": 1, "max_score": 10, "weight": 0.2},
        {"key": "cultural_fit", "label": "Cultural Fit", "min_score": 1, "max_score": 10, "weight": 0.25},
        {"key": "leadership", "label": "Leadership Potential", "min_score": 1, "max_score": 10, "weight": 0.2},
        {"key": "teamwork", "label": "Teamwork & Collaboration", "min_score": 1, "max_score": 10, "weight": 0.2},
        {"key": "motivation", "label": "Motivation & Commitment", "min_score": 1, "max_score": 10, "weight": 0.15},
    ],
}


def validate_track(track: str) -> str:
    if track not in TRACKS:
        raise ValidationError("invalid_track", f"Unknown track '{track}'", {"allowed": list(TRACKS)})
    return track


def validate_phase(phase: str) -> str:
    if phase not in PHASES:
        raise ValidationError("invalid_phase", f"Unknown phase '{phase}'", {"allowed": list(PHASES)})
    return phase


def validate_slot_kind(kind: str) -> str:
    if kind not in SLOT_KINDS:
        raise ValidationError("invalid_slot_kind", f"Unknown slot kind '{kind}'", {"allowed": list(SLOT_KINDS)})
    return kind


def can_transition(current: str, new: str) -> bool:
    if new == "withdrawn":
        return current not in TERMINAL_STAGES
    return new in FORWARD_TRANSITIONS.get(current, frozenset())


def check_transition(current: str, new: str) -> None:
    if new not in STAGES:
        raise ValidationError("invalid_stage", f"Unknown stage '{new}'")
    if not can_transition(current, new):
        raise StateConflictError(
            "invalid_transition",
            f"Cannot move application from '{current}' to '{new}'",
            {"from": current, "to": new},
        )
