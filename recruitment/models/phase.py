"""Phase configuration, reviews, rankings and cutoff decisions."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, Float, ForeignKey, Integer, JSON, String, Text, UniqueConstraint, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UTCDateTime, UUIDMixin


class PhaseConfig(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "phase_config"
    __table_args__ = (
        UniqueConstraint("cycle_id", "phase", name="uq_phase_config_cycle_phase"),
    )

    cycle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("recruitment_cycle.id", ondelete="CASCADE"), index=True
    )
    phase: Mapped[str] = mapped_column(String(30))  # application / interview_round1 / interview_round2
    status: Mapped[str] = mapped_column(String(20), default="open")  # open / finalized
    scoring_categories: Mapped[list] = mapped_column(JSON, default=list)
    min_reviewers_required: Mapped[int] = mapped_column(Integer, default=2)
    use_zscore_normalization: Mapped[bool] = mapped_column(Boolean, default=False)
    referral_weights: Mapped[dict | None] = mapped_column(JSON, default=None)  # {"advocate": 1.0, "oppose": -1.0}
    finalized_at: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)
    finalized_by: Mapped[str | None] = mapped_column(String(255), default=None)
    cutoff_applied_at: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)
    cutoff_applied_by: Mapped[str | None] = mapped_column(String(255), default=None)
    cutoff_criteria: Mapped[dict | None] = mapped_column(JSON, default=None)

    @property
    def is_finalized(self) -> bool:
        return self.status == "finalized"

    def __repr__(self) -> str:
        return f"<PhaseConfig {self.phase} {self.status}>"


class PhaseReview(Base, UUIDMixin, TimestampMixin):
    """One reviewer's scores for one applicant in one phase."""

    __tablename__ = "phase_review"
    __table_args__ = (
        UniqueConstraint(
            "cycle_id", "phase", "application_id", "reviewer_email", name="uq_phase_review_reviewer"
        ),
    )

    cycle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("recruitment_cycle.id", ondelete="CASCADE"), index=True
    )
    phase: Mapped[str] = mapped_column(String(30), index=True)
    application_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("application.id", ondelete="CASCADE"), index=True
    )
    reviewer_email: Mapped[str] = mapped_column(String(255))
    reviewer_name: Mapped[str | None] = mapped_column(String(200), default=None)
    scores: Mapped[dict] = mapped_column(JSON, default=dict)  # category key -> number
    notes: Mapped[str | None] = mapped_column(Text, default=None)
    recommendation: Mapped[str | None] = mapped_column(String(20), default=None)  # advance / hold / reject
    referral_signal: Mapped[str] = mapped_column(String(20), default="neutral")  # referral / neutral / deferral
    completed_at: Mapped[datetime] = mapped_column(UTCDateTime)


class RankingGeneration(Base, UUIDMixin, TimestampMixin):
    """Version stamp for one wholesale ranking regeneration."""

    __tablename__ = "ranking_generation"
    __table_args__ = (
        UniqueConstraint("cycle_id", "phase", "version", name="uq_ranking_generation_version"),
    )

    cycle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("recruitment_cycle.id", ondelete="CASCADE"), index=True
    )
    phase: Mapped[str] = mapped_column(String(30))
    version: Mapped[int] = mapped_column(Integer)
    generated_at: Mapped[datetime] = mapped_column(UTCDateTime)
    generated_by: Mapped[str | None] = mapped_column(String(255), default=None)
    entry_count: Mapped[int] = mapped_column(Integer, default=0)

    entries: Mapped[list["RankedApplicant"]] = relationship(
        back_populates="generation",
        cascade="all, delete-orphan",
        order_by="RankedApplicant.rank",
    )


class RankedApplicant(Base, UUIDMixin):
    __tablename__ = "ranked_applicant"
    __table_args__ = (
        UniqueConstraint("cycle_id", "phase", "application_id", name="uq_ranked_applicant"),
    )

    generation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ranking_generation.id", ondelete="CASCADE"), index=True
    )
    cycle_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    phase: Mapped[str] = mapped_column(String(30))
    application_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("application.id", ondelete="CASCADE")
    )
    applicant_email: Mapped[str] = mapped_column(String(255))
    track: Mapped[str | None] = mapped_column(String(20), default=None)
    rank: Mapped[int] = mapped_column(Integer)
    track_rank: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), default="scored")  # scored / unscored
    aggregate_score: Mapped[float | None] = mapped_column(Float, default=None)
    review_count: Mapped[int] = mapped_column(Integer, default=0)
    referral_count: Mapped[int] = mapped_column(Integer, default=0)
    deferral_count: Mapped[int] = mapped_column(Integer, default=0)
    category_scores: Mapped[dict] = mapped_column(JSON, default=dict)
    tie_break_key: Mapped[str] = mapped_column(String(100))

    generation: Mapped[RankingGeneration] = relationship(back_populates="entries")

    def __repr__(self) -> str:
        return f"<RankedApplicant #{self.rank} {self.applicant_email} {self.aggregate_score}>"


class PhaseDecision(Base, UUIDMixin, TimestampMixin):
    """Audit row for one applicant's cutoff outcome."""

    __tablename__ = "phase_decision"

    cycle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("recruitment_cycle.id", ondelete="CASCADE"), index=True
    )
    phase: Mapped[str] = mapped_column(String(30))
    application_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("application.id", ondelete="CASCADE"), index=True
    )
    track: Mapped[str | None] = mapped_column(String(20), default=None)
    action: Mapped[str] = mapped_column(String(20))  # advance / reject / manual_advance / manual_reject
    reason: Mapped[str | None] = mapped_column(Text, default=None)
    previous_stage: Mapped[str] = mapped_column(String(30))
    new_stage: Mapped[str] = mapped_column(String(30))
    rank: Mapped[int | None] = mapped_column(Integer, default=None)
    aggregate_score: Mapped[float | None] = mapped_column(Float, default=None)
    performed_by: Mapped[str | None] = mapped_column(String(255), default=None)
    performed_at: Mapped[datetime] = mapped_column(UTCDateTime)
