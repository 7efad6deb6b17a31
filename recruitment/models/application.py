"""Application and question-set models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, JSON, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UTCDateTime, UUIDMixin


class Application(Base, UUIDMixin, TimestampMixin):
    """An applicant's record within one cycle. Never deleted, only withdrawn."""

    __tablename__ = "application"
    __table_args__ = (
        UniqueConstraint("cycle_id", "applicant_email", name="uq_application_cycle_applicant"),
    )

    cycle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("recruitment_cycle.id", ondelete="CASCADE"), index=True
    )
    applicant_email: Mapped[str] = mapped_column(String(255), index=True)
    applicant_name: Mapped[str | None] = mapped_column(String(200), default=None)
    track: Mapped[str | None] = mapped_column(String(20), default=None)  # business / engineering
    stage: Mapped[str] = mapped_column(String(30), default="draft", index=True)
    answers: Mapped[dict] = mapped_column(JSON, default=dict)
    files: Mapped[dict] = mapped_column(JSON, default=dict)  # key -> storage reference
    admin_notes: Mapped[str | None] = mapped_column(Text, default=None)
    submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)
    last_saved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)
    withdrawn_at: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)

    def __repr__(self) -> str:
        return f"<Application {self.applicant_email} {self.stage}>"


class ApplicationQuestionSet(Base, UUIDMixin, TimestampMixin):
    """Ordered application fields for a cycle; ``track`` None applies to every track."""

    __tablename__ = "application_question_set"
    __table_args__ = (
        UniqueConstraint("cycle_id", "track", name="uq_question_set_cycle_track"),
    )

    cycle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("recruitment_cycle.id", ondelete="CASCADE"), index=True
    )
    track: Mapped[str | None] = mapped_column(String(20), default=None)
    fields: Mapped[list] = mapped_column(JSON, default=list)
