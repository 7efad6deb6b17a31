"""RecruitmentEvent and EventRsvp models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean, Float, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UTCDateTime, UUIDMixin


class RecruitmentEvent(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "recruitment_event"

    cycle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("recruitment_cycle.id", ondelete="CASCADE"), index=True
    )
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, default=None)
    location: Mapped[str | None] = mapped_column(String(300), default=None)
    start_at: Mapped[datetime] = mapped_column(UTCDateTime)
    end_at: Mapped[datetime] = mapped_column(UTCDateTime)
    is_required: Mapped[bool] = mapped_column(Boolean, default=False)
    rsvp_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    check_in_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    capacity: Mapped[int | None] = mapped_column(Integer, default=None)  # None = unlimited
    rsvp_count: Mapped[int] = mapped_column(Integer, default=0)

    rsvps: Mapped[list["EventRsvp"]] = relationship(back_populates="event", passive_deletes=True)

    def __repr__(self) -> str:
        return f"<RecruitmentEvent {self.title}>"


class EventRsvp(Base, UUIDMixin, TimestampMixin):
    """Attendance intent plus, once checked in, attendance proof."""

    __tablename__ = "event_rsvp"
    __table_args__ = (
        UniqueConstraint("event_id", "applicant_email", name="uq_event_rsvp_applicant"),
    )

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("recruitment_event.id", ondelete="CASCADE"), index=True
    )
    cycle_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    applicant_email: Mapped[str] = mapped_column(String(255))
    applicant_name: Mapped[str | None] = mapped_column(String(200), default=None)
    application_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("application.id", ondelete="SET NULL"), default=None
    )
    status: Mapped[str] = mapped_column(String(20), default="active")  # active / cancelled
    rsvp_at: Mapped[datetime] = mapped_column(UTCDateTime)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)
    checked_in_at: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)
    attended_at: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)
    photo_ref: Mapped[str | None] = mapped_column(String(300), default=None)
    latitude: Mapped[float | None] = mapped_column(Float, default=None)
    longitude: Mapped[float | None] = mapped_column(Float, default=None)

    event: Mapped[RecruitmentEvent] = relationship(back_populates="rsvps")

    @property
    def is_checked_in(self) -> bool:
        return self.checked_in_at is not None
