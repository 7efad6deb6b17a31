"""RecruitmentSlot and SlotBooking models."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from sqlalchemy import (
    CheckConstraint, ForeignKey, Index, Integer, String, Text, Uuid, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UTCDateTime, UUIDMixin


class RecruitmentSlot(Base, UUIDMixin, TimestampMixin):
    """A bookable time window (coffee chat or interview round)."""

    __tablename__ = "recruitment_slot"
    __table_args__ = (
        Index("ix_recruitment_slot_cycle_kind_time", "cycle_id", "kind", "start_time"),
        CheckConstraint("max_bookings >= 1", name="ck_slot_max_bookings"),
        CheckConstraint(
            "booked_count >= 0 AND booked_count <= max_bookings", name="ck_slot_booked_count"
        ),
    )

    cycle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("recruitment_cycle.id", ondelete="CASCADE"), index=True
    )
    kind: Mapped[str] = mapped_column(String(30))  # coffee_chat / interview_round1 / interview_round2
    start_time: Mapped[datetime] = mapped_column(UTCDateTime)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=30)
    host_name: Mapped[str] = mapped_column(String(200))
    host_email: Mapped[str | None] = mapped_column(String(255), default=None)
    location: Mapped[str | None] = mapped_column(String(300), default=None)
    meeting_url: Mapped[str | None] = mapped_column(String(500), default=None)
    for_track: Mapped[str | None] = mapped_column(String(20), default=None)
    max_bookings: Mapped[int] = mapped_column(Integer, default=1)
    booked_count: Mapped[int] = mapped_column(Integer, default=0)
    notes: Mapped[str | None] = mapped_column(Text, default=None)
    # Set instead of deleting once the slot has booking history.
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)

    bookings: Mapped[list["SlotBooking"]] = relationship(back_populates="slot", passive_deletes=True)

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)

    @property
    def remaining_capacity(self) -> int:
        return max(self.max_bookings - self.booked_count, 0)

    def __repr__(self) -> str:
        return f"<RecruitmentSlot {self.kind} {self.start_time} {self.booked_count}/{self.max_bookings}>"


class SlotBooking(Base, UUIDMixin, TimestampMixin):
    """An applicant's claim on a slot. Cancelled rows are kept for history."""

    __tablename__ = "slot_booking"
    __table_args__ = (
        # One confirmed booking per applicant per slot kind, enforced at write time.
        Index(
            "uq_slot_booking_confirmed_kind",
            "cycle_id",
            "applicant_email",
            "slot_kind",
            unique=True,
            sqlite_where=text("status = 'confirmed'"),
            postgresql_where=text("status = 'confirmed'"),
        ),
        Index("ix_slot_booking_slot_status", "slot_id", "status"),
    )

    cycle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("recruitment_cycle.id", ondelete="CASCADE"), index=True
    )
    slot_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("recruitment_slot.id", ondelete="CASCADE")
    )
    application_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("application.id", ondelete="SET NULL"), default=None
    )
    applicant_email: Mapped[str] = mapped_column(String(255))
    applicant_name: Mapped[str | None] = mapped_column(String(200), default=None)
    slot_kind: Mapped[str] = mapped_column(String(30))
    status: Mapped[str] = mapped_column(String(20), default="confirmed")  # confirmed / cancelled
    booked_at: Mapped[datetime] = mapped_column(UTCDateTime)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)
    cancelled_by: Mapped[str | None] = mapped_column(String(255), default=None)

    slot: Mapped[RecruitmentSlot] = relationship(back_populates="bookings")

    def __repr__(self) -> str:
        return f"<SlotBooking {self.applicant_email} {self.slot_kind} {self.status}>"
