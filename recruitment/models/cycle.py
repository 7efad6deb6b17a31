"""RecruitmentCycle model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UTCDateTime, UUIDMixin


class RecruitmentCycle(Base, UUIDMixin, TimestampMixin):
    """One recruitment season. At most one row has ``is_active`` set."""

    __tablename__ = "recruitment_cycle"

    name: Mapped[str] = mapped_column(String(200))
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    portal_open_at: Mapped[datetime] = mapped_column(UTCDateTime)
    application_due_at: Mapped[datetime] = mapped_column(UTCDateTime)
    portal_close_at: Mapped[datetime] = mapped_column(UTCDateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    def __repr__(self) -> str:
        return f"<RecruitmentCycle {self.slug} active={self.is_active}>"
