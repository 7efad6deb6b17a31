"""Durable outbox for notifications and calendar side effects."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Integer, JSON, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UTCDateTime, UUIDMixin


class NotificationDispatch(Base, UUIDMixin, TimestampMixin):
    """Queue item for one outbound side effect, recorded after the core commit."""

    __tablename__ = "notification_dispatch"

    recipient: Mapped[str] = mapped_column(String(255))
    kind: Mapped[str] = mapped_column(String(50))  # phase_advanced / booking_confirmed / calendar_invite ...
    context: Mapped[dict | None] = mapped_column(JSON, default=None)
    subject_type: Mapped[str | None] = mapped_column(String(50), default=None)
    subject_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, default=None, index=True)
    status: Mapped[str] = mapped_column(
        String(20), default="pending"
    )  # pending/running/sent/failed/retrying
    available_at: Mapped[datetime] = mapped_column(
        UTCDateTime, server_default=func.now(), index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=5)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, default=None)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)

    def __repr__(self) -> str:
        return f"<NotificationDispatch {self.kind} {self.status} attempts={self.attempts}>"
