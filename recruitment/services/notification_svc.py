"""Side-effect outbox: record after commit, attempt now, retry later."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..errors import SideEffectWarning
from ..models.notification import NotificationDispatch
from ..notifications import Notifier, get_notifier
from ..timeutil import utcnow

logger = logging.getLogger(__name__)


@dataclass
class OutboundMessage:
    recipient: str
    kind: str
    context: dict = field(default_factory=dict)
    subject_type: str | None = None
    subject_id: uuid.UUID | None = None


async def enqueue_notification(
    db: AsyncSession,
    message: OutboundMessage,
    available_at: datetime | None = None,
    status: str = "pending",
) -> NotificationDispatch:
    """Create and persist an outbox row."""
    dispatch = NotificationDispatch(
        recipient=message.recipient,
        kind=message.kind,
        context=message.context,
        subject_type=message.subject_type,
        subject_id=message.subject_id,
        status=status,
        attempts=1 if status == "running" else 0,
        available_at=available_at or utcnow(),
        max_attempts=settings.notification_max_attempts,
    )
    db.add(dispatch)
    await db.commit()
    await db.refresh(dispatch)
    return dispatch


async def attempt_delivery(
    db: AsyncSession,
    dispatch: NotificationDispatch,
    notifier: Notifier | None = None,
) -> SideEffectWarning | None:
    """Call the notifier for a claimed row; failures schedule a retry."""
    notifier = notifier or get_notifier()
    try:
        await notifier.notify(dispatch.recipient, dispatch.kind, dict(dispatch.context or {}))
    except Exception as exc:
        logger.warning(
            "Notification %s to %s failed (attempt %s): %s",
            dispatch.kind, dispatch.recipient, dispatch.attempts, exc,
        )
        await mark_notification_failed(db, dispatch, str(exc))
        return SideEffectWarning(kind=dispatch.kind, recipient=dispatch.recipient, error=str(exc))
    await mark_notification_sent(db, dispatch)
    return None


async def send_notifications(
    db: AsyncSession,
    messages: list[OutboundMessage],
    notifier: Notifier | None = None,
) -> list[SideEffectWarning]:
    """Record each message in the outbox and attempt it immediately.

    Must only be called after the core state change has committed. Never
    raises; every failure comes back as a warning.
    """
    warnings: list[SideEffectWarning] = []
    for message in messages:
        try:
            dispatch = await enqueue_notification(db, message, status="running")
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.warning("Could not record %s notification for %s: %s", message.kind, message.recipient, exc)
            warnings.append(SideEffectWarning(kind=message.kind, recipient=message.recipient, error=str(exc)))
            continue
        try:
            warning = await attempt_delivery(db, dispatch, notifier)
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.warning(
                "Could not record delivery of %s notification for %s: %s", message.kind, message.recipient, exc
            )
            warning = SideEffectWarning(kind=message.kind, recipient=message.recipient, error=str(exc))
        if warning is not None:
            warnings.append(warning)
    return warnings


async def get_notification(db: AsyncSession, dispatch_id: uuid.UUID) -> NotificationDispatch | None:
    result = await db.execute(select(NotificationDispatch).where(NotificationDispatch.id == dispatch_id))
    return result.scalar_one_or_none()


async def list_notifications(
    db: AsyncSession,
    *,
    recipient: str | None = None,
    kind: str | None = None,
    status: str | None = None,
) -> list[NotificationDispatch]:
    stmt = select(NotificationDispatch)
    if recipient:
        stmt = stmt.where(NotificationDispatch.recipient == recipient)
    if kind:
        stmt = stmt.where(NotificationDispatch.kind == kind)
    if status:
        stmt = stmt.where(NotificationDispatch.status == status)
    stmt = stmt.order_by(NotificationDispatch.created_at.asc(), NotificationDispatch.id.asc())
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def claim_next_notification(db: AsyncSession, now: datetime | None = None) -> NotificationDispatch | None:
    """Claim the next due row.

    Best-effort claim suitable for a single worker process.
    """
    now = now or utcnow()
    stmt = (
        select(NotificationDispatch)
        .where(
            and_(
                NotificationDispatch.status.in_(("pending", "retrying")),
                NotificationDispatch.available_at <= now,
            )
        )
        .order_by(NotificationDispatch.available_at.asc(), NotificationDispatch.created_at.asc())
        .limit(1)
    )
    result = await db.execute(stmt)
    dispatch = result.scalar_one_or_none()
    if not dispatch:
        return None

    dispatch.status = "running"
    dispatch.error_message = None
    dispatch.attempts += 1
    await db.commit()
    await db.refresh(dispatch)
    return dispatch


async def mark_notification_sent(db: AsyncSession, dispatch: NotificationDispatch) -> None:
    dispatch.status = "sent"
    dispatch.sent_at = utcnow()
    dispatch.error_message = None
    await db.commit()


async def mark_notification_failed(db: AsyncSession, dispatch: NotificationDispatch, error: str) -> None:
    """Mark failed or schedule a retry with linear backoff."""
    now = utcnow()
    dispatch.error_message = error

    if dispatch.attempts < dispatch.max_attempts:
        dispatch.status = "retrying"
        backoff = settings.notification_retry_backoff_seconds * dispatch.attempts
        dispatch.available_at = now + timedelta(seconds=backoff)
    else:
        dispatch.status = "failed"

    await db.commit()
