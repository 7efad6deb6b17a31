"""Tests for the notification outbox, notifiers and retry worker."""

from __future__ import annotations

import json

import httpx
import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from recruitment.config import settings
from recruitment.notifications import NotificationError, WebhookNotifier, set_notifier
from recruitment.services import notification_svc
from recruitment.services.notification_svc import OutboundMessage
from recruitment.worker import NotificationWorker


class FlakyNotifier:
    """Fails the first ``failures`` calls, then records deliveries."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0
        self.delivered: list[tuple[str, str]] = []

    async def notify(self, recipient, kind, context):
        self.calls += 1
        if self.calls <= self.failures:
            raise NotificationError("relay unavailable")
        self.delivered.append((recipient, kind))


@pytest.mark.asyncio
async def test_successful_send_is_recorded(db: AsyncSession, notifier):
    warnings = await notification_svc.send_notifications(db, [
        OutboundMessage("a@example.org", "booking_confirmed", {"slot_id": "s1"}, "booking"),
    ])
    assert warnings == []
    assert notifier.sent == [("a@example.org", "booking_confirmed", {"slot_id": "s1"})]

    rows = await notification_svc.list_notifications(db, recipient="a@example.org")
    assert len(rows) == 1
    assert rows[0].status == "sent"
    assert rows[0].attempts == 1
    assert rows[0].sent_at is not None


@pytest.mark.asyncio
async def test_failure_becomes_warning_and_retry(db: AsyncSession):
    flaky = FlakyNotifier(failures=1)
    warnings = await notification_svc.send_notifications(
        db, [OutboundMessage("b@example.org", "calendar_invite", {})], notifier=flaky
    )
    assert len(warnings) == 1
    assert warnings[0].kind == "calendar_invite"
    assert warnings[0].to_dict()["error"] == "relay unavailable"

    rows = await notification_svc.list_notifications(db, status="retrying")
    assert len(rows) == 1
    assert rows[0].error_message == "relay unavailable"
    assert rows[0].attempts == 1


@pytest.mark.asyncio
async def test_outbox_write_failure_is_a_warning(db: AsyncSession, notifier, monkeypatch):
    async def locked(db, dispatch):
        raise OperationalError("UPDATE notification_dispatch", {}, Exception("database is locked"))

    monkeypatch.setattr(notification_svc, "mark_notification_sent", locked)
    warnings = await notification_svc.send_notifications(db, [
        OutboundMessage("c@example.org", "booking_confirmed", {}),
        OutboundMessage("c@example.org", "calendar_invite", {}),
    ])

    assert [w.kind for w in warnings] == ["booking_confirmed", "calendar_invite"]
    assert all("database is locked" in w.error for w in warnings)
    assert [kind for _, kind, _ in notifier.sent] == ["booking_confirmed", "calendar_invite"]


@pytest.mark.asyncio
async def test_retries_stop_at_max_attempts(db: AsyncSession, monkeypatch):
    monkeypatch.setattr(settings, "notification_max_attempts", 2)
    monkeypatch.setattr(settings, "notification_retry_backoff_seconds", 0)
    broken = FlakyNotifier(failures=10)

    await notification_svc.send_notifications(db, [OutboundMessage("c@example.org", "phase_rejected")], notifier=broken)
    dispatch = await notification_svc.claim_next_notification(db)
    assert dispatch is not None
    assert dispatch.attempts == 2
    await notification_svc.attempt_delivery(db, dispatch, broken)

    assert dispatch.status == "failed"
    assert await notification_svc.claim_next_notification(db) is None


@pytest.mark.asyncio
async def test_worker_run_once_redelivers(engine, db: AsyncSession, monkeypatch):
    monkeypatch.setattr(settings, "notification_retry_backoff_seconds", 0)
    flaky = FlakyNotifier(failures=1)
    await notification_svc.send_notifications(db, [OutboundMessage("d@example.org", "rsvp_confirmed")], notifier=flaky)

    set_notifier(flaky)
    worker = NotificationWorker(session_factory=async_sessionmaker(engine, expire_on_commit=False))
    assert await worker.run_once() is True
    assert flaky.delivered == [("d@example.org", "rsvp_confirmed")]
    assert await worker.run_once() is False

    rows = await notification_svc.list_notifications(db, recipient="d@example.org", status="sent")
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_webhook_notifier_posts_json():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(202)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        webhook = WebhookNotifier("https://relay.example.org/notify", client=client)
        await webhook.notify("e@example.org", "booking_cancelled", {"booking_id": "b1"})
    assert seen == [{"recipient": "e@example.org", "kind": "booking_cancelled", "context": {"booking_id": "b1"}}]


@pytest.mark.asyncio
async def test_webhook_notifier_raises_on_http_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(503))
    async with httpx.AsyncClient(transport=transport) as client:
        webhook = WebhookNotifier("https://relay.example.org/notify", client=client)
        with pytest.raises(NotificationError):
            await webhook.notify("e@example.org", "calendar_invite", {})
