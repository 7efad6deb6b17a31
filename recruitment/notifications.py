"""Outbound notification collaborators.

The core only ever calls ``notify(recipient, kind, context)`` after its own
transaction has committed. Delivery lives behind the ``Notifier`` protocol
so deployments can swap the logging default for a webhook relay.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from .config import settings

logger = logging.getLogger(__name__)

NOTIFICATION_KINDS: tuple[str, ...] = (
    "phase_advanced",
    "phase_rejected",
    "booking_confirmed",
    "booking_cancelled",
    "calendar_invite",
    "calendar_cancel",
    "rsvp_confirmed",
)


class NotificationError(Exception):
    """Raised by a notifier when delivery fails."""


class Notifier(Protocol):
    async def notify(self, recipient: str, kind: str, context: dict) -> None: ...


class LoggingNotifier:
    """Default notifier: records the message in the application log."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict]] = []

    async def notify(self, recipient: str, kind: str, context: dict) -> None:
        self.sent.append((recipient, kind, context))
        logger.info("Notification %s -> %s", kind, recipient)


class WebhookNotifier:
    """POSTs ``{"recipient", "kind", "context"}`` to a relay endpoint."""

    def __init__(self, url: str, timeout_seconds: float = 10.0, client: httpx.AsyncClient | None = None):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def notify(self, recipient: str, kind: str, context: dict) -> None:
        body = {"recipient": recipient, "kind": kind, "context": context}
        try:
            if self._client is not None:
                resp = await self._client.post(self.url, json=body)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    resp = await client.post(self.url, json=body)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(f"{kind} delivery to {recipient} failed: {e}") from e


_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        if settings.notify_webhook_url:
            _notifier = WebhookNotifier(settings.notify_webhook_url, settings.notify_timeout_seconds)
        else:
            _notifier = LoggingNotifier()
    return _notifier


def set_notifier(notifier: Notifier | None) -> None:
    global _notifier
    _notifier = notifier
