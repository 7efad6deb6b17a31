"""Background worker that retries queued notifications."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .config import settings
from .database import async_session_factory
from .services.notification_svc import attempt_delivery, claim_next_notification

logger = logging.getLogger(__name__)


class NotificationWorker:
    """Polls the outbox and re-attempts due notification rows."""

    def __init__(self, session_factory=None) -> None:
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._session_factory = session_factory or async_session_factory

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None or not settings.notification_worker_enabled:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="recruitment-notification-worker")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None

    async def run_once(self) -> bool:
        """Process at most one due row. Returns whether one was found."""
        async with self._session_factory() as db:
            dispatch = await claim_next_notification(db)
            if dispatch is None:
                return False
            await attempt_delivery(db, dispatch)
            return True

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            processed = False
            try:
                processed = await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:  # pragma: no cover
                logger.exception("Notification worker loop failed")

            if not processed:
                await asyncio.sleep(settings.notification_poll_interval_seconds)


notification_worker = NotificationWorker()
