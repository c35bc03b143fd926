from __future__ import annotations

import asyncio
import logging
from typing import Any

from refundwatch.providers.notifier.base import Notifier
from refundwatch.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Fire-and-forget delivery of client notifications.

    Each ``dispatch`` call schedules one background task; in-flight deliveries are
    capped by a semaphore. Delivery failures are logged and counted, never raised,
    so a failing notifier cannot undo or delay alarm bookkeeping.
    """

    def __init__(self, notifier: Notifier | None, *, max_concurrency: int = 8) -> None:
        self._notifier = notifier
        self._sem = asyncio.Semaphore(max(1, max_concurrency))
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, user_id: str, template_key: str, variables: dict[str, Any]) -> None:
        if self._notifier is None:
            return
        task = asyncio.create_task(self._deliver(user_id, template_key, dict(variables)))
        # Hold a strong reference until completion so the task is not collected mid-flight.
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, user_id: str, template_key: str, variables: dict[str, Any]) -> None:
        async with self._sem:
            try:
                await self._notifier.notify(user_id, template_key, variables)
            except Exception:  # noqa: BLE001 - notification delivery is best effort.
                increment_counter("alarm_notifications_failed")
                logger.warning(
                    "alarm_notification_failed user_id=%s template=%s",
                    user_id,
                    template_key,
                    exc_info=True,
                )
                return
            increment_counter("alarm_notifications_sent")

    async def drain(self) -> None:
        # Wait for in-flight deliveries; used on shutdown and in tests.
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
