"""Outbound notifications: equipment availability fan-out and overdue reminders.

Delivery itself (email transport, templates, subscriber lists) lives outside
this service. The default notifier logs each message the way a demo-mode
mailer would, which keeps every caller exercised end to end.
"""

import asyncio
import logging
from datetime import date
from typing import Any, Coroutine, Iterable, Optional
from uuid import UUID

logger = logging.getLogger(__name__)

# Keeps fire-and-forget tasks referenced until they finish
_background_tasks: set[asyncio.Task] = set()


def _log_task_result(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Background task failed",
            exc_info=exc,
            extra={"task": task.get_name()},
        )


def fire_and_forget(coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
    """Schedule ``coro`` without awaiting it; failures are logged, never raised."""
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_log_task_result)
    return task


class NotificationService:
    """Sends user-facing notifications."""

    def __init__(self, sender: str = "noreply@equipment-lending.local"):
        self.sender = sender

    async def notify_equipment_available(self, equipment_ids: Iterable[Optional[UUID]]) -> int:
        """
        Tell waiting users that equipment has units free again.

        Args:
            equipment_ids: Equipment whose units were released; duplicates and
                ``None`` entries are ignored

        Returns:
            Number of distinct equipment records announced
        """
        unique = sorted({str(eid) for eid in equipment_ids if eid is not None})
        for equipment_id in unique:
            logger.info(
                "Equipment availability notification queued",
                extra={"equipment_id": equipment_id, "sender": self.sender},
            )
        return len(unique)

    async def send_overdue_reminder(
        self,
        email: str,
        name: Optional[str],
        equipment_name: str,
        quantity: int,
        due_date: date,
        days_overdue: int,
        level: str,
    ) -> None:
        """Deliver one overdue reminder."""
        logger.info(
            "Overdue reminder sent",
            extra={
                "to": email,
                "recipient_name": name,
                "equipment_name": equipment_name,
                "quantity": quantity,
                "due_date": due_date.isoformat(),
                "days_overdue": days_overdue,
                "level": level,
                "sender": self.sender,
            },
        )


def announce_released(equipment_ids: Iterable[Optional[UUID]], notifier: Optional[NotificationService] = None) -> None:
    """Fan out availability notifications in the background."""
    ids = [eid for eid in equipment_ids if eid is not None]
    if not ids:
        return
    notifier = notifier or NotificationService()
    fire_and_forget(notifier.notify_equipment_available(ids), name="notify-equipment-available")
