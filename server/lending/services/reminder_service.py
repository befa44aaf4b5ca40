"""Overdue reminder escalation."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions import ValidationError
from ..core.observability import metrics_collector
from ..core.timeutils import local_today
from ..models.borrow_request import BorrowRequest, LineItemStatus, RequestLineItem, RequestStatus
from ..schemas.borrow_request import ReminderRunSummary
from .notification_service import NotificationService

logger = logging.getLogger(__name__)

OUTSTANDING_ITEM_VALUES = (LineItemStatus.APPROVED.value, LineItemStatus.OVERDUE.value)
OUTSTANDING_REQUEST_VALUES = (RequestStatus.APPROVED.value, RequestStatus.OVERDUE.value)


def should_send_reminder(days_overdue: int) -> bool:
    """Cadence: the due date, one day late, three, seven, then every seven days."""
    if days_overdue in (0, 1, 3, 7):
        return True
    return days_overdue > 7 and days_overdue % 7 == 0


def reminder_level(days_overdue: int) -> str:
    """Tone of the reminder for a given lateness."""
    if days_overdue <= 0:
        return "friendly"
    if days_overdue == 1:
        return "polite"
    if days_overdue == 3:
        return "urgent"
    return "final"


@dataclass
class _PendingReminder:
    item_id: UUID
    request_id: str
    email: Optional[str]
    name: Optional[str]
    equipment_name: str
    quantity: int
    due_date: date
    days_overdue: int
    last_reminder_on: Optional[date]


class ReminderService:
    """Sends overdue reminders on the escalation cadence."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[NotificationService] = None,
        delay_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.db = db
        self.notifier = notifier or NotificationService()
        self.delay_seconds = settings.reminder_send_delay_seconds if delay_seconds is None else delay_seconds
        self.sleep = sleep

    async def _collect(self, today: date) -> list[_PendingReminder]:
        stmt = (
            select(BorrowRequest)
            .where(
                BorrowRequest.status.in_(OUTSTANDING_REQUEST_VALUES),
                BorrowRequest.items.any(
                    RequestLineItem.status.in_(OUTSTANDING_ITEM_VALUES)
                    & (RequestLineItem.return_date <= today)
                ),
            )
            .order_by(BorrowRequest.request_id)
            .execution_options(populate_existing=True)
        )
        requests = (await self.db.execute(stmt)).scalars()

        # Plain snapshots, so a rollback mid-run cannot expire what we iterate
        pending = []
        for borrow_request in requests:
            for item in borrow_request.items_in(LineItemStatus.APPROVED, LineItemStatus.OVERDUE):
                if item.return_date > today:
                    continue
                pending.append(_PendingReminder(
                    item_id=item.id,
                    request_id=borrow_request.request_id,
                    email=borrow_request.user_email,
                    name=borrow_request.user_name,
                    equipment_name=item.equipment_name or "Unknown Item",
                    quantity=item.quantity,
                    due_date=item.return_date,
                    days_overdue=(today - item.return_date).days,
                    last_reminder_on=item.last_reminder_on,
                ))
        return pending

    async def _deliver(self, reminder: _PendingReminder, today: date) -> None:
        level = reminder_level(reminder.days_overdue)
        await self.notifier.send_overdue_reminder(
            email=reminder.email,
            name=reminder.name,
            equipment_name=reminder.equipment_name,
            quantity=reminder.quantity,
            due_date=reminder.due_date,
            days_overdue=reminder.days_overdue,
            level=level,
        )
        await self.db.execute(
            update(RequestLineItem)
            .where(RequestLineItem.id == reminder.item_id)
            .values(last_reminder_on=today)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        metrics_collector.record_reminder_sent(level)

    async def run(self, today: Optional[date] = None) -> ReminderRunSummary:
        """
        Send every reminder due today.

        An item is reminded at most once per calendar day; the marker is kept
        on the line item so restarts do not resend.

        Args:
            today: Calendar date in the configured timezone

        Returns:
            ReminderRunSummary with sent, skipped and failed counts
        """
        today = today or local_today()
        sent = skipped = failed = 0

        for reminder in await self._collect(today):
            if not should_send_reminder(reminder.days_overdue):
                skipped += 1
                continue
            if reminder.last_reminder_on == today:
                skipped += 1
                continue
            if not reminder.email:
                logger.warning(
                    "Skipping reminder - owner has no email",
                    extra={"request_id": reminder.request_id}
                )
                skipped += 1
                continue

            try:
                await self._deliver(reminder, today)
            except Exception as e:
                failed += 1
                metrics_collector.record_reminder_failed()
                logger.error(
                    "Failed to send overdue reminder",
                    exc_info=True,
                    extra={
                        "request_id": reminder.request_id,
                        "to": reminder.email,
                        "error": str(e),
                    }
                )
                await self.db.rollback()
                continue

            sent += 1
            if self.delay_seconds > 0:
                await self.sleep(self.delay_seconds)

        logger.info(
            "Reminder run completed",
            extra={"sent": sent, "skipped": skipped, "failed": failed, "today": today.isoformat()}
        )
        return ReminderRunSummary(sent=sent, skipped=skipped, failed=failed)

    async def send_for_request(self, borrow_request: BorrowRequest, today: Optional[date] = None) -> int:
        """
        Remind the owner of one request about all its late items now,
        whatever the cadence says.

        Returns:
            Number of overdue items reminded about

        Raises:
            ValidationError: Owner has no email, or nothing is overdue
        """
        today = today or local_today()

        if not borrow_request.user_email:
            raise ValidationError(detail="User email not found")

        late = [
            item for item in borrow_request.items_in(LineItemStatus.APPROVED, LineItemStatus.OVERDUE)
            if item.return_date < today
        ]
        if not late:
            raise ValidationError(detail="No overdue items found")

        reminders = [
            _PendingReminder(
                item_id=item.id,
                request_id=borrow_request.request_id,
                email=borrow_request.user_email,
                name=borrow_request.user_name,
                equipment_name=item.equipment_name or "Unknown Item",
                quantity=item.quantity,
                due_date=item.return_date,
                days_overdue=(today - item.return_date).days,
                last_reminder_on=item.last_reminder_on,
            )
            for item in late
        ]
        for reminder in reminders:
            await self._deliver(reminder, today)

        logger.info(
            "Manual overdue reminder sent",
            extra={
                "request_id": borrow_request.request_id,
                "to": borrow_request.user_email,
                "overdue_items": len(reminders),
            }
        )
        return len(reminders)
