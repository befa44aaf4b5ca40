"""Background worker for the daily overdue reminder run."""

import logging
from datetime import datetime, tzinfo
from typing import Callable, Optional

from apscheduler.triggers.cron import CronTrigger

from ..core.config import settings
from ..core.database import async_session_factory
from ..schemas.borrow_request import ReminderRunSummary
from ..services.reminder_service import ReminderService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class ReminderWorker(BaseWorker):
    """
    Sends overdue reminders on a cron schedule.

    The cron expression is evaluated in the configured timezone, so
    ``0 9 * * *`` means nine in the morning where the lending desk is.
    """

    def __init__(
        self,
        cron_expression: Optional[str] = None,
        timezone: Optional[tzinfo] = None,
        run_on_startup: Optional[bool] = None,
        clock: Optional[Callable[[tzinfo], datetime]] = None,
    ):
        self.cron_expression = cron_expression or settings.reminder_cron_schedule
        self.timezone = timezone or settings.tzinfo
        self.trigger_schedule = CronTrigger.from_crontab(self.cron_expression, timezone=self.timezone)
        self.clock = clock or datetime.now
        super().__init__(
            name="OverdueReminders",
            interval_seconds=24 * 60 * 60,
            run_immediately=settings.run_reminders_on_startup if run_on_startup is None else run_on_startup,
        )

    def next_run_at(self, now: Optional[datetime] = None) -> Optional[datetime]:
        """Next fire time of the cron schedule after ``now``."""
        now = now or self.clock(self.timezone)
        return self.trigger_schedule.get_next_fire_time(None, now)

    def seconds_until_next_run(self, elapsed: float = 0.0) -> float:
        now = self.clock(self.timezone)
        next_run = self.next_run_at(now)
        if next_run is None:
            return self.interval_seconds
        return max(0.0, (next_run - now).total_seconds())

    async def process(self) -> ReminderRunSummary:
        return await self.trigger()

    async def trigger(self) -> ReminderRunSummary:
        """Run the reminder pass now."""
        logger.info(
            "Overdue reminder run triggered",
            extra={
                "worker": self.name,
                "schedule": self.cron_expression,
                "timezone": str(self.timezone),
            }
        )
        async with async_session_factory() as db:
            return await ReminderService(db).run()
