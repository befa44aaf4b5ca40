"""Background worker for flagging overdue items."""

import logging

from ..core.database import async_session_factory
from ..services.overdue_service import OverdueService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class OverdueWorker(BaseWorker):
    """Background worker that flags approved items past their return date."""

    def __init__(self, interval_seconds: float = 60):
        super().__init__(name="OverdueDetection", interval_seconds=interval_seconds)

    async def process(self) -> int:
        async with async_session_factory() as db:
            updated = await OverdueService(db).mark_overdue_items()

        if updated:
            logger.info(
                f"Flagged {updated} requests overdue",
                extra={"updated_count": updated, "worker": self.name}
            )
        return updated
