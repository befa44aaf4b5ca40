"""Background worker for expiring unapproved requests."""

import logging

from ..core.database import async_session_factory
from ..core.timeutils import utcnow
from ..services.expiration_service import ExpirationService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class ExpirationWorker(BaseWorker):
    """
    Background worker that expires pending requests past ``expires_at``.

    Runs once at startup and then periodically, returning the units held
    by each expired request to inventory.
    """

    def __init__(self, interval_seconds: float = 60):
        super().__init__(name="RequestExpiration", interval_seconds=interval_seconds)

    async def process(self) -> dict:
        """Expire stale pending requests."""
        now = utcnow()
        async with async_session_factory() as db:
            result = await ExpirationService(db).expire_pending_requests(now)

        if result["expired"] > 0:
            logger.info(
                f"Expired {result['expired']} requests",
                extra={
                    "expired_count": result["expired"],
                    "candidates": result["total"],
                    "timestamp": now.isoformat(),
                    "worker": self.name,
                }
            )
        return result
