"""Expiration of pending requests that staff never acted on."""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.observability import metrics_collector
from ..core.timeutils import utcnow
from ..models.borrow_request import BorrowRequest, LineItemStatus, RequestStatus, StaleLineItem
from .notification_service import NotificationService, announce_released
from .reservation_service import ReservationLedger

logger = logging.getLogger(__name__)

EXPIRED_REASON = "Request was not approved within 24 hours. Please submit a new request if needed."
EXPIRED_COMMENT = "Request automatically expired after 24 hours without admin action"


class ExpirationService:
    """Service that expires stale pending requests and releases their units."""

    def __init__(self, db: AsyncSession, notifier: Optional[NotificationService] = None):
        self.db = db
        self.ledger = ReservationLedger(db)
        self.notifier = notifier or NotificationService()

    async def _load_pending(self, request_uuid: UUID) -> Optional[BorrowRequest]:
        stmt = (
            select(BorrowRequest)
            .where(
                BorrowRequest.id == request_uuid,
                BorrowRequest.status == RequestStatus.PENDING.value,
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def expire_pending_requests(self, now: Optional[datetime] = None) -> dict:
        """
        Expire every pending request whose ``expires_at`` has passed.

        Each request is committed on its own; a failure is logged and the
        batch moves on, leaving that request for the next run.

        Args:
            now: Reference time (naive UTC); defaults to the current time

        Returns:
            dict with ``expired`` and ``total`` counts
        """
        now = now or utcnow()

        stmt = (
            select(BorrowRequest.id, BorrowRequest.request_id)
            .where(
                BorrowRequest.status == RequestStatus.PENDING.value,
                BorrowRequest.expires_at.is_not(None),
                BorrowRequest.expires_at <= now,
            )
            .order_by(BorrowRequest.expires_at)
        )
        candidates = (await self.db.execute(stmt)).all()

        if not candidates:
            logger.debug("No expired requests found", extra={"now": now.isoformat()})
            return {"expired": 0, "total": 0}

        expired = 0
        released_ids: set[UUID] = set()

        for request_uuid, request_id in candidates:
            try:
                borrow_request = await self._load_pending(request_uuid)
                if borrow_request is None:
                    # Acted on by staff since the scan
                    continue

                freed: list[UUID] = []
                for item in borrow_request.items_in(LineItemStatus.PENDING):
                    if await self.ledger.release(item, LineItemStatus.EXPIRED, reason="expired"):
                        freed.append(item.equipment_id)

                borrow_request.refresh_status()
                borrow_request.expired_reason = EXPIRED_REASON
                borrow_request.expires_at = None
                borrow_request.record_history(
                    RequestStatus.EXPIRED,
                    changed_by=borrow_request.user_id,
                    comment=EXPIRED_COMMENT,
                    changed_at=now,
                )

                await self.db.commit()

                expired += 1
                released_ids.update(freed)
                metrics_collector.record_request_expired()

                logger.info(
                    "Pending request expired",
                    extra={
                        "request_id": request_id,
                        "released_equipment": [str(eid) for eid in freed],
                    }
                )

            except StaleLineItem:
                logger.info(
                    "Request changed while expiring; skipped",
                    extra={"request_id": request_id}
                )
                await self.db.rollback()
                continue

            except Exception as e:
                logger.error(
                    "Failed to expire request",
                    exc_info=True,
                    extra={"request_id": request_id, "error": str(e)}
                )
                await self.db.rollback()
                continue

        logger.info(
            "Expiration batch completed",
            extra={
                "expired": expired,
                "total": len(candidates),
                "expiration_hours": settings.request_expiration_hours,
            }
        )

        announce_released(released_ids, self.notifier)
        return {"expired": expired, "total": len(candidates)}
