"""Detection of approved items kept past their return date."""

import logging
from datetime import date
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.observability import metrics_collector
from ..core.timeutils import local_today, utcnow
from ..models.borrow_request import (
    BorrowRequest,
    LineItemStatus,
    RequestLineItem,
    RequestStatus,
    StaleLineItem,
)
from .reservation_service import ReservationLedger

logger = logging.getLogger(__name__)

OVERDUE_COMMENT = "Auto-flagged overdue items past return date"


class OverdueService:
    """Flags approved line items whose return date has passed."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = ReservationLedger(db)

    async def mark_overdue_items(self, today: Optional[date] = None) -> int:
        """
        Move late approved items, and their requests, to ``overdue``.

        Inventory is unchanged: the units are still out. Items already
        overdue are not matched again, so repeated runs are no-ops.

        Args:
            today: Calendar date to compare return dates against

        Returns:
            Number of requests updated
        """
        today = today or local_today()

        late_item = (
            (RequestLineItem.status == LineItemStatus.APPROVED.value)
            & (RequestLineItem.return_date < today)
        )
        stmt = (
            select(BorrowRequest.id, BorrowRequest.request_id)
            .where(
                BorrowRequest.status == RequestStatus.APPROVED.value,
                BorrowRequest.items.any(late_item),
            )
        )
        candidates = (await self.db.execute(stmt)).all()

        updated = 0
        for request_uuid, request_id in candidates:
            try:
                if await self._flag_request(request_uuid, today):
                    updated += 1
            except StaleLineItem:
                logger.info(
                    "Request changed while flagging overdue; skipped",
                    extra={"request_id": request_id}
                )
                await self.db.rollback()
            except Exception as e:
                logger.error(
                    "Failed to flag overdue request",
                    exc_info=True,
                    extra={"request_id": request_id, "error": str(e)}
                )
                await self.db.rollback()

        if updated:
            logger.info("Overdue check completed", extra={"updated": updated, "today": today.isoformat()})
        return updated

    async def _flag_request(self, request_uuid: UUID, today: date) -> bool:
        stmt = (
            select(BorrowRequest)
            .where(
                BorrowRequest.id == request_uuid,
                BorrowRequest.status == RequestStatus.APPROVED.value,
            )
            .execution_options(populate_existing=True)
        )
        borrow_request = (await self.db.execute(stmt)).scalar_one_or_none()
        if borrow_request is None:
            return False

        late = [
            item for item in borrow_request.items_in(LineItemStatus.APPROVED)
            if item.return_date < today
        ]
        if not late:
            return False

        for item in late:
            await self.ledger.transition(item, LineItemStatus.OVERDUE)

        borrow_request.refresh_status()
        borrow_request.record_history(
            borrow_request.status,
            changed_by=borrow_request.user_id,
            comment=OVERDUE_COMMENT,
            changed_at=utcnow(),
        )
        await self.db.commit()

        metrics_collector.record_items_overdue(len(late))
        logger.info(
            "Request flagged overdue",
            extra={
                "request_id": borrow_request.request_id,
                "overdue_items": len(late),
            }
        )
        return True
