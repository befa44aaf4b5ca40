"""Inventory reservation primitives.

Every change to ``Equipment.available`` made on behalf of a request goes
through ``ReservationLedger``: one guarded decrement when a line item is
created and at most one clamped increment when it leaves a reserving state.
Line item status changes go through the ledger too; each is a conditional
UPDATE on the status the caller loaded, so two transactions acting on the
same item cannot both succeed.
"""

import logging
from datetime import date
from typing import Optional
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from ..core.observability import metrics_collector
from ..models.borrow_request import (
    RESERVING_VALUES,
    BorrowRequest,
    LineItemStatus,
    RequestLineItem,
    StaleLineItem,
)
from ..models.equipment import Equipment

logger = logging.getLogger(__name__)


class ReservationLedger:
    """Reserve and release equipment units inside the caller's transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_equipment(self, equipment_id: UUID) -> Optional[Equipment]:
        """Read equipment bypassing any stale copy in the identity map."""
        stmt = (
            select(Equipment)
            .where(Equipment.id == equipment_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def booked_in_window(self, equipment_id: UUID, start: date, end: date) -> int:
        """
        Sum units held by reserving line items whose borrow window overlaps
        ``[start, end]`` for the given equipment.
        """
        stmt = (
            select(func.coalesce(func.sum(RequestLineItem.quantity), 0))
            .join(BorrowRequest, RequestLineItem.request_id == BorrowRequest.id)
            .where(
                RequestLineItem.equipment_id == equipment_id,
                RequestLineItem.status.in_(RESERVING_VALUES),
                BorrowRequest.borrow_date <= end,
                RequestLineItem.return_date >= start,
            )
        )
        return int(await self.db.scalar(stmt) or 0)

    async def reserve(self, equipment_id: UUID, quantity: int) -> bool:
        """
        Take ``quantity`` units if and only if that many are free.

        The check and the write are one conditional UPDATE, so two callers
        can never both take the last unit.

        Returns:
            True when the units were taken
        """
        stmt = (
            update(Equipment)
            .where(Equipment.id == equipment_id, Equipment.available >= quantity)
            .values(available=Equipment.available - quantity)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        reserved = result.rowcount == 1

        if not reserved:
            logger.warning(
                "Guarded reservation lost",
                extra={"equipment_id": str(equipment_id), "quantity": quantity},
            )
        return reserved

    async def release(self, item: RequestLineItem, target: LineItemStatus, reason: str) -> int:
        """
        Move a reserving line item to ``target`` and give its units back.

        A line item that no longer reserves anything is left untouched, which
        makes a second release of the same item a no-op. The units are only
        given back when the guarded status change in ``transition`` wins.

        Args:
            item: Line item to release
            target: Terminal status to record (rejected, returned, expired)
            reason: Metric label for the release path

        Returns:
            Units returned to inventory (0 when nothing was held)

        Raises:
            StaleLineItem: Another transaction changed the item first
        """
        if not item.is_reserving:
            return 0

        await self.transition(item, target)

        if item.equipment_id is None:
            # Equipment deleted; nothing to give back
            return 0

        restored = Equipment.available + item.quantity
        stmt = (
            update(Equipment)
            .where(Equipment.id == item.equipment_id)
            .values(
                available=case(
                    (restored > Equipment.quantity, Equipment.quantity),
                    else_=restored,
                )
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)
        metrics_collector.record_units_released(reason, item.quantity)

        logger.debug(
            "Reservation released",
            extra={
                "line_item_id": str(item.id),
                "equipment_id": str(item.equipment_id),
                "quantity": item.quantity,
                "status": target.value,
            },
        )
        return item.quantity

    async def transition(self, item: RequestLineItem, target: LineItemStatus) -> None:
        """
        Move ``item`` to ``target`` if its stored status is still the one loaded.

        Raises:
            InvalidTransition: The state machine has no such edge
            StaleLineItem: The stored status changed since ``item`` was read
        """
        current = item.check_transition(target)

        stmt = (
            update(RequestLineItem)
            .where(
                RequestLineItem.id == item.id,
                RequestLineItem.status == current.value,
            )
            .values(status=target.value)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount != 1:
            logger.warning(
                "Line item changed by another transaction",
                extra={
                    "line_item_id": str(item.id),
                    "expected_status": current.value,
                    "target_status": target.value,
                },
            )
            raise StaleLineItem(item.id, current.value)

        # The row already holds the new status
        set_committed_value(item, "status", target.value)
