"""Inventory reconciliation: recompute ``available`` from active line items."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import async_session_factory
from ..core.observability import metrics_collector
from ..models.borrow_request import RESERVING_VALUES, RequestLineItem
from ..models.equipment import Equipment
from ..schemas.equipment import ReconcileSummary
from .notification_service import fire_and_forget

logger = logging.getLogger(__name__)


class ConsistencyService:
    """Detects and heals drift between stored and actual availability."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _reserved_by_equipment(self, equipment_ids: Optional[list[UUID]]) -> dict[UUID, int]:
        stmt = (
            select(RequestLineItem.equipment_id, func.sum(RequestLineItem.quantity))
            .where(
                RequestLineItem.equipment_id.is_not(None),
                RequestLineItem.status.in_(RESERVING_VALUES),
            )
            .group_by(RequestLineItem.equipment_id)
        )
        if equipment_ids is not None:
            stmt = stmt.where(RequestLineItem.equipment_id.in_(equipment_ids))

        result = await self.db.execute(stmt)
        return {equipment_id: int(total or 0) for equipment_id, total in result.all()}

    async def check_and_fix(self, equipment_ids: Optional[Iterable[UUID]] = None) -> ReconcileSummary:
        """
        Recompute ``available`` for the given equipment (or all of it).

        ``available`` must equal ``quantity`` minus the units held by pending,
        approved and overdue line items. Any record that disagrees is
        overwritten. The method never raises; failures are logged and reported
        through ``ReconcileSummary.error``.

        Args:
            equipment_ids: Restrict the pass to these records; ``None`` scans all

        Returns:
            ReconcileSummary with ``checked`` and ``fixed`` counts
        """
        ids = None if equipment_ids is None else list({eid for eid in equipment_ids if eid is not None})
        if ids == []:
            return ReconcileSummary(checked=0, fixed=0)

        try:
            stmt = select(Equipment).execution_options(populate_existing=True)
            if ids is not None:
                stmt = stmt.where(Equipment.id.in_(ids))
            equipment = list((await self.db.execute(stmt)).scalars())

            reserved = await self._reserved_by_equipment(ids)

            fixed = 0
            for item in equipment:
                held = reserved.get(item.id, 0)
                correct = item.quantity - held
                if correct < 0:
                    logger.warning(
                        "Active reservations exceed quantity; clamping available to zero",
                        extra={
                            "equipment_id": str(item.id),
                            "quantity": item.quantity,
                            "reserved": held,
                        },
                    )
                    correct = 0

                if item.available != correct:
                    logger.info(
                        "Inventory drift corrected",
                        extra={
                            "equipment_id": str(item.id),
                            "equipment_name": item.name,
                            "stored_available": item.available,
                            "correct_available": correct,
                        },
                    )
                    item.available = correct
                    fixed += 1

            await self.db.commit()

            if fixed:
                metrics_collector.record_drift_fixed(fixed)

            logger.info(
                "Inventory consistency check completed",
                extra={"checked": len(equipment), "fixed": fixed},
            )
            return ReconcileSummary(checked=len(equipment), fixed=fixed)

        except Exception as e:
            logger.error("Inventory consistency check failed", exc_info=True)
            try:
                await self.db.rollback()
            except Exception:
                logger.error("Rollback after failed consistency check failed", exc_info=True)
            return ReconcileSummary(checked=0, fixed=0, error=str(e))


async def run_full_check() -> ReconcileSummary:
    """Reconcile every equipment record using a fresh session."""
    async with async_session_factory() as db:
        return await ConsistencyService(db).check_and_fix()


class ConsistencyGate:
    """
    Throttle for opportunistic reconciliation before equipment reads.

    At most one background pass starts per ``interval_seconds``; callers
    never wait for it.
    """

    def __init__(
        self,
        runner: Callable[[], Awaitable[ReconcileSummary]] = run_full_check,
        interval_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.runner = runner
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.last_checked: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    def due(self) -> bool:
        if self.last_checked is None:
            return True
        return self.clock() - self.last_checked >= self.interval_seconds

    def maybe_schedule(self) -> Optional[asyncio.Task]:
        """Start a background pass when the window has elapsed."""
        if not self.due():
            return None
        if self._task is not None and not self._task.done():
            return None

        self.last_checked = self.clock()
        self._task = fire_and_forget(self.runner(), name="inventory-consistency-check")
        return self._task

    def reset(self) -> None:
        self.last_checked = None
        self._task = None
