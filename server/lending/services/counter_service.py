"""Named sequence counters for human-readable identifiers."""

import logging

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import is_postgresql
from ..models.counter import Counter

logger = logging.getLogger(__name__)

REQUEST_ID_SEQUENCE = "requestId"


def format_request_id(value: int) -> str:
    """Render a sequence value as ``REQ-000042``."""
    return f"REQ-{value:06d}"


class CounterService:
    """Service for atomic sequence increments."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def next_value(self, name: str = REQUEST_ID_SEQUENCE) -> int:
        """
        Increment and return the named sequence.

        The increment is a single INSERT ... ON CONFLICT DO UPDATE inside the
        caller's transaction. The first caller creates the row and later ones
        bump it; the row stays locked until commit, so concurrent callers
        serialise on it and none of them fails on a fresh database.

        Args:
            name: Sequence name

        Returns:
            The new sequence value
        """
        insert = pg_insert if is_postgresql(self.db) else sqlite_insert
        stmt = (
            insert(Counter)
            .values(name=name, seq=1)
            .on_conflict_do_update(
                index_elements=[Counter.name],
                set_={"seq": Counter.seq + 1},
            )
            .returning(Counter.seq)
        )
        value = await self.db.scalar(stmt)

        if value == 1:
            logger.info("Counter initialised", extra={"counter": name})
        return int(value)

    async def next_request_id(self) -> str:
        """Allocate the next ``REQ-NNNNNN`` identifier."""
        return format_request_id(await self.next_value(REQUEST_ID_SEQUENCE))
