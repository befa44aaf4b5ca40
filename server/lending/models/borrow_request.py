"""Borrow request aggregate: the request, its line items and its status history."""

from datetime import date, datetime
from enum import Enum
from typing import Iterable, Optional
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base
from ..core.timeutils import utcnow


class LineItemStatus(str, Enum):
    """Line item status enumeration."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"
    EXPIRED = "expired"
    OVERDUE = "overdue"


class RequestStatus(str, Enum):
    """Request status enumeration."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"
    PARTIAL = "partial"
    EXPIRED = "expired"
    OVERDUE = "overdue"


# Line items in these states hold units out of inventory
RESERVING_STATUSES = frozenset({
    LineItemStatus.PENDING,
    LineItemStatus.APPROVED,
    LineItemStatus.OVERDUE,
})
RESERVING_VALUES = sorted(status.value for status in RESERVING_STATUSES)

# Legal item transitions; anything not listed is rejected
ITEM_TRANSITIONS = {
    LineItemStatus.PENDING: {LineItemStatus.APPROVED, LineItemStatus.REJECTED, LineItemStatus.EXPIRED},
    LineItemStatus.APPROVED: {LineItemStatus.REJECTED, LineItemStatus.RETURNED, LineItemStatus.OVERDUE},
    LineItemStatus.OVERDUE: {LineItemStatus.RETURNED},
}


class InvalidTransition(Exception):
    """Raised when a line item is moved along an edge the state machine lacks."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot change item status from {current} to {target}")
        self.current = current
        self.target = target


class StaleLineItem(Exception):
    """Raised when a line item's stored status no longer matches the loaded copy."""

    def __init__(self, line_item_id: UUID, expected: str):
        super().__init__(f"Line item {line_item_id} is no longer {expected}")
        self.line_item_id = line_item_id
        self.expected = expected


def derive_request_status(item_statuses: Iterable[str]) -> RequestStatus:
    """
    Summarise line item statuses into a request status.

    Outstanding states win over terminal ones: any overdue item makes the
    request overdue, then approved, then pending. When every item is terminal
    the request takes that status if they agree and ``partial`` otherwise.
    """
    statuses = {LineItemStatus(s) for s in item_statuses}
    if not statuses:
        return RequestStatus.PENDING

    for outstanding in (LineItemStatus.OVERDUE, LineItemStatus.APPROVED, LineItemStatus.PENDING):
        if outstanding in statuses:
            return RequestStatus(outstanding.value)

    if len(statuses) == 1:
        return RequestStatus(statuses.pop().value)
    return RequestStatus.PARTIAL


class RequestLineItem(Base):
    """One equipment entry of a borrow request with its own status."""

    __tablename__ = "request_line_items"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    request_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("borrow_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Cleared if the equipment is later deleted; the snapshot fields survive
    equipment_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("equipment.id", ondelete="SET NULL"),
        nullable=True
    )
    equipment_name: Mapped[str] = mapped_column(String(100), nullable=False)
    equipment_category: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    return_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=LineItemStatus.PENDING.value
    )
    actual_return_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Calendar day (configured timezone) of the last overdue reminder
    last_reminder_on: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_line_item_quantity_positive"),
        Index("ix_request_line_items_equipment_status", "equipment_id", "status"),
    )

    request: Mapped["BorrowRequest"] = relationship("BorrowRequest", back_populates="items")

    @property
    def is_reserving(self) -> bool:
        return LineItemStatus(self.status) in RESERVING_STATUSES

    def check_transition(self, target: LineItemStatus) -> LineItemStatus:
        """Return the current status if ``target`` is a legal next state."""
        current = LineItemStatus(self.status)
        if target not in ITEM_TRANSITIONS.get(current, set()):
            raise InvalidTransition(current.value, target.value)
        return current

    def __repr__(self) -> str:
        return (
            f"<RequestLineItem(id={self.id}, equipment_id={self.equipment_id}, "
            f"quantity={self.quantity}, status={self.status})>"
        )


class StatusHistoryEntry(Base):
    """Immutable audit entry appended on every request status change."""

    __tablename__ = "request_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("borrow_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    comment: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    request: Mapped["BorrowRequest"] = relationship("BorrowRequest", back_populates="history")

    def __repr__(self) -> str:
        return (
            f"<StatusHistoryEntry(request_id={self.request_id}, status='{self.status}', "
            f"changed_by='{self.changed_by}', changed_at={self.changed_at})>"
        )


class BorrowRequest(Base):
    """A user's request to borrow one or more equipment items."""

    __tablename__ = "borrow_requests"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Human-readable sequential identifier, REQ-000001
    request_id: Mapped[str] = mapped_column(String(16), nullable=False, unique=True, index=True)

    # Owner snapshot taken from the caller's token at creation
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    borrow_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)

    # Point-in-time snapshot of derive_request_status(items)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RequestStatus.PENDING.value,
        index=True
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)

    approved_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    approval_note: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    rejected_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    expired_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    returned_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("length(reason) >= 10", name="ck_borrow_request_reason_min_length"),
    )

    # Relationships
    items: Mapped[list[RequestLineItem]] = relationship(
        RequestLineItem,
        back_populates="request",
        cascade="all, delete-orphan",
        order_by=RequestLineItem.position,
        lazy="selectin",
    )
    history: Mapped[list[StatusHistoryEntry]] = relationship(
        StatusHistoryEntry,
        back_populates="request",
        cascade="all, delete-orphan",
        order_by=[StatusHistoryEntry.changed_at, StatusHistoryEntry.id],
        lazy="selectin",
    )

    def items_in(self, *statuses: LineItemStatus) -> list[RequestLineItem]:
        """Return line items currently in any of ``statuses``."""
        wanted = {LineItemStatus(s) for s in statuses}
        return [item for item in self.items if LineItemStatus(item.status) in wanted]

    def reserving_items(self) -> list[RequestLineItem]:
        """Return line items still holding inventory."""
        return [item for item in self.items if item.is_reserving]

    def refresh_status(self) -> RequestStatus:
        """Recompute the stored status snapshot from the line items."""
        derived = derive_request_status(item.status for item in self.items)
        self.status = derived.value
        return derived

    def record_history(
        self,
        status: str,
        changed_by: str,
        comment: Optional[str] = None,
        changed_at: Optional[datetime] = None,
    ) -> StatusHistoryEntry:
        """Append an audit entry. Entries are never edited or removed."""
        # Never step backwards, even if the wall clock does
        at = changed_at or utcnow()
        if self.history and self.history[-1].changed_at > at:
            at = self.history[-1].changed_at

        entry = StatusHistoryEntry(
            status=str(getattr(status, "value", status)),
            changed_by=changed_by,
            changed_at=at,
            comment=comment,
        )
        self.history.append(entry)
        return entry

    def __repr__(self) -> str:
        return (
            f"<BorrowRequest(id={self.id}, request_id='{self.request_id}', "
            f"user_id='{self.user_id}', status={self.status})>"
        )
