"""Borrow request Pydantic schemas."""

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import Field

from .common import ApiModel


class LineItemInput(ApiModel):
    """One requested equipment entry."""

    equipment: str = Field(..., description="Equipment ID")
    quantity: int = Field(..., ge=1, description="Units requested")
    return_date: date = Field(..., description="Planned return date")


class CreateBorrowRequest(ApiModel):
    """Request schema for submitting a borrow request."""

    items: List[LineItemInput] = Field(default_factory=list, description="Requested equipment")
    borrow_date: date = Field(..., description="Pick-up date for every item")
    reason: str = Field(..., min_length=10, max_length=500, description="Why the equipment is needed")


class UpdateStatusRequest(ApiModel):
    """Staff decision on a request."""

    status: Literal["approved", "rejected", "returned"]
    rejection_reason: Optional[str] = Field(None, max_length=500)
    approval_note: Optional[str] = Field(None, max_length=500)
    comment: Optional[str] = Field(None, max_length=500)


class LineItem(ApiModel):
    """Line item response schema."""

    id: str
    equipment: Optional[str] = Field(None, description="Equipment ID, null once the equipment is deleted")
    equipment_name: str
    equipment_category: str
    quantity: int
    return_date: date
    status: str
    actual_return_date: Optional[datetime] = None
    last_reminder_on: Optional[date] = None


class StatusHistoryEntry(ApiModel):
    """Audit entry response schema."""

    status: str
    changed_by: str
    changed_at: datetime
    comment: Optional[str] = None


class BorrowRequest(ApiModel):
    """Borrow request response schema."""

    id: str
    request_id: str
    user_id: str
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    borrow_date: date
    reason: str
    status: str
    expires_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approval_note: Optional[str] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    expired_reason: Optional[str] = None
    returned_at: Optional[datetime] = None
    items: List[LineItem]
    status_history: List[StatusHistoryEntry]
    created_at: datetime
    updated_at: datetime


class ReminderRunSummary(ApiModel):
    """Result of a reminder batch."""

    sent: int = 0
    skipped: int = 0
    failed: int = 0
