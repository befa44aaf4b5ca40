"""Borrow request lifecycle: creation, staff decisions, listing and deletion."""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.dependencies import ROLE_ADMIN, ROLE_STAFF, ROLE_STUDENT
from ..core.exceptions import ConflictError, NotFoundError, ValidationError
from ..core.observability import metrics_collector
from ..core.timeutils import local_today, utcnow
from ..models.borrow_request import (
    BorrowRequest,
    LineItemStatus,
    RequestLineItem,
    RequestStatus,
    StaleLineItem,
)
from ..schemas.borrow_request import CreateBorrowRequest, UpdateStatusRequest
from .consistency_service import ConsistencyService
from .counter_service import CounterService
from .equipment_service import parse_equipment_id
from .notification_service import NotificationService, announce_released
from .reservation_service import ReservationLedger

logger = logging.getLogger(__name__)

REQUEST_ID_PATTERN = re.compile(r"^REQ-\d{6,}$")

STAFF_VISIBLE_STATUSES = (
    RequestStatus.PENDING.value,
    RequestStatus.APPROVED.value,
    RequestStatus.RETURNED.value,
    RequestStatus.OVERDUE.value,
)

# Equipment is still out; deleting would lose the audit of who has it
UNDELETABLE_STATUSES = (RequestStatus.APPROVED.value, RequestStatus.OVERDUE.value)

DEFAULT_REJECTION_REASON = "No reason provided"


class IllegalTransitionError(ConflictError):
    """Exception when a staff decision does not apply to the request's state."""

    def __init__(self, request_id: str, current: str, target: str):
        super().__init__(
            detail=f"Cannot change request {request_id} from {current} to {target}",
            conflicting_resource={
                "request_id": request_id,
                "current_status": current,
                "requested_status": target,
            }
        )
        self.problem_details.update({
            "code": "ILLEGAL_TRANSITION",
            "retryable": False
        })


class ConcurrentUpdateError(ConflictError):
    """Exception when another transaction changed the request's items first."""

    def __init__(self, request_id: str):
        super().__init__(
            detail=f"Request {request_id} was changed by another action; reload and try again",
            conflicting_resource={"request_id": request_id},
        )
        self.problem_details.update({
            "code": "CONCURRENT_UPDATE",
            "retryable": True
        })


@dataclass
class _AcceptedItem:
    equipment_id: UUID
    name: str
    category: str
    quantity: int
    return_date: date


@dataclass
class CreateResult:
    request: BorrowRequest
    warnings: list[str] = field(default_factory=list)


class RequestService:
    """Service for borrow request operations."""

    def __init__(self, db: AsyncSession, notifier: Optional[NotificationService] = None):
        self.db = db
        self.ledger = ReservationLedger(db)
        self.counters = CounterService(db)
        self.notifier = notifier or NotificationService()

    async def create_request(self, request: CreateBorrowRequest, user: dict) -> CreateResult:
        """
        Create a borrow request and soft-reserve its equipment.

        Items are validated in order. An item that fails validation becomes a
        warning while the rest of the request goes ahead; if every item fails
        the whole request is refused.

        Args:
            request: Borrow request payload
            user: Authenticated caller

        Returns:
            CreateResult with the stored request and any per-item warnings

        Raises:
            ValidationError: No items, a past borrow date, or no valid item
        """
        if not request.items:
            raise ValidationError(detail="Please add at least one item to your request")

        today = local_today()
        if request.borrow_date < today:
            raise ValidationError(detail="Borrow date cannot be in the past")

        accepted: list[_AcceptedItem] = []
        warnings: list[str] = []
        # Units already accepted earlier in this same request, per equipment
        tentative: dict[UUID, int] = {}

        for entry in request.items:
            equipment_id = parse_equipment_id(entry.equipment)
            equipment = await self.ledger.get_equipment(equipment_id) if equipment_id else None
            if equipment is None:
                warnings.append("Equipment not found")
                continue

            if entry.return_date <= request.borrow_date:
                warnings.append(f"{equipment.name}: Return date must be after borrow date")
                continue

            held_here = tentative.get(equipment.id, 0)

            booked = await self.ledger.booked_in_window(
                equipment.id, request.borrow_date, entry.return_date
            )
            free_for_dates = equipment.quantity - booked - held_here
            if free_for_dates < entry.quantity:
                warnings.append(
                    f"{equipment.name}: Only {max(free_for_dates, 0)} unit(s) available for selected dates"
                )
                continue

            free_now = equipment.available - held_here
            if free_now < entry.quantity:
                warnings.append(f"{equipment.name}: Only {max(free_now, 0)} unit(s) available")
                continue

            tentative[equipment.id] = held_here + entry.quantity
            accepted.append(_AcceptedItem(
                equipment_id=equipment.id,
                name=equipment.name,
                category=equipment.category,
                quantity=entry.quantity,
                return_date=entry.return_date,
            ))

        if not accepted:
            logger.warning(
                "Borrow request refused - no valid items",
                extra={"user_id": user["user_id"], "errors": warnings}
            )
            raise ValidationError(detail="Unable to process request", errors=warnings)

        # Soft reservation; a lost guard turns the item into a warning
        reserved: list[_AcceptedItem] = []
        for item in accepted:
            if await self.ledger.reserve(item.equipment_id, item.quantity):
                reserved.append(item)
            else:
                current = await self.ledger.get_equipment(item.equipment_id)
                left = current.available if current else 0
                warnings.append(f"{item.name}: Only {left} unit(s) available")

        if not reserved:
            await self.db.rollback()
            raise ValidationError(detail="Unable to process request", errors=warnings)

        now = utcnow()
        borrow_request = BorrowRequest(
            request_id=await self.counters.next_request_id(),
            user_id=user["user_id"],
            user_name=user.get("username"),
            user_email=user.get("email"),
            borrow_date=request.borrow_date,
            reason=request.reason,
            status=RequestStatus.PENDING.value,
            expires_at=now + timedelta(hours=settings.request_expiration_hours),
        )
        borrow_request.items = [
            RequestLineItem(
                position=position,
                equipment_id=item.equipment_id,
                equipment_name=item.name,
                equipment_category=item.category,
                quantity=item.quantity,
                return_date=item.return_date,
                status=LineItemStatus.PENDING.value,
            )
            for position, item in enumerate(reserved)
        ]
        borrow_request.record_history(
            RequestStatus.PENDING,
            changed_by=user["user_id"],
            comment="Request submitted",
            changed_at=now,
        )

        self.db.add(borrow_request)
        await self.db.commit()

        metrics_collector.record_request_created(sum(item.quantity for item in reserved))

        logger.info(
            "Borrow request created",
            extra={
                "request_id": borrow_request.request_id,
                "user_id": user["user_id"],
                "items": len(reserved),
                "warnings": len(warnings),
                "expires_at": borrow_request.expires_at.isoformat(),
            }
        )

        return CreateResult(request=await self.reload(borrow_request.id), warnings=warnings)

    async def reload(self, request_uuid: UUID) -> BorrowRequest:
        """Re-read a request with its items and history."""
        stmt = (
            select(BorrowRequest)
            .where(BorrowRequest.id == request_uuid)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def get_request(self, raw_id: str) -> Optional[BorrowRequest]:
        """Find a request by UUID or by its ``REQ-NNNNNN`` identifier."""
        if REQUEST_ID_PATTERN.match(raw_id or ""):
            condition = BorrowRequest.request_id == raw_id
        else:
            try:
                condition = BorrowRequest.id == UUID(raw_id)
            except (TypeError, ValueError):
                return None

        stmt = select(BorrowRequest).where(condition).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_request_or_raise(self, raw_id: str) -> BorrowRequest:
        """Get request or raise NotFoundError."""
        borrow_request = await self.get_request(raw_id)
        if not borrow_request:
            logger.warning("Borrow request not found", extra={"request_id": raw_id})
            raise NotFoundError(resource_type="request", resource_id=raw_id)
        return borrow_request

    @staticmethod
    def can_view(borrow_request: BorrowRequest, user: dict) -> bool:
        """Apply role visibility: own requests, actionable requests, or all."""
        role = user.get("role", ROLE_STUDENT)
        if role == ROLE_ADMIN:
            return True
        if role == ROLE_STAFF:
            return borrow_request.status in STAFF_VISIBLE_STATUSES
        return borrow_request.user_id == user["user_id"]

    async def get_request_for_user(self, raw_id: str, user: dict) -> BorrowRequest:
        """Get a request the caller may see; anything else is reported as not found."""
        borrow_request = await self.get_request_or_raise(raw_id)
        if not self.can_view(borrow_request, user):
            raise NotFoundError(resource_type="request", resource_id=raw_id)
        return borrow_request

    async def list_requests(self, user: dict) -> list[BorrowRequest]:
        """List requests visible to the caller, newest first."""
        stmt = select(BorrowRequest).execution_options(populate_existing=True)

        role = user.get("role", ROLE_STUDENT)
        if role == ROLE_STAFF:
            stmt = stmt.where(BorrowRequest.status.in_(STAFF_VISIBLE_STATUSES))
        elif role != ROLE_ADMIN:
            stmt = stmt.where(BorrowRequest.user_id == user["user_id"])

        stmt = stmt.order_by(BorrowRequest.created_at.desc(), BorrowRequest.request_id.desc())
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def list_overdue(self, today: Optional[date] = None) -> list[BorrowRequest]:
        """Requests with approved or overdue items past their return date, earliest due first."""
        today = today or local_today()
        outstanding = (LineItemStatus.APPROVED.value, LineItemStatus.OVERDUE.value)

        stmt = (
            select(BorrowRequest)
            .where(
                BorrowRequest.status.in_((RequestStatus.APPROVED.value, RequestStatus.OVERDUE.value)),
                BorrowRequest.items.any(
                    (RequestLineItem.status.in_(outstanding)) & (RequestLineItem.return_date < today)
                ),
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        requests = list(result.scalars())

        def earliest_due(borrow_request: BorrowRequest) -> date:
            return min(
                item.return_date
                for item in borrow_request.items_in(LineItemStatus.APPROVED, LineItemStatus.OVERDUE)
                if item.return_date < today
            )

        return sorted(requests, key=earliest_due)

    async def update_status(self, raw_id: str, request: UpdateStatusRequest, user: dict) -> BorrowRequest:
        """
        Apply a staff decision.

        - approved: pending items are approved; inventory is untouched.
        - rejected: pending or approved items are released and rejected.
        - returned: approved or overdue items are released and returned.

        Raises:
            NotFoundError: If the request does not exist
            IllegalTransitionError: If the decision does not fit the current status
            ConcurrentUpdateError: If another transaction changed the items first
        """
        borrow_request = await self.get_request_or_raise(raw_id)
        request_id = borrow_request.request_id
        old_status = borrow_request.status
        now = utcnow()

        try:
            released_ids = await self._apply_decision(borrow_request, request, user, now)
        except StaleLineItem:
            await self.db.rollback()
            raise ConcurrentUpdateError(request_id)

        borrow_request.refresh_status()
        borrow_request.record_history(
            borrow_request.status,
            changed_by=user["user_id"],
            comment=request.comment or f"Status changed from {old_status} to {borrow_request.status}",
            changed_at=now,
        )

        await self.db.commit()

        logger.info(
            "Borrow request status updated",
            extra={
                "request_id": request_id,
                "old_status": old_status,
                "new_status": borrow_request.status,
                "changed_by": user["user_id"],
                "released_equipment": [str(eid) for eid in released_ids],
            }
        )

        announce_released(released_ids, self.notifier)
        return await self.reload(borrow_request.id)

    async def _apply_decision(
        self,
        borrow_request: BorrowRequest,
        request: UpdateStatusRequest,
        user: dict,
        now: datetime,
    ) -> list[UUID]:
        old_status = borrow_request.status
        target = request.status
        released_ids: list[UUID] = []

        if target == RequestStatus.APPROVED.value:
            if old_status != RequestStatus.PENDING.value:
                raise IllegalTransitionError(borrow_request.request_id, old_status, target)
            for item in borrow_request.items_in(LineItemStatus.PENDING):
                await self.ledger.transition(item, LineItemStatus.APPROVED)
            borrow_request.approved_by = user["user_id"]
            if request.approval_note:
                borrow_request.approval_note = request.approval_note
            borrow_request.expires_at = None

        elif target == RequestStatus.REJECTED.value:
            if old_status not in (RequestStatus.PENDING.value, RequestStatus.APPROVED.value):
                raise IllegalTransitionError(borrow_request.request_id, old_status, target)
            for item in borrow_request.items_in(LineItemStatus.PENDING, LineItemStatus.APPROVED):
                if await self.ledger.release(item, LineItemStatus.REJECTED, reason="rejected"):
                    released_ids.append(item.equipment_id)
            borrow_request.rejected_by = user["user_id"]
            borrow_request.rejection_reason = request.rejection_reason or DEFAULT_REJECTION_REASON
            borrow_request.expires_at = None

        else:
            if old_status not in (RequestStatus.APPROVED.value, RequestStatus.OVERDUE.value):
                raise IllegalTransitionError(borrow_request.request_id, old_status, target)
            for item in borrow_request.items_in(LineItemStatus.APPROVED, LineItemStatus.OVERDUE):
                if await self.ledger.release(item, LineItemStatus.RETURNED, reason="returned"):
                    released_ids.append(item.equipment_id)
                item.actual_return_date = now
            borrow_request.returned_at = now

        return released_ids

    async def delete_request(self, raw_id: str, user: dict) -> None:
        """
        Delete a request that is not holding equipment out.

        Units still held by pending items are released before the delete and
        the affected equipment is reconciled afterwards.

        Raises:
            NotFoundError: Missing, or owned by another student
            ValidationError: The request is approved or overdue
            ConcurrentUpdateError: If another transaction changed the items first
        """
        borrow_request = await self.get_request_or_raise(raw_id)

        if user.get("role", ROLE_STUDENT) == ROLE_STUDENT and borrow_request.user_id != user["user_id"]:
            raise NotFoundError(resource_type="request", resource_id=raw_id)

        if borrow_request.status in UNDELETABLE_STATUSES:
            raise ValidationError(detail=f"Cannot delete {borrow_request.status} request")

        request_id = borrow_request.request_id
        touched = [item.equipment_id for item in borrow_request.items if item.equipment_id]
        released_ids: list[UUID] = []
        try:
            for item in borrow_request.reserving_items():
                if await self.ledger.release(item, LineItemStatus.REJECTED, reason="deleted"):
                    released_ids.append(item.equipment_id)
        except StaleLineItem:
            await self.db.rollback()
            raise ConcurrentUpdateError(request_id)

        await self.db.delete(borrow_request)
        await self.db.commit()

        logger.info(
            "Borrow request deleted",
            extra={
                "request_id": request_id,
                "deleted_by": user["user_id"],
                "released_equipment": [str(eid) for eid in released_ids],
            }
        )

        await ConsistencyService(self.db).check_and_fix(touched)
        announce_released(released_ids, self.notifier)
