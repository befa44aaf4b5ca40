"""Borrow request router."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import AdminAuth, RequiredAuth, StaffAuth
from ..schemas.borrow_request import (
    BorrowRequest,
    CreateBorrowRequest,
    LineItem,
    StatusHistoryEntry,
    UpdateStatusRequest,
)
from ..schemas.common import envelope
from ..services.reminder_service import ReminderService
from ..services.request_service import RequestService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/requests", tags=["requests"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = Depends(get_db)


def _convert_request_to_schema(request_model) -> BorrowRequest:
    """Convert borrow request model, with items and history, to schema."""
    return BorrowRequest(
        id=str(request_model.id),
        request_id=request_model.request_id,
        user_id=request_model.user_id,
        user_name=request_model.user_name,
        user_email=request_model.user_email,
        borrow_date=request_model.borrow_date,
        reason=request_model.reason,
        status=request_model.status,
        expires_at=request_model.expires_at,
        approved_by=request_model.approved_by,
        approval_note=request_model.approval_note,
        rejected_by=request_model.rejected_by,
        rejection_reason=request_model.rejection_reason,
        expired_reason=request_model.expired_reason,
        returned_at=request_model.returned_at,
        items=[
            LineItem(
                id=str(item.id),
                equipment=str(item.equipment_id) if item.equipment_id else None,
                equipment_name=item.equipment_name,
                equipment_category=item.equipment_category,
                quantity=item.quantity,
                return_date=item.return_date,
                status=item.status,
                actual_return_date=item.actual_return_date,
                last_reminder_on=item.last_reminder_on,
            )
            for item in request_model.items
        ],
        status_history=[
            StatusHistoryEntry(
                status=entry.status,
                changed_by=entry.changed_by,
                changed_at=entry.changed_at,
                comment=entry.comment,
            )
            for entry in request_model.history
        ],
        created_at=request_model.created_at,
        updated_at=request_model.updated_at,
    )


@router.post("", status_code=201)
async def create_request(
    request: CreateBorrowRequest,
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = RequiredAuth,
) -> JSONResponse:
    """
    Submit a borrow request.

    Items that cannot be satisfied are reported under ``warnings`` while
    the rest of the request is stored.
    """
    result = await RequestService(db).create_request(request, user)
    return JSONResponse(
        status_code=201,
        content=envelope(
            _convert_request_to_schema(result.request).to_json(),
            warnings=result.warnings or None,
        )
    )


@router.get("")
async def list_requests(
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = RequiredAuth,
) -> JSONResponse:
    """List requests visible to the caller, newest first."""
    requests = await RequestService(db).list_requests(user)
    data = [_convert_request_to_schema(item).to_json() for item in requests]
    return JSONResponse(status_code=200, content=envelope(data, count=len(data)))


@router.get("/overdue")
async def list_overdue_requests(
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = StaffAuth,
) -> JSONResponse:
    """Requests holding items past their return date, earliest due first."""
    requests = await RequestService(db).list_overdue()
    data = [_convert_request_to_schema(item).to_json() for item in requests]
    return JSONResponse(status_code=200, content=envelope(data, count=len(data)))


@router.post("/reminders/run")
async def run_reminders(
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = AdminAuth,
) -> JSONResponse:
    """Run the overdue reminder pass now."""
    logger.info("Manual reminder run requested", extra={"user_id": user["user_id"]})
    summary = await ReminderService(db).run()
    return JSONResponse(status_code=200, content=envelope(summary.to_json()))


@router.get("/{request_id}")
async def get_request(
    request_id: str,
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = RequiredAuth,
) -> JSONResponse:
    """Get one request by UUID or REQ-NNNNNN identifier."""
    borrow_request = await RequestService(db).get_request_for_user(request_id, user)
    return JSONResponse(
        status_code=200,
        content=envelope(_convert_request_to_schema(borrow_request).to_json())
    )


@router.put("/{request_id}/status")
async def update_request_status(
    request_id: str,
    request: UpdateStatusRequest,
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = StaffAuth,
) -> JSONResponse:
    """Approve, reject or mark a request returned."""
    borrow_request = await RequestService(db).update_status(request_id, request, user)
    return JSONResponse(
        status_code=200,
        content=envelope(_convert_request_to_schema(borrow_request).to_json())
    )


@router.delete("/{request_id}")
async def delete_request(
    request_id: str,
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = RequiredAuth,
) -> JSONResponse:
    """Delete a request that is not holding equipment out."""
    await RequestService(db).delete_request(request_id, user)
    return JSONResponse(
        status_code=200,
        content={"success": True, "message": "Request deleted"}
    )


@router.post("/{request_id}/remind")
async def send_reminder(
    request_id: str,
    db: AsyncSession = DB_DEPENDENCY,
    user: dict = StaffAuth,
) -> JSONResponse:
    """Remind the owner about overdue items now, outside the cadence."""
    service = RequestService(db)
    borrow_request = await service.get_request_or_raise(request_id)
    count = await ReminderService(db).send_for_request(borrow_request)
    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "message": f"Reminder sent to {borrow_request.user_email}",
            "overdueItems": count,
        }
    )
