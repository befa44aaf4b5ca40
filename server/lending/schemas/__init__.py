"""Pydantic schemas for API requests and responses."""

from .borrow_request import (
    BorrowRequest,
    CreateBorrowRequest,
    LineItem,
    LineItemInput,
    ReminderRunSummary,
    StatusHistoryEntry,
    UpdateStatusRequest,
)
from .common import ApiModel, Problem, Violation, envelope
from .equipment import CreateEquipmentRequest, Equipment, ReconcileSummary, UpdateEquipmentRequest
from .health import HealthResponse, HealthStatus

__all__ = [
    # Common
    "ApiModel",
    "Problem",
    "Violation",
    "envelope",

    # Equipment
    "CreateEquipmentRequest",
    "UpdateEquipmentRequest",
    "Equipment",
    "ReconcileSummary",

    # Borrow requests
    "CreateBorrowRequest",
    "LineItemInput",
    "UpdateStatusRequest",
    "BorrowRequest",
    "LineItem",
    "StatusHistoryEntry",
    "ReminderRunSummary",

    # Health
    "HealthResponse",
    "HealthStatus",
]
