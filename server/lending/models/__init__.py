"""Models module exporting all database models."""

from .borrow_request import (
    BorrowRequest,
    LineItemStatus,
    RequestLineItem,
    RequestStatus,
    StatusHistoryEntry,
    derive_request_status,
)
from .counter import Counter
from .equipment import Equipment, EquipmentCategory, EquipmentCondition

__all__ = [
    # Inventory
    "Equipment",
    "EquipmentCategory",
    "EquipmentCondition",

    # Request aggregate
    "BorrowRequest",
    "RequestLineItem",
    "StatusHistoryEntry",
    "RequestStatus",
    "LineItemStatus",
    "derive_request_status",

    # Sequences
    "Counter",
]
