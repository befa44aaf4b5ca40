"""Service layer package."""

from .consistency_service import ConsistencyGate, ConsistencyService
from .counter_service import CounterService
from .equipment_service import EquipmentService
from .expiration_service import ExpirationService
from .notification_service import NotificationService
from .overdue_service import OverdueService
from .reminder_service import ReminderService
from .request_service import RequestService
from .reservation_service import ReservationLedger

__all__ = [
    "ConsistencyGate",
    "ConsistencyService",
    "CounterService",
    "EquipmentService",
    "ExpirationService",
    "NotificationService",
    "OverdueService",
    "ReminderService",
    "RequestService",
    "ReservationLedger",
]
