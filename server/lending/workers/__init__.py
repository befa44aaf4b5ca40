"""Background workers for the equipment lending system."""

from .expiration_worker import ExpirationWorker
from .overdue_worker import OverdueWorker
from .reminder_worker import ReminderWorker

__all__ = ["ExpirationWorker", "OverdueWorker", "ReminderWorker"]
