"""Clock helpers shared by services and workers.

Timestamps are stored as naive UTC datetimes. Calendar dates (borrow and
return dates, reminder days) are evaluated in the configured timezone.
"""

from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from .config import settings


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_today(tz: Optional[ZoneInfo] = None, now: Optional[datetime] = None) -> date:
    """Return today's calendar date in the given (or configured) timezone."""
    tz = tz or settings.tzinfo
    current = now or utcnow()
    return current.replace(tzinfo=timezone.utc).astimezone(tz).date()
