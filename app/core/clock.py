"""Injectable wall-clock source.

Timestamps are naive UTC throughout the store (as ``datetime.utcnow`` would give);
``today()`` converts to the campus timezone for calendar-date checks.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from app.core.config import settings


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time as naive UTC."""

    def today(self) -> date:
        tz = ZoneInfo(settings.campus_timezone)
        return self.now().replace(tzinfo=timezone.utc).astimezone(tz).date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FrozenClock(Clock):
    """Clock that only moves when told to. Used by tests and replay tooling."""

    def __init__(self, current: datetime) -> None:
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> None:
        self.current = self.current + delta


_system_clock = SystemClock()


def get_clock() -> Clock:
    return _system_clock
