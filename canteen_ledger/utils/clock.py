"""Injectable time source for policy checks and the settlement job"""

from datetime import date, datetime, timedelta
from typing import Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    """Anything that can tell the current canteen wall-clock time"""

    def now(self) -> datetime:
        ...

    def today(self) -> date:
        ...


class SystemClock:
    """
    Real clock pinned to the canteen's timezone.

    Returns naive datetimes expressed in local wall-clock time, which is how
    timestamps are stored. "Today" is therefore the canteen's calendar day.
    """

    def __init__(self, timezone: str = "Asia/Manila"):
        self.zone = ZoneInfo(timezone)

    def now(self) -> datetime:
        return datetime.now(self.zone).replace(tzinfo=None)

    def today(self) -> date:
        return self.now().date()


class FixedClock:
    """Clock frozen at a given instant; tests move it explicitly"""

    def __init__(self, moment: datetime):
        self.moment = moment

    def now(self) -> datetime:
        return self.moment

    def today(self) -> date:
        return self.moment.date()

    def advance(self, **delta: float) -> datetime:
        self.moment = self.moment + timedelta(**delta)
        return self.moment

    def set(self, moment: datetime) -> None:
        self.moment = moment
