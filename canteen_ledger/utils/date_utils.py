"""Date manipulation utilities"""

from datetime import date, datetime, timedelta
from typing import Iterable


def is_weekend(day: date) -> bool:
    """Saturday or Sunday"""
    return day.weekday() >= 5


def roll_forward(moment: datetime, holidays: Iterable[date] = (), skip_weekends: bool = True) -> datetime:
    """Push a datetime forward day by day until it lands on a working day (time of day is kept)"""
    closed = set(holidays)
    while (skip_weekends and is_weekend(moment.date())) or moment.date() in closed:
        moment += timedelta(days=1)
    return moment


def add_days(moment: datetime, days: int) -> datetime:
    """Add calendar days to a datetime"""
    return moment + timedelta(days=days)
