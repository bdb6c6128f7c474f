"""Overdue policy - payment terms, grace window and penalty schedule"""

from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Sequence

from canteen_ledger.utils.date_utils import add_days, roll_forward

# Payment terms by purchase total (centavos, inclusive upper bounds)
LOW_TIER_MAX_CENTS = 5_000  # ₱50
MEDIUM_TIER_MAX_CENTS = 9_900  # ₱99
LOW_TIER_DAYS = 3
MEDIUM_TIER_DAYS = 4
HIGH_TIER_DAYS = 5

GRACE_PERIOD = timedelta(hours=12)


def payment_term_days(total_item_cents: int) -> int:
    """
    Days a deferred balance may stay open before it is due.

    - ≤ ₱50:     3 days
    - ₱51 - ₱99: 4 days
    - ≥ ₱100:    5 days
    """
    if total_item_cents <= LOW_TIER_MAX_CENTS:
        return LOW_TIER_DAYS
    elif total_item_cents <= MEDIUM_TIER_MAX_CENTS:
        return MEDIUM_TIER_DAYS
    else:
        return HIGH_TIER_DAYS


def calculate_due_date(
    created_at: datetime,
    total_item_cents: int,
    skip_weekends: bool = False,
    holidays: Iterable[date] = (),
) -> datetime:
    """created_at + payment term, optionally rolled past weekends and holidays"""
    due = add_days(created_at, payment_term_days(total_item_cents))
    return roll_forward(due, holidays=holidays, skip_weekends=skip_weekends)


def grace_deadline(due_date: datetime) -> datetime:
    return due_date + GRACE_PERIOD


def is_overdue(due_date: Optional[datetime], now: datetime) -> bool:
    """Overdue only strictly after the due date plus the 12-hour grace window"""
    if due_date is None:
        return False
    return now > grace_deadline(due_date)


def days_overdue(due_date: Optional[datetime], now: datetime) -> int:
    """Whole days elapsed since the grace window closed (0 while not overdue)"""
    if not is_overdue(due_date, now):
        return 0
    return (now - grace_deadline(due_date)).days


def deduction_points(previous_deductions: int, schedule: Sequence[int]) -> int:
    """
    Points to deduct for the next overdue day.

    The schedule is indexed by how many deductions this transaction already
    received; once past the end, the last entry applies to every further day.
    With the default [1, 2, 2, 2, 4]: day one costs 1 point, days two to four
    cost 2, day five onward costs 4.
    """
    if not schedule:
        raise ValueError("deduction schedule must not be empty")
    index = min(previous_deductions, len(schedule) - 1)
    return schedule[index]


def deducted_today(last_deduction_date: Optional[date], today: date) -> bool:
    return last_deduction_date is not None and last_deduction_date >= today
