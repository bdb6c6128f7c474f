"""Unit tests for the overdue policy"""

import pytest
from datetime import date, datetime, timedelta
from canteen_ledger.domain.overdue import (
    calculate_due_date,
    days_overdue,
    deducted_today,
    deduction_points,
    is_overdue,
    payment_term_days,
)


def test_payment_term_tiers():
    """3 days up to ₱50, 4 days up to ₱99, 5 days from ₱100"""
    assert payment_term_days(100) == 3
    assert payment_term_days(5_000) == 3
    assert payment_term_days(5_001) == 4
    assert payment_term_days(9_900) == 4
    assert payment_term_days(9_901) == 5
    assert payment_term_days(10_000) == 5
    assert payment_term_days(250_000) == 5


def test_calculate_due_date_adds_term():
    created = datetime(2025, 3, 3, 9, 0)
    assert calculate_due_date(created, 10_000) == created + timedelta(days=5)
    assert calculate_due_date(created, 3_000) == created + timedelta(days=3)


def test_calculate_due_date_skips_weekend_when_enabled():
    """Wednesday + 3 days lands on Saturday, rolled to Monday"""
    created = datetime(2025, 3, 5, 10, 30)
    assert calculate_due_date(created, 3_000) == datetime(2025, 3, 8, 10, 30)
    assert calculate_due_date(created, 3_000, skip_weekends=True) == datetime(2025, 3, 10, 10, 30)


def test_calculate_due_date_skips_holidays():
    created = datetime(2025, 4, 14, 8, 0)
    due = calculate_due_date(created, 3_000, skip_weekends=True, holidays=[date(2025, 4, 17), date(2025, 4, 18)])
    # Thu/Fri holidays, then the weekend
    assert due == datetime(2025, 4, 21, 8, 0)


def test_overdue_only_after_grace_window():
    due = datetime(2025, 3, 8, 9, 0)
    assert is_overdue(due, due) is False
    assert is_overdue(due, due + timedelta(hours=12)) is False
    assert is_overdue(due, due + timedelta(hours=12, seconds=1)) is True


def test_no_due_date_is_never_overdue():
    assert is_overdue(None, datetime(2030, 1, 1)) is False
    assert days_overdue(None, datetime(2030, 1, 1)) == 0


def test_days_overdue_counts_from_grace_deadline():
    due = datetime(2025, 3, 8, 9, 0)
    assert days_overdue(due, due + timedelta(hours=13)) == 0
    assert days_overdue(due, due + timedelta(days=1, hours=13)) == 1
    assert days_overdue(due, due + timedelta(days=6)) == 5


def test_deduction_schedule_escalates_then_repeats_last():
    schedule = [1, 2, 2, 2, 4]
    assert [deduction_points(n, schedule) for n in range(8)] == [1, 2, 2, 2, 4, 4, 4, 4]


def test_deduction_schedule_must_not_be_empty():
    with pytest.raises(ValueError):
        deduction_points(0, [])


def test_deducted_today():
    today = date(2025, 3, 14)
    assert deducted_today(None, today) is False
    assert deducted_today(date(2025, 3, 13), today) is False
    assert deducted_today(today, today) is True
