"""Unit tests for account status classification"""

import pytest
from datetime import datetime, timedelta
from canteen_ledger.domain.account_status import (
    BANNED_REASON,
    LOW_LOYALTY_REASON,
    OTHER_REASON,
    can_make_new_transactions,
    classify_account,
    may_reactivate_after_payment,
    should_suspend,
    suspension_end,
)
from canteen_ledger.domain.exceptions import ValidationError
from canteen_ledger.domain.models import AccountState


def test_classify_active_regardless_of_score():
    assert classify_account(True, 0).state == AccountState.ACTIVE
    assert classify_account(True, 100).reason is None


def test_classify_banned_is_derived_from_zero_loyalty():
    standing = classify_account(False, 0)
    assert standing.state == AccountState.BANNED
    assert standing.reason == BANNED_REASON


def test_classify_suspended_reasons():
    assert classify_account(False, 20).reason == LOW_LOYALTY_REASON
    assert classify_account(False, 21).reason == OTHER_REASON
    assert classify_account(False, 21).state == AccountState.SUSPENDED


def test_suspension_threshold():
    assert should_suspend(20) is True
    assert should_suspend(21) is False
    assert can_make_new_transactions(True, 21) is True
    assert can_make_new_transactions(True, 20) is False
    assert can_make_new_transactions(False, 80) is False


def test_suspension_end():
    now = datetime(2025, 3, 3, 9, 0)
    assert suspension_end(now, 7) == now + timedelta(days=7)
    assert suspension_end(now, None) is None
    with pytest.raises(ValidationError):
        suspension_end(now, 0)


def test_reactivate_after_payment_needs_clean_slate():
    assert may_reactivate_after_payment(False, 0, 21) is True
    assert may_reactivate_after_payment(False, 1, 80) is False
    assert may_reactivate_after_payment(False, 0, 20) is False
    assert may_reactivate_after_payment(True, 0, 80) is False
