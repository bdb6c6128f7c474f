"""Account status lifecycle - Active / Suspended / Banned"""

from datetime import datetime, timedelta
from typing import Optional

from canteen_ledger.domain.exceptions import ValidationError
from canteen_ledger.domain.models import AccountStanding, AccountState

SUSPENSION_THRESHOLD = 20
SUSPENSION_PRESET_DAYS = (1, 3, 7, 30)

BANNED_REASON = "Account banned due to zero loyalty points"
LOW_LOYALTY_REASON = "Account suspended due to low loyalty points"
OTHER_REASON = "Account suspended for other reasons"


def classify_account(is_active: bool, loyalty: int) -> AccountStanding:
    """
    Single source of truth for how an account is reported.

    Banned is never stored; it is an inactive account with no loyalty left.
    """
    if is_active:
        return AccountStanding(AccountState.ACTIVE)
    if loyalty <= 0:
        return AccountStanding(AccountState.BANNED, BANNED_REASON)
    if loyalty <= SUSPENSION_THRESHOLD:
        return AccountStanding(AccountState.SUSPENDED, LOW_LOYALTY_REASON)
    return AccountStanding(AccountState.SUSPENDED, OTHER_REASON)


def should_suspend(loyalty: int) -> bool:
    return loyalty <= SUSPENSION_THRESHOLD


def can_make_new_transactions(is_active: bool, loyalty: int) -> bool:
    return is_active and loyalty > SUSPENSION_THRESHOLD


def suspension_end(now: datetime, days: Optional[int]) -> Optional[datetime]:
    """End of a manual suspension; None means indefinite"""
    if days is None:
        return None
    if days <= 0:
        raise ValidationError("Suspension must last at least one day")
    return now + timedelta(days=days)


def may_reactivate_after_payment(is_active: bool, remaining_overdue: int, loyalty: int) -> bool:
    """Clearing the last overdue balance lifts a suspension if the score is healthy"""
    return not is_active and remaining_overdue == 0 and loyalty > SUSPENSION_THRESHOLD
