"""Loyalty score economy: bounds and eligibility for deferred payment"""

LOYALTY_MIN = 0
LOYALTY_MAX = 100
INITIAL_LOYALTY = 25

PARTIAL_THRESHOLD = 90
CREDIT_THRESHOLD = 100


def can_partial(loyalty: int) -> bool:
    """Partial payment (part now, rest deferred) needs at least 90 points"""
    return loyalty >= PARTIAL_THRESHOLD


def can_credit(loyalty: int) -> bool:
    """Full credit (nothing paid now) needs a perfect score"""
    return loyalty >= CREDIT_THRESHOLD
