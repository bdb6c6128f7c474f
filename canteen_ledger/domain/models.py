"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional


class PaymentStatus(str, Enum):
    PAID = "Paid"
    PARTIAL = "Partial"
    CREDIT = "Credit"


DEFERRED_STATUSES = (PaymentStatus.PARTIAL.value, PaymentStatus.CREDIT.value)


class TransactionKind(str, Enum):
    PURCHASE = "purchase"
    TOKEN_TOPUP = "token_topup"


class TokenOperation(str, Enum):
    ADD = "add"
    SPEND = "spend"


class AccountState(str, Enum):
    ACTIVE = "Active"
    SUSPENDED = "Suspended"
    BANNED = "Banned"


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class LineItem:
    """Single purchased item"""

    name: str
    price_cents: int


@dataclass
class TransactionDraft:
    """Validated values for a new purchase, ready to be persisted"""

    status: PaymentStatus
    total_item_cents: int
    transaction_amount_cents: int
    amount_cents: int
    change_cents: int
    token_used_cents: int
    due_date: Optional[datetime]


@dataclass
class PaymentOutcome:
    """Balance fields after a payment has been applied"""

    status: PaymentStatus
    payment_cents: int
    transaction_amount_cents: int
    amount_cents: int
    due_date: Optional[datetime]
    is_overdue: bool

    @property
    def fully_paid(self) -> bool:
        return self.status == PaymentStatus.PAID


@dataclass
class AccountStanding:
    """Read-side projection of a student's account status"""

    state: AccountState
    reason: Optional[str] = None


@dataclass
class PaymentStatusReport:
    """Everything the portal shows about a student's deferred payments"""

    student_id: str
    loyalty: int
    is_active: bool
    suspension_date: Optional[datetime]
    token_cents: int
    standing: AccountStanding
    can_partial: bool
    can_credit: bool
    can_make_new_transactions: bool
    overdue_transactions: list
    outstanding_transactions: list
    total_overdue_cents: int
    total_outstanding_cents: int


@dataclass
class SettlementResult:
    """Outcome of one settlement invocation"""

    execution_id: Optional[str]
    execution_date: date
    status: JobStatus
    skipped: bool = False
    processed_transactions: int = 0
    overdue_transactions: int = 0
    deducted_transactions: int = 0
    suspended_accounts: int = 0
    reactivated_accounts: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class RecoveryStats:
    """Overdue/suspension overview for the admin dashboard"""

    total_overdue_transactions: int
    total_overdue_cents: int
    suspended_accounts: int
    banned_accounts: int
    recent_recoveries: int
